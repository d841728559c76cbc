"""
Loan terms reader.

Duration, deadline, borrower and asset counts are not carried by the
protocol events. They are read from the contract's get_inscription view
and stored through IndexerRepository.record_terms; the reconciler never
writes them.

get_inscription(id: u256) returns the stored inscription serialized as
felts, in declaration order:

    borrower                  ContractAddress   1
    lender                    ContractAddress   1
    duration                  u64               1
    deadline                  u64               1
    signed_at                 u64               1
    issued_debt_percentage    u256              2
    is_repaid                 bool              1
    liquidated                bool              1
    multi_lender              bool              1
    debt_asset_count          u32               1
    interest_asset_count      u32               1
    collateral_asset_count    u32               1

Agreements and inscriptions are both stored by the contract under this
view; an id the contract does not know comes back zeroed (borrower 0).
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from stela_indexer.chain.base import ChainProvider
from stela_indexer.contracts.types import SubjectType
from stela_indexer.contracts.u256 import hex_to_u256, normalize_address, to_u256
from stela_indexer.errors import ContractReadError, TransportError
from stela_indexer.fetcher import RetryPolicy
from stela_indexer.persistence.repo import IndexerRepository

logger = logging.getLogger(__name__)

GET_INSCRIPTION_ENTRYPOINT = "get_inscription"
INSCRIPTION_FELTS = 13


@dataclass(frozen=True)
class OnChainTerms:
    borrower: str
    duration: int
    deadline: int
    multi_lender: bool
    debt_asset_count: int
    interest_asset_count: int
    collateral_asset_count: int

    @property
    def exists(self) -> bool:
        return int(self.borrower, 16) != 0


def parse_inscription(felts: list[int], subject_id: str | None = None) -> OnChainTerms:
    """Decode the get_inscription return felts."""
    if len(felts) != INSCRIPTION_FELTS:
        raise ContractReadError(
            f"{GET_INSCRIPTION_ENTRYPOINT}: expected {INSCRIPTION_FELTS} felts, got {len(felts)}",
            entrypoint=GET_INSCRIPTION_ENTRYPOINT,
            subject_id=subject_id,
        )

    (
        borrower,
        _lender,
        duration,
        deadline,
        _signed_at,
        _pct_low,
        _pct_high,
        _is_repaid,
        _liquidated,
        multi_lender,
        debt_count,
        interest_count,
        collateral_count,
    ) = felts

    return OnChainTerms(
        borrower=normalize_address(borrower),
        duration=duration,
        deadline=deadline,
        multi_lender=bool(multi_lender),
        debt_asset_count=debt_count,
        interest_asset_count=interest_count,
        collateral_asset_count=collateral_count,
    )


class TermsReader:
    """
    Reads loan terms from the protocol contract.

    Args:
        provider: Chain node
        address: Protocol contract address
        retry: Retry policy for transport failures
    """

    def __init__(self, provider: ChainProvider, address: str, retry: RetryPolicy | None = None):
        self.provider = provider
        self.address = address
        self.retry = retry or RetryPolicy()

    async def read(self, subject_id: str) -> OnChainTerms:
        calldata = list(to_u256(hex_to_u256(subject_id)))
        felts = await self.retry.call(
            lambda: self.provider.call_contract(self.address, GET_INSCRIPTION_ENTRYPOINT, calldata),
            extra={"subject_id": subject_id},
        )
        return parse_inscription(felts, subject_id)


@dataclass
class TermsReport:
    recorded: list[str] = field(default_factory=list)
    absent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class TermsSync:
    """
    Fills in terms for rows that do not have them yet.

    Ids the contract does not know are remembered in `absent` (share the
    set across instances to keep it between passes) so they do not starve
    the rest of the batch.
    """

    def __init__(
        self,
        db: Session,
        reader: TermsReader,
        batch_size: int = 50,
        absent: set[str] | None = None,
    ):
        self.db = db
        self.reader = reader
        self.batch_size = batch_size
        self.repo = IndexerRepository(db)
        self._absent = absent if absent is not None else set()

    async def sync_missing(self) -> TermsReport:
        report = TermsReport()

        for subject_type in (SubjectType.AGREEMENT, SubjectType.INSCRIPTION):
            ids = self.repo.list_missing_terms(subject_type, limit=self.batch_size, exclude=self._absent)
            # Release the read transaction before going to the node
            self.db.rollback()

            for subject_id in ids:
                await self._sync_one(subject_type, subject_id, report)

        if report.recorded:
            logger.info(f"Recorded terms for {len(report.recorded)} rows", extra={"count": len(report.recorded)})
        return report

    async def _sync_one(self, subject_type: SubjectType, subject_id: str, report: TermsReport) -> None:
        extra = {"subject_type": subject_type.value, "subject_id": subject_id}

        try:
            terms = await self.reader.read(subject_id)
        except (TransportError, ContractReadError) as e:
            report.failed.append(subject_id)
            logger.error(f"Failed to read terms for {subject_id}: {e}", extra=extra)
            return

        if not terms.exists:
            self._absent.add(subject_id)
            report.absent.append(subject_id)
            logger.warning(f"{subject_id} not found on contract, terms left empty", extra=extra)
            return

        try:
            if subject_type == SubjectType.AGREEMENT:
                self.repo.record_terms(subject_type, subject_id, terms.duration, terms.deadline)
            else:
                self.repo.record_terms(
                    subject_type,
                    subject_id,
                    terms.duration,
                    terms.deadline,
                    borrower=terms.borrower,
                    debt_asset_count=terms.debt_asset_count,
                    interest_asset_count=terms.interest_asset_count,
                    collateral_asset_count=terms.collateral_asset_count,
                )
            self.db.commit()
            report.recorded.append(subject_id)
        except Exception as e:
            self.db.rollback()
            report.failed.append(subject_id)
            logger.error(f"Failed to record terms for {subject_id}: {e}", extra=extra, exc_info=True)
