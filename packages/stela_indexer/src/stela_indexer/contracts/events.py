"""
Domain events - typed results of decoding a raw protocol log.

The set is closed: one dataclass per EventKind plus UnrecognizedEvent for
selectors the decoder does not know. Every decoded event carries its
position in the chain (block number, log index within the block) so the
reconciler can enforce ordering.
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from stela_indexer.contracts.types import (
    AgreementStatus,
    EventKind,
    SubjectType,
    signed_status,
)
from stela_indexer.contracts.u256 import u256_to_hex


@dataclass(frozen=True)
class DomainEvent:
    """
    Base for decoded protocol events.

    Attributes:
        subject_id: 256-bit id of the agreement or inscription
        tx_hash: Transaction that emitted the log
        block_number: Block containing the transaction
        log_index: Position of the log within its block
    """

    kind: ClassVar[EventKind]
    subject_type: ClassVar[SubjectType]

    subject_id: int
    tx_hash: str
    block_number: int
    log_index: int

    @property
    def subject_hex(self) -> str:
        return u256_to_hex(self.subject_id)

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    def payload(self) -> dict[str, Any]:
        """Kind-specific data for the event record (JSON-safe, no floats)."""
        return {}


@dataclass(frozen=True)
class SignedEvent(DomainEvent):
    """AgreementSigned: a lender funded (part of) an agreement."""

    kind: ClassVar[EventKind] = EventKind.SIGNED
    subject_type: ClassVar[SubjectType] = SubjectType.AGREEMENT

    lender: str = ""
    issued_debt_percentage: int = 0

    @property
    def status(self) -> AgreementStatus:
        return signed_status(self.issued_debt_percentage)

    def payload(self) -> dict[str, Any]:
        return {
            "lender": self.lender,
            "issued_debt_percentage": str(self.issued_debt_percentage),
        }


@dataclass(frozen=True)
class CancelledEvent(DomainEvent):
    """AgreementCancelled."""

    kind: ClassVar[EventKind] = EventKind.CANCELLED
    subject_type: ClassVar[SubjectType] = SubjectType.AGREEMENT


@dataclass(frozen=True)
class AgreementLiquidatedEvent(DomainEvent):
    """AgreementLiquidated: settlement of an overdue agreement."""

    kind: ClassVar[EventKind] = EventKind.LIQUIDATED
    subject_type: ClassVar[SubjectType] = SubjectType.AGREEMENT


@dataclass(frozen=True)
class InscriptionLiquidatedEvent(DomainEvent):
    """InscriptionLiquidated: repayment axis closed by liquidation."""

    kind: ClassVar[EventKind] = EventKind.LIQUIDATED
    subject_type: ClassVar[SubjectType] = SubjectType.INSCRIPTION

    liquidator: str = ""

    def payload(self) -> dict[str, Any]:
        return {"liquidator": self.liquidator}


@dataclass(frozen=True)
class RepaidEvent(DomainEvent):
    """InscriptionRepaid."""

    kind: ClassVar[EventKind] = EventKind.REPAID
    subject_type: ClassVar[SubjectType] = SubjectType.INSCRIPTION

    repayer: str = ""

    def payload(self) -> dict[str, Any]:
        return {"repayer": self.repayer}


@dataclass(frozen=True)
class RedeemedEvent(DomainEvent):
    """SharesRedeemed: a share holder settled their shares."""

    kind: ClassVar[EventKind] = EventKind.REDEEMED
    subject_type: ClassVar[SubjectType] = SubjectType.INSCRIPTION

    redeemer: str = ""
    shares: int = 0

    def payload(self) -> dict[str, Any]:
        return {"redeemer": self.redeemer, "shares": str(self.shares)}


@dataclass(frozen=True)
class UnrecognizedEvent:
    """A log whose selector is not part of the protocol event table."""

    selector: str
    tx_hash: str
    block_number: int
    log_index: int
