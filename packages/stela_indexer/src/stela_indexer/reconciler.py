"""
State reconciler.

Folds decoded events into the agreements / inscriptions tables and appends
an immutable event record. Each event is one atomic unit: entity mutation
and event record are committed together or not at all.

Per event:
1. Idempotency: an existing record for (tx_hash, event_type, subject_id)
   makes the event a no-op (DUPLICATE)
2. Ordering: a position lower than the entity's stored
   (last_block, last_log_index) raises OrderingViolation
3. Transition: statuses only ever move forward; terminal rows only get
   the event record (UNCHANGED)
"""

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stela_indexer.contracts.events import (
    AgreementLiquidatedEvent,
    CancelledEvent,
    DomainEvent,
    InscriptionLiquidatedEvent,
    RedeemedEvent,
    RepaidEvent,
    SignedEvent,
)
from stela_indexer.contracts.types import AgreementStatus, InscriptionStatus, SubjectType, signed_status
from stela_indexer.errors import OrderingViolation
from stela_indexer.persistence.cursor import CursorStore
from stela_indexer.persistence.models import Agreement, Inscription
from stela_indexer.persistence.repo import IndexerRepository

logger = logging.getLogger(__name__)


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    DUPLICATE = "duplicate"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class BlockInfo:
    number: int
    timestamp: int


class StateReconciler:
    """
    Applies domain events to derived state.

    Callers feed events in ascending (block_number, log_index) order; the
    reconciler does not reorder.
    """

    def __init__(self, db: Session, cursor: CursorStore | None = None):
        self.db = db
        self.repo = IndexerRepository(db)
        self.cursor = cursor or CursorStore(db)

    def apply(self, event: DomainEvent, block: BlockInfo) -> ApplyOutcome:
        """Apply one event in its own transaction."""
        return self._commit(event, block, advance_to=None)

    def apply_block(self, block: BlockInfo, events: list[DomainEvent]) -> list[ApplyOutcome]:
        """
        Apply a block's events in order, then move the cursor to the block.

        The last event and the cursor advance commit together. On failure the
        current event is rolled back and the error propagates; the cursor
        stays at the last committed block.
        """
        if not events:
            self.advance_cursor(block.number)
            return []

        outcomes = []
        last = len(events) - 1
        for i, event in enumerate(events):
            advance_to = block.number if i == last else None
            outcomes.append(self._commit(event, block, advance_to=advance_to))
        return outcomes

    def advance_cursor(self, block_number: int) -> bool:
        """Commit a cursor advance with no events (empty blocks)."""
        moved = self.cursor.advance(block_number)
        self.db.commit()
        return moved

    def _commit(self, event: DomainEvent, block: BlockInfo, advance_to: int | None) -> ApplyOutcome:
        try:
            outcome = self._stage(event, block)
            if advance_to is not None:
                self.cursor.advance(advance_to)
            self.db.commit()
        except IntegrityError:
            # Another writer recorded the same event first
            self.db.rollback()
            logger.info(
                "Event already recorded concurrently",
                extra=_log_extra(event, ApplyOutcome.DUPLICATE),
            )
            if advance_to is not None:
                self.advance_cursor(advance_to)
            return ApplyOutcome.DUPLICATE
        except Exception:
            self.db.rollback()
            raise

        log = logger.debug if outcome == ApplyOutcome.DUPLICATE else logger.info
        log(f"Event {event.kind} {outcome}", extra=_log_extra(event, outcome))
        return outcome

    def _stage(self, event: DomainEvent, block: BlockInfo) -> ApplyOutcome:
        """Stage the writes for one event without committing."""
        subject_id = event.subject_hex

        if self.repo.find_event(event.tx_hash, event.kind.value, subject_id):
            return ApplyOutcome.DUPLICATE

        if event.subject_type == SubjectType.AGREEMENT:
            entity = self.repo.get_or_create_agreement(subject_id)
        else:
            entity = self.repo.get_or_create_inscription(subject_id)

        committed = entity.position
        if committed is not None and event.position < committed:
            raise OrderingViolation(subject_id, event.position, committed)

        if isinstance(event, SignedEvent):
            changed = self._apply_signed(entity, event, block.timestamp)
        elif isinstance(event, CancelledEvent):
            changed = self._close_agreement(entity, AgreementStatus.CANCELLED, block.timestamp)
        elif isinstance(event, AgreementLiquidatedEvent):
            changed = self._close_agreement(entity, AgreementStatus.LIQUIDATED, block.timestamp)
        elif isinstance(event, RepaidEvent):
            changed = self._close_inscription(entity, InscriptionStatus.REPAID, block.timestamp)
        elif isinstance(event, InscriptionLiquidatedEvent):
            changed = self._close_inscription(entity, InscriptionStatus.LIQUIDATED, block.timestamp)
        elif isinstance(event, RedeemedEvent):
            changed = self._apply_redeemed(entity, block.timestamp)
        else:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")

        entity.last_block = event.block_number
        entity.last_log_index = event.log_index
        self.repo.record_event(event, block.timestamp)

        return ApplyOutcome.APPLIED if changed else ApplyOutcome.UNCHANGED

    # --- Transitions ---

    def _apply_signed(self, agreement: Agreement, event: SignedEvent, timestamp: int) -> bool:
        current = AgreementStatus(agreement.status)
        if current.is_terminal:
            return False

        percentage = max(agreement.issued_debt_percentage or 0, event.issued_debt_percentage)
        derived = signed_status(percentage)

        agreement.lender = event.lender
        agreement.issued_debt_percentage = percentage
        agreement.status = (derived if derived.rank >= current.rank else current).value
        agreement.signed_at = timestamp
        agreement.updated_at = timestamp
        return True

    def _close_agreement(self, agreement: Agreement, target: AgreementStatus, timestamp: int) -> bool:
        if AgreementStatus(agreement.status).is_terminal:
            return False

        agreement.status = target.value
        agreement.updated_at = timestamp
        return True

    def _close_inscription(self, inscription: Inscription, target: InscriptionStatus, timestamp: int) -> bool:
        if InscriptionStatus(inscription.status).is_terminal:
            return False

        inscription.status = target.value
        inscription.updated_at = timestamp
        return True

    def _apply_redeemed(self, inscription: Inscription, timestamp: int) -> bool:
        if inscription.share_status == InscriptionStatus.REDEEMED.value:
            return False

        inscription.share_status = InscriptionStatus.REDEEMED.value
        inscription.updated_at = timestamp
        return True


def _log_extra(event: DomainEvent, outcome: ApplyOutcome) -> dict:
    return {
        "event_type": event.kind.value,
        "subject_type": event.subject_type.value,
        "subject_id": event.subject_hex,
        "tx_hash": event.tx_hash,
        "block_number": event.block_number,
        "outcome": outcome.value,
    }
