"""
Repository helpers for indexer-owned tables.

IndexerRepository is used by the reconciler (staged writes, the caller
commits) and by the CLI / query surface (reads). LiquidationQueries is the
read-only view the liquidation bot gets.
"""

from typing import Any

from sqlalchemy.orm import Session

from stela_indexer.contracts.events import DomainEvent
from stela_indexer.contracts.types import AgreementStatus, InscriptionStatus, SubjectType
from stela_indexer.persistence.models import Agreement, EventRecord, Inscription


class IndexerRepository:
    """Repository for indexer-owned tables."""

    def __init__(self, db: Session):
        self.db = db

    # --- Agreements ---

    def get_agreement(self, agreement_id: str) -> Agreement | None:
        return self.db.query(Agreement).filter(Agreement.id == agreement_id).first()

    def get_or_create_agreement(self, agreement_id: str) -> Agreement:
        agreement = self.get_agreement(agreement_id)
        if agreement:
            return agreement

        agreement = Agreement(
            id=agreement_id,
            status=AgreementStatus.PARTIAL.value,
            issued_debt_percentage=0,
        )
        self.db.add(agreement)
        self.db.flush()
        return agreement

    def list_agreements(
        self,
        status: str | None = None,
        lender: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Agreement]:
        """List agreements with filters, most recently updated first."""
        query = self.db.query(Agreement)

        if status:
            query = query.filter(Agreement.status == status)

        if lender:
            query = query.filter(Agreement.lender == lender)

        return (
            query.order_by(Agreement.last_block.desc(), Agreement.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

    # --- Inscriptions ---

    def get_inscription(self, inscription_id: str) -> Inscription | None:
        return self.db.query(Inscription).filter(Inscription.id == inscription_id).first()

    def get_or_create_inscription(self, inscription_id: str) -> Inscription:
        inscription = self.get_inscription(inscription_id)
        if inscription:
            return inscription

        inscription = Inscription(
            id=inscription_id,
            status=InscriptionStatus.OPEN.value,
            share_status=InscriptionStatus.OPEN.value,
        )
        self.db.add(inscription)
        self.db.flush()
        return inscription

    def list_inscriptions(
        self,
        status: str | None = None,
        share_status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Inscription]:
        """List inscriptions with filters, most recently updated first."""
        query = self.db.query(Inscription)

        if status:
            query = query.filter(Inscription.status == status)

        if share_status:
            query = query.filter(Inscription.share_status == share_status)

        return (
            query.order_by(Inscription.last_block.desc(), Inscription.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

    # --- Event records ---

    def find_event(self, tx_hash: str, event_type: str, subject_id: str) -> EventRecord | None:
        return (
            self.db.query(EventRecord)
            .filter(
                EventRecord.tx_hash == tx_hash,
                EventRecord.event_type == event_type,
                EventRecord.subject_id == subject_id,
            )
            .first()
        )

    def record_event(self, event: DomainEvent, timestamp: int) -> EventRecord:
        """Append the immutable record of an event. Does not check for duplicates."""
        record = EventRecord(
            event_type=event.kind.value,
            subject_type=event.subject_type.value,
            subject_id=event.subject_hex,
            tx_hash=event.tx_hash,
            block_number=event.block_number,
            log_index=event.log_index,
            timestamp=timestamp,
            payload=event.payload(),
        )
        self.db.add(record)
        self.db.flush()
        return record

    def list_events(
        self,
        subject_id: str | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[EventRecord]:
        """Event history in chain order."""
        query = self.db.query(EventRecord)

        if subject_id:
            query = query.filter(EventRecord.subject_id == subject_id)

        if event_type:
            query = query.filter(EventRecord.event_type == event_type)

        return query.order_by(EventRecord.block_number, EventRecord.log_index).limit(limit).all()

    def count_events(self) -> int:
        return self.db.query(EventRecord).count()

    # --- Structural terms ---

    def list_missing_terms(
        self,
        subject_type: SubjectType,
        limit: int = 50,
        exclude: set[str] | None = None,
    ) -> list[str]:
        """Ids whose terms have not been read from the contract yet, oldest first."""
        model = Agreement if subject_type == SubjectType.AGREEMENT else Inscription
        query = self.db.query(model.id).filter(model.duration.is_(None))

        if exclude:
            query = query.filter(model.id.notin_(exclude))

        rows = query.order_by(model.last_block, model.id).limit(limit).all()
        return [row.id for row in rows]

    def record_terms(
        self,
        subject_type: SubjectType,
        subject_id: str,
        duration: int,
        deadline: int | None = None,
        **extra: Any,
    ) -> Agreement | Inscription:
        """
        Store structural fields read from the contract.

        Never touches status or ordering bookkeeping. Extra keyword
        arguments are only accepted for inscriptions (borrower, asset counts).
        """
        if duration < 0:
            raise ValueError(f"duration must be >= 0, got {duration}")

        if subject_type == SubjectType.AGREEMENT:
            if extra:
                raise ValueError(f"Unknown agreement terms: {sorted(extra)}")
            row = self.get_or_create_agreement(subject_id)
        else:
            row = self.get_or_create_inscription(subject_id)
            for name, value in extra.items():
                if name not in ("borrower", "debt_asset_count", "interest_asset_count", "collateral_asset_count"):
                    raise ValueError(f"Unknown inscription term: {name}")
                setattr(row, name, value)

        row.duration = duration
        row.deadline = deadline
        self.db.flush()
        return row


class LiquidationQueries:
    """Read-only queries for the liquidation bot. Never writes."""

    def __init__(self, db: Session):
        self.db = db

    def find_liquidatable(self, now: int, limit: int = 50) -> list[Agreement]:
        """
        Filled agreements whose term has elapsed, earliest deadline first.

        Overdue means signed_at + duration < now.
        """
        due_at = Agreement.signed_at + Agreement.duration
        return (
            self.db.query(Agreement)
            .filter(
                Agreement.status == AgreementStatus.FILLED.value,
                Agreement.signed_at.isnot(None),
                Agreement.duration.isnot(None),
                due_at < now,
            )
            .order_by(due_at, Agreement.id)
            .limit(limit)
            .all()
        )
