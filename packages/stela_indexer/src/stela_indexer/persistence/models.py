"""
Indexer-owned tables.

Agreement and Inscription rows are derived state: created or updated only
as a side effect of reconciling an event (plus the structural terms path),
never deleted. EventRecord rows are immutable facts; the unique constraint
on (tx_hash, event_type, subject_id) is the idempotency boundary.

Ids are 256-bit and stored as 0x + 64 lowercase hex digits. Block
timestamps and durations are plain integer seconds.
"""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

IndexerBase = declarative_base()

ID_LENGTH = 66

JSONType = JSON().with_variant(JSONB(), "postgresql")


class IndexerModelMixin:
    """Ordering bookkeeping shared by the derived entity tables."""

    last_block = Column(BigInteger, nullable=True)
    last_log_index = Column(Integer, nullable=True)
    indexed_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def position(self) -> tuple[int, int] | None:
        if self.last_block is None:
            return None
        return (self.last_block, self.last_log_index or 0)


class Agreement(IndexerBase, IndexerModelMixin):
    """A credit line being funded by one or more signers."""

    __tablename__ = "agreements"

    id = Column(String(ID_LENGTH), primary_key=True)
    lender = Column(String(ID_LENGTH), nullable=True)
    status = Column(String(20), nullable=False, default="partial")
    issued_debt_percentage = Column(Integer, nullable=False, default=0)  # basis points
    signed_at = Column(BigInteger, nullable=True)
    updated_at = Column(BigInteger, nullable=True)

    # Structural, written only by the terms path
    duration = Column(BigInteger, nullable=True)
    deadline = Column(BigInteger, nullable=True)

    __table_args__ = (Index("idx_agreements_status_signed_at", "status", "signed_at"),)


class Inscription(IndexerBase, IndexerModelMixin):
    """
    Asset-backed loan instance.

    status is the repayment axis (open, repaid, liquidated); share_status
    is the share settlement axis (open, redeemed).
    """

    __tablename__ = "inscriptions"

    id = Column(String(ID_LENGTH), primary_key=True)
    status = Column(String(20), nullable=False, default="open")
    share_status = Column(String(20), nullable=False, default="open")
    updated_at = Column(BigInteger, nullable=True)

    # Structural, written only by the terms path
    borrower = Column(String(ID_LENGTH), nullable=True)
    duration = Column(BigInteger, nullable=True)
    deadline = Column(BigInteger, nullable=True)
    debt_asset_count = Column(Integer, nullable=True)
    interest_asset_count = Column(Integer, nullable=True)
    collateral_asset_count = Column(Integer, nullable=True)

    __table_args__ = (Index("idx_inscriptions_status", "status"),)


class EventRecord(IndexerBase):
    """Immutable history of every reconciled event."""

    __tablename__ = "indexer_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(20), nullable=False)
    subject_type = Column(String(20), nullable=False)
    subject_id = Column(String(ID_LENGTH), nullable=False)
    tx_hash = Column(String(ID_LENGTH), nullable=False)
    block_number = Column(BigInteger, nullable=False)
    log_index = Column(Integer, nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)  # u256 values as decimal strings
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tx_hash", "event_type", "subject_id", name="uq_indexer_events_tx_type_subject"),
        Index("idx_indexer_events_subject_position", "subject_id", "block_number", "log_index"),
    )


class IndexerCursor(IndexerBase):
    """Highest block number fully reconciled, per key."""

    __tablename__ = "indexer_cursor"

    key = Column(String(50), primary_key=True)
    block_number = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
