"""
Pytest fixtures for indexer tests.

Tests run against in-memory SQLite and the stub chain; nothing talks to a
real node, database or Redis.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stela_indexer.chain.base import RawEvent
from stela_indexer.chain.stub import StubChain
from stela_indexer.contracts.u256 import to_u256
from stela_indexer.decoder import (
    AGREEMENT_CANCELLED,
    AGREEMENT_LIQUIDATED,
    AGREEMENT_SIGNED,
    INSCRIPTION_LIQUIDATED,
    INSCRIPTION_REPAID,
    SHARES_REDEEMED,
)
from stela_indexer.persistence.models import IndexerBase

LENDER = 0xA
BORROWER = 0xB0B


class RawEventFactory:
    """Builds raw protocol logs with the exact on-chain felt layout."""

    def __init__(self):
        self._tx = 0

    def tx_hash(self) -> str:
        self._tx += 1
        return f"0x{self._tx:064x}"

    def raw(
        self,
        keys: list[int],
        data: list[int],
        block: int = 100,
        log_index: int | None = 0,
        tx_hash: str | None = None,
    ) -> RawEvent:
        return RawEvent(
            keys=[hex(k) for k in keys],
            data=[hex(d) for d in data],
            transaction_hash=tx_hash or self.tx_hash(),
            block_number=block,
            event_index=log_index,
            log_index=log_index,
        )

    def signed(self, agreement_id: int, percentage: int, lender: int = LENDER, **kwargs) -> RawEvent:
        lo, hi = to_u256(agreement_id)
        pct_lo, pct_hi = to_u256(percentage)
        return self.raw([AGREEMENT_SIGNED], [lo, hi, lender, pct_lo, pct_hi], **kwargs)

    def cancelled(self, agreement_id: int, **kwargs) -> RawEvent:
        return self.raw([AGREEMENT_CANCELLED], list(to_u256(agreement_id)), **kwargs)

    def agreement_liquidated(self, agreement_id: int, **kwargs) -> RawEvent:
        return self.raw([AGREEMENT_LIQUIDATED], list(to_u256(agreement_id)), **kwargs)

    def repaid(self, inscription_id: int, repayer: int = BORROWER, **kwargs) -> RawEvent:
        return self.raw([INSCRIPTION_REPAID, *to_u256(inscription_id)], [repayer], **kwargs)

    def redeemed(self, inscription_id: int, shares: int, redeemer: int = LENDER, **kwargs) -> RawEvent:
        return self.raw([SHARES_REDEEMED, *to_u256(inscription_id), redeemer], list(to_u256(shares)), **kwargs)

    def inscription_liquidated(self, inscription_id: int, liquidator: int = 0x1D, **kwargs) -> RawEvent:
        return self.raw([INSCRIPTION_LIQUIDATED, *to_u256(inscription_id)], [liquidator], **kwargs)


@pytest.fixture
def raw_events():
    """Factory for raw protocol logs."""
    return RawEventFactory()


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with indexer tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    IndexerBase.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """Database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def stub_chain():
    """In-memory chain at block 0."""
    return StubChain(address="0x5e1a")
