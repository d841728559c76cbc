"""
Pytest configuration for integration tests.

The full ingestion and liquidation loop runs against the stub chain and an
in-memory SQLite database, so no services are required.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stela_indexer.chain.stub import StubChain
from stela_indexer.persistence.models import IndexerBase


@pytest.fixture
def db_engine():
    """Create database engine for tests."""
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
    """Create database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def chain():
    """Stub chain acting as both node and bot account."""
    return StubChain(address="0x5e1a", block_time=30)
