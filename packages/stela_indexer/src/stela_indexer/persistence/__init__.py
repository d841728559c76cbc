"""Persistence for indexer-owned tables."""

from stela_indexer.persistence.cursor import CursorStore
from stela_indexer.persistence.models import (
    Agreement,
    EventRecord,
    IndexerBase,
    IndexerCursor,
    Inscription,
)
from stela_indexer.persistence.repo import IndexerRepository, LiquidationQueries

__all__ = [
    "Agreement",
    "CursorStore",
    "EventRecord",
    "IndexerBase",
    "IndexerCursor",
    "IndexerRepository",
    "Inscription",
    "LiquidationQueries",
]
