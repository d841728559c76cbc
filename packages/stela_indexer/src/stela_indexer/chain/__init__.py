"""Chain providers: log source and transaction submission."""

from stela_indexer.chain.base import (
    BlockHeader,
    ChainProvider,
    ChainSubmitter,
    EventsPage,
    ExecutionStatus,
    FinalityStatus,
    RawEvent,
    TransactionStatus,
)
from stela_indexer.chain.rpc import StarknetRpcProvider

__all__ = [
    "BlockHeader",
    "ChainProvider",
    "ChainSubmitter",
    "EventsPage",
    "ExecutionStatus",
    "FinalityStatus",
    "RawEvent",
    "StarknetRpcProvider",
    "TransactionStatus",
]
