"""
Chain collaborator interfaces.

Two capabilities, kept apart so the liquidation bot can be given a
submitter while the indexer only ever reads:
- ChainProvider: read the event log, block headers, tx status and views
- ChainSubmitter: send a signed invoke and wait for its inclusion

Implementations: StarknetRpcProvider (JSON-RPC over httpx),
StarknetAccountSubmitter (starknet-py Account), StubChain (in-memory).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class RawEvent:
    """
    An emitted event as returned by the log source.

    event_index counts events within the emitting transaction and
    transaction_index is the transaction's position in its block; nodes on
    older RPC versions omit one or both. log_index is the position of the
    event within its block, filled by the fetcher.
    """

    keys: list[str]
    data: list[str]
    transaction_hash: str
    block_number: int
    block_hash: str | None = None
    from_address: str | None = None
    transaction_index: int | None = None
    event_index: int | None = None
    log_index: int | None = None

    @property
    def selector(self) -> str | None:
        return self.keys[0] if self.keys else None


@dataclass
class EventsPage:
    """One bounded page of events plus the token to resume after it."""

    events: list[RawEvent] = field(default_factory=list)
    continuation_token: str | None = None


@dataclass(frozen=True)
class BlockHeader:
    block_number: int
    timestamp: int
    block_hash: str | None = None


class FinalityStatus(str, Enum):
    RECEIVED = "RECEIVED"
    REJECTED = "REJECTED"
    ACCEPTED_ON_L2 = "ACCEPTED_ON_L2"
    ACCEPTED_ON_L1 = "ACCEPTED_ON_L1"


class ExecutionStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    REVERTED = "REVERTED"


@dataclass(frozen=True)
class TransactionStatus:
    finality_status: FinalityStatus
    execution_status: ExecutionStatus | None = None
    failure_reason: str | None = None

    @property
    def is_included(self) -> bool:
        return self.finality_status in (FinalityStatus.ACCEPTED_ON_L2, FinalityStatus.ACCEPTED_ON_L1)


class ChainProvider(ABC):
    """Read access to the chain node."""

    @abstractmethod
    async def get_events(
        self,
        address: str,
        from_block: int,
        to_block: int,
        keys: list[list[str]] | None = None,
        chunk_size: int = 100,
        continuation_token: str | None = None,
    ) -> EventsPage:
        """
        Fetch one page of events emitted by ``address`` in a block range.

        Raises:
            TransportError: on network / node failures
        """
        ...

    @abstractmethod
    async def get_block(self, block_number: int) -> BlockHeader:
        """Fetch a block header (used for its timestamp)."""
        ...

    @abstractmethod
    async def block_number(self) -> int:
        """Current chain head."""
        ...

    @abstractmethod
    async def get_transaction_status(self, tx_hash: str) -> TransactionStatus | None:
        """Status of a transaction, or None if the node does not know it yet."""
        ...

    @abstractmethod
    async def call_contract(self, contract_address: str, entrypoint: str, calldata: list[int]) -> list[int]:
        """
        Call a view function at the latest block.

        Returns:
            The raw felts of the serialized return value
        """
        ...

    async def close(self) -> None:
        return None


class ChainSubmitter(ABC):
    """Write access to the chain through a funded account."""

    @abstractmethod
    async def execute(self, contract_address: str, entrypoint: str, calldata: list[int]) -> str:
        """
        Sign and send a single invoke.

        Returns:
            The transaction hash

        Raises:
            TransportError: on network failures
            SubmissionError: when the node rejects the transaction
        """
        ...

    @abstractmethod
    async def wait_for_transaction(self, tx_hash: str, poll_interval: float = 5.0) -> TransactionStatus:
        """
        Wait until the transaction is included.

        Has no timeout of its own; the caller bounds it.

        Raises:
            SubmissionError: if the transaction was rejected or reverted
        """
        ...

    async def close(self) -> None:
        return None
