"""
Stub chain.

In-memory chain implementing both ChainProvider and ChainSubmitter, for
local development and tests. Nothing leaves the process.

- Events are appended per block and served in pages of chunk_size
- Transport failures can be queued up front
- View calls answer from a fixed table
- Every submission is recorded; executing "liquidate" emits
  AgreementLiquidated in a new block
"""

import asyncio
import logging
from typing import Any
from uuid import uuid4

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
from stela_indexer.contracts.u256 import parse_felt
from stela_indexer.decoder import AGREEMENT_LIQUIDATED
from stela_indexer.errors import SubmissionError, TransportError

logger = logging.getLogger(__name__)

GENESIS_TIMESTAMP = 1_700_000_000


class StubChain(ChainProvider, ChainSubmitter):
    """
    Stub chain for development and testing.

    Args:
        address: Contract address the stub pretends to be
        block_time: Seconds between consecutive block timestamps
        tx_outcome: "accepted", "reverted" or "pending" (never included)
    """

    def __init__(
        self,
        address: str = "0x0",
        block_time: int = 30,
        tx_outcome: str = "accepted",
    ):
        self.address = address
        self.block_time = block_time
        self.tx_outcome = tx_outcome
        self.head = 0
        self.timestamps: dict[int, int] = {0: GENESIS_TIMESTAMP}
        self.events: list[RawEvent] = []
        self.submissions: list[dict[str, Any]] = []
        self.tx_statuses: dict[str, TransactionStatus] = {}
        self.pending_failures: list[TransportError] = []
        self.fail_on_execute: set[str] = set()
        self.views: dict[tuple[str, tuple[int, ...]], list[int]] = {}
        self.get_events_calls = 0

    # =========================================================================
    # Test controls
    # =========================================================================

    def mine(self, timestamp: int | None = None) -> int:
        """Produce a new (possibly empty) block and return its number."""
        self.head += 1
        if timestamp is None:
            timestamp = self.timestamps[self.head - 1] + self.block_time
        self.timestamps[self.head] = timestamp
        return self.head

    def mine_to(self, block_number: int) -> None:
        while self.head < block_number:
            self.mine()

    def emit(
        self,
        keys: list[str | int],
        data: list[str | int],
        tx_hash: str | None = None,
        block_number: int | None = None,
    ) -> RawEvent:
        """
        Append an event. Without block_number it lands in the head block;
        blocks are mined as needed when block_number is ahead of the head.

        Like a node, event_index counts events within the transaction and
        transaction_index is the transaction's position in the block.
        """
        if block_number is None:
            block_number = self.head
        self.mine_to(block_number)

        tx_hash = tx_hash or f"0x{uuid4().hex}"
        in_block = [e for e in self.events if e.block_number == block_number]
        tx_hashes = list(dict.fromkeys(e.transaction_hash for e in in_block))
        if tx_hash not in tx_hashes:
            tx_hashes.append(tx_hash)

        event = RawEvent(
            keys=[_felt_hex(k) for k in keys],
            data=[_felt_hex(d) for d in data],
            transaction_hash=tx_hash,
            block_number=block_number,
            block_hash=f"0x{block_number:064x}",
            from_address=self.address,
            transaction_index=tx_hashes.index(tx_hash),
            event_index=sum(1 for e in in_block if e.transaction_hash == tx_hash),
        )
        self.events.append(event)
        return event

    def set_view(self, entrypoint: str, calldata: list[int], result: list[int]) -> None:
        """Fix the return felts of a view call."""
        self.views[(entrypoint, tuple(calldata))] = list(result)

    def fail_next(self, count: int = 1, retryable: bool = True) -> None:
        """Make the next `count` read calls raise TransportError."""
        for _ in range(count):
            self.pending_failures.append(
                TransportError(
                    "Simulated node failure",
                    code="STUB_SIMULATED_FAILURE",
                    retryable=retryable,
                )
            )

    def _maybe_fail(self) -> None:
        if self.pending_failures:
            raise self.pending_failures.pop(0)

    # =========================================================================
    # ChainProvider
    # =========================================================================

    async def get_events(
        self,
        address: str,
        from_block: int,
        to_block: int,
        keys: list[list[str]] | None = None,
        chunk_size: int = 100,
        continuation_token: str | None = None,
    ) -> EventsPage:
        self.get_events_calls += 1
        self._maybe_fail()

        wanted = None
        if keys and keys[0]:
            wanted = {parse_felt(k) for k in keys[0]}

        matching = [
            e
            for e in self.events
            if from_block <= e.block_number <= to_block
            and (wanted is None or parse_felt(e.keys[0]) in wanted)
        ]

        offset = int(continuation_token) if continuation_token else 0
        page = matching[offset : offset + chunk_size]
        next_offset = offset + len(page)
        token = str(next_offset) if next_offset < len(matching) else None

        logger.debug(
            f"[STUB] get_events {from_block}-{to_block}",
            extra={"from_block": from_block, "to_block": to_block, "count": len(page)},
        )
        return EventsPage(events=page, continuation_token=token)

    async def get_block(self, block_number: int) -> BlockHeader:
        self._maybe_fail()
        if block_number not in self.timestamps:
            raise TransportError(f"Block not found: {block_number}", code="24", retryable=False)
        return BlockHeader(
            block_number=block_number,
            timestamp=self.timestamps[block_number],
            block_hash=f"0x{block_number:064x}",
        )

    async def block_number(self) -> int:
        self._maybe_fail()
        return self.head

    async def get_transaction_status(self, tx_hash: str) -> TransactionStatus | None:
        return self.tx_statuses.get(tx_hash)

    async def call_contract(self, contract_address: str, entrypoint: str, calldata: list[int]) -> list[int]:
        self._maybe_fail()
        result = self.views.get((entrypoint, tuple(calldata)))
        if result is None:
            raise TransportError(f"Contract error: no {entrypoint} result for {calldata}", code="40", retryable=False)
        return list(result)

    # =========================================================================
    # ChainSubmitter
    # =========================================================================

    async def execute(self, contract_address: str, entrypoint: str, calldata: list[int]) -> str:
        tx_hash = f"0x{uuid4().hex}"
        self.submissions.append(
            {
                "contract_address": contract_address,
                "entrypoint": entrypoint,
                "calldata": list(calldata),
                "tx_hash": tx_hash,
            }
        )

        logger.info(f"[STUB] execute {entrypoint}", extra={"tx_hash": tx_hash})

        if entrypoint in self.fail_on_execute:
            raise SubmissionError(f"Simulated rejection of {entrypoint}", tx_hash=tx_hash)

        if self.tx_outcome == "pending":
            self.tx_statuses[tx_hash] = TransactionStatus(FinalityStatus.RECEIVED)
        elif self.tx_outcome == "reverted":
            self.tx_statuses[tx_hash] = TransactionStatus(
                FinalityStatus.ACCEPTED_ON_L2,
                ExecutionStatus.REVERTED,
                failure_reason="Simulated revert",
            )
        else:
            block = self.mine()
            if entrypoint == "liquidate":
                self.emit([AGREEMENT_LIQUIDATED], calldata[:2], tx_hash=tx_hash, block_number=block)
            self.tx_statuses[tx_hash] = TransactionStatus(
                FinalityStatus.ACCEPTED_ON_L2,
                ExecutionStatus.SUCCEEDED,
            )

        return tx_hash

    async def wait_for_transaction(self, tx_hash: str, poll_interval: float = 5.0) -> TransactionStatus:
        while True:
            status = self.tx_statuses.get(tx_hash)
            if status is not None:
                if status.execution_status == ExecutionStatus.REVERTED:
                    raise SubmissionError(f"Transaction reverted: {status.failure_reason}", tx_hash=tx_hash)
                if status.is_included:
                    return status
            await asyncio.sleep(poll_interval)


def _felt_hex(value: str | int) -> str:
    return hex(parse_felt(value))
