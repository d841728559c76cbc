"""
Log fetcher.

Walks the node's event log for one contract in ascending block order,
following the node's opaque continuation token page by page.

Retry policy:
- Retryable TransportError (timeout, connection, 5xx): exponential
  backoff base * 2**attempt, capped, up to max_attempts
- Non-retryable TransportError: fails at once
For block reads both end in RangeFetchError carrying the range and the
last cause; RetryPolicy.call re-raises the TransportError instead.
"""

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from stela_indexer.chain.base import ChainProvider, EventsPage, RawEvent
from stela_indexer.errors import RangeFetchError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2**attempt), self.backoff_max)

    async def call(self, op: Callable[[], Awaitable[T]], extra: dict | None = None) -> T:
        """
        Run op, retrying retryable transport failures.

        The last TransportError is re-raised when it is not retryable or
        attempts are exhausted. Any other exception propagates at once.
        """
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

        attempt = 0
        while True:
            try:
                return await op()
            except TransportError as e:
                attempt += 1
                if not e.retryable or attempt >= self.max_attempts:
                    raise

                delay = self.delay(attempt - 1)
                logger.warning(
                    f"Transport error, retrying in {delay:.1f}s: {e}",
                    extra={**(extra or {}), "attempt": attempt},
                )
                await self.sleep(delay)

    async def run(self, op: Callable[[], Awaitable[T]], from_block: int, to_block: int) -> T:
        """Like call(), but a final transport failure becomes RangeFetchError."""
        calls = 0

        async def counted() -> T:
            nonlocal calls
            calls += 1
            return await op()

        try:
            return await self.call(counted, extra={"from_block": from_block, "to_block": to_block})
        except TransportError as e:
            reason = f"giving up after {calls} attempts: {e}" if e.retryable else str(e)
            raise RangeFetchError(
                f"Blocks {from_block}-{to_block}: {reason}",
                from_block=from_block,
                to_block=to_block,
                attempts=calls,
            ) from e


class LogFetcher:
    """
    Paginated event reader for a single contract.

    Args:
        provider: Chain node
        address: Contract whose events are read
        chunk_size: Page size requested from the node
        keys: Optional selector filter passed through to the node
        retry: Retry policy for transport failures
    """

    def __init__(
        self,
        provider: ChainProvider,
        address: str,
        chunk_size: int = 100,
        keys: list[list[str]] | None = None,
        retry: RetryPolicy | None = None,
    ):
        self.provider = provider
        self.address = address
        self.chunk_size = chunk_size
        self.keys = keys
        self.retry = retry or RetryPolicy()

    async def fetch(
        self,
        from_block: int,
        to_block: int,
        continuation_token: str | None = None,
    ) -> EventsPage:
        """Fetch one page of the range."""
        if from_block < 0:
            raise ValueError(f"from_block must be >= 0, got {from_block}")
        if to_block < from_block:
            raise ValueError(f"to_block {to_block} is before from_block {from_block}")

        return await self.retry.run(
            lambda: self.provider.get_events(
                address=self.address,
                from_block=from_block,
                to_block=to_block,
                keys=self.keys,
                chunk_size=self.chunk_size,
                continuation_token=continuation_token,
            ),
            from_block,
            to_block,
        )

    async def iter_pages(self, from_block: int, to_block: int) -> AsyncIterator[EventsPage]:
        """Yield pages until the node stops returning a continuation token."""
        token: str | None = None
        seen: set[str] = set()

        while True:
            page = await self.fetch(from_block, to_block, token)
            yield page

            token = page.continuation_token
            if not token:
                return
            if token in seen:
                raise RangeFetchError(
                    f"Blocks {from_block}-{to_block}: continuation token {token!r} repeated",
                    from_block=from_block,
                    to_block=to_block,
                )
            seen.add(token)

    async def fetch_range(self, from_block: int, to_block: int) -> list[RawEvent]:
        """
        Collect every event of the range, each stamped with its log_index.

        log_index is the event's position within its block. A block whose
        events all carry (transaction_index, event_index) is ordered by that
        pair; otherwise the node's arrival order is kept, which
        starknet_getEvents returns in chain order.
        """
        blocks: dict[int, list[RawEvent]] = {}

        async for page in self.iter_pages(from_block, to_block):
            for raw in page.events:
                blocks.setdefault(raw.block_number, []).append(raw)

        events: list[RawEvent] = []
        for block_number in sorted(blocks):
            for position, raw in enumerate(chain_order(blocks[block_number])):
                events.append(dataclasses.replace(raw, log_index=position))

        logger.debug(
            f"Fetched {len(events)} events",
            extra={"from_block": from_block, "to_block": to_block, "count": len(events)},
        )
        return events


def chain_order(block_events: list[RawEvent]) -> list[RawEvent]:
    """Order one block's events as they were emitted."""
    if all(e.transaction_index is not None and e.event_index is not None for e in block_events):
        return sorted(block_events, key=lambda e: (e.transaction_index, e.event_index))
    return list(block_events)


class BlockTimestamps:
    """Block timestamp lookups, cached for the lifetime of the instance."""

    def __init__(self, provider: ChainProvider, retry: RetryPolicy | None = None):
        self.provider = provider
        self.retry = retry or RetryPolicy()
        self._cache: dict[int, int] = {}

    async def get(self, block_number: int) -> int:
        if block_number not in self._cache:
            header = await self.retry.run(
                lambda: self.provider.get_block(block_number),
                block_number,
                block_number,
            )
            self._cache[block_number] = header.timestamp
        return self._cache[block_number]
