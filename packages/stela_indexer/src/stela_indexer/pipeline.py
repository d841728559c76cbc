"""
Ingestion pipeline.

One pass: read the cursor, fetch the next bounded block range, decode,
reconcile block by block, advance the cursor to the end of the range.
The indexer worker calls run_once() in a loop.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy.orm import Session

from stela_indexer.chain.base import ChainProvider, RawEvent
from stela_indexer.contracts.events import DomainEvent, UnrecognizedEvent
from stela_indexer.decoder import decode
from stela_indexer.errors import MalformedEventError, OrderingViolation, RangeFetchError
from stela_indexer.fetcher import BlockTimestamps, LogFetcher, RetryPolicy
from stela_indexer.persistence.cursor import CursorStore
from stela_indexer.reconciler import ApplyOutcome, BlockInfo, StateReconciler

logger = logging.getLogger(__name__)


@dataclass
class PassReport:
    """What a single pass did."""

    from_block: int
    to_block: int | None = None
    head: int | None = None
    events: int = 0
    applied: int = 0
    unchanged: int = 0
    duplicates: int = 0
    unrecognized: int = 0

    @property
    def idle(self) -> bool:
        """Nothing new on chain."""
        return self.to_block is None

    @property
    def caught_up(self) -> bool:
        return self.idle or self.to_block == self.head

    def count(self, outcome: ApplyOutcome) -> None:
        if outcome == ApplyOutcome.APPLIED:
            self.applied += 1
        elif outcome == ApplyOutcome.UNCHANGED:
            self.unchanged += 1
        else:
            self.duplicates += 1


class IndexerPipeline:
    """
    Fetcher -> Decoder -> Reconciler for one contract.

    Args:
        db: Session used for the cursor and all reconciliation writes
        provider: Chain node
        address: Protocol contract address
        start_block: First block to index when no cursor exists
        max_block_range: Upper bound on blocks per pass
        chunk_size: Event page size
        retry: Transport retry policy
    """

    def __init__(
        self,
        db: Session,
        provider: ChainProvider,
        address: str,
        start_block: int = 0,
        max_block_range: int = 500,
        chunk_size: int = 100,
        retry: RetryPolicy | None = None,
    ):
        self.db = db
        self.provider = provider
        self.start_block = start_block
        self.max_block_range = max_block_range
        self.retry = retry or RetryPolicy()
        self.cursor = CursorStore(db)
        self.reconciler = StateReconciler(db, self.cursor)
        self.fetcher = LogFetcher(provider, address, chunk_size=chunk_size, retry=self.retry)

    def next_range(self, head: int) -> tuple[int, int] | None:
        """The block range the next pass covers, or None when caught up."""
        last = self.cursor.get()
        from_block = last + 1 if last is not None else self.start_block
        if from_block > head:
            return None
        return from_block, min(head, from_block + self.max_block_range - 1)

    async def run_once(self) -> PassReport:
        head = await self.retry.run(self.provider.block_number, -1, -1)
        block_range = self.next_range(head)

        if block_range is None:
            last = self.cursor.get()
            return PassReport(from_block=last + 1 if last is not None else self.start_block, head=head)

        from_block, to_block = block_range
        report = PassReport(from_block=from_block, to_block=to_block, head=head)

        try:
            raw_events = await self.fetcher.fetch_range(from_block, to_block)
            report.events = len(raw_events)

            timestamps = BlockTimestamps(self.provider, self.retry)
            for block_number, raws in group_by_block(raw_events):
                events = self._decode_block(raws, report)
                if not events:
                    continue

                block = BlockInfo(block_number, await timestamps.get(block_number))
                for outcome in self.reconciler.apply_block(block, events):
                    report.count(outcome)

            self.reconciler.advance_cursor(to_block)

        except (RangeFetchError, MalformedEventError, OrderingViolation) as e:
            logger.error(
                f"Indexing pass failed: {e}",
                extra={"from_block": from_block, "to_block": to_block},
            )
            raise

        logger.info(
            f"Indexed blocks {from_block}-{to_block}: {report.applied} applied, "
            f"{report.unchanged} unchanged, {report.duplicates} duplicates",
            extra={"from_block": from_block, "to_block": to_block, "count": report.events},
        )
        return report

    def _decode_block(self, raws: list[RawEvent], report: PassReport) -> list[DomainEvent]:
        events = []
        for raw in raws:
            event = decode(raw)
            if isinstance(event, UnrecognizedEvent):
                report.unrecognized += 1
                logger.warning(
                    f"Skipping unrecognized event {event.selector}",
                    extra={
                        "selector": event.selector,
                        "tx_hash": event.tx_hash,
                        "block_number": event.block_number,
                    },
                )
                continue
            events.append(event)
        return events


def group_by_block(events: list[RawEvent]) -> list[tuple[int, list[RawEvent]]]:
    """Group events by block, ascending, each block sorted by the fetcher's log_index (stable)."""
    blocks: dict[int, list[RawEvent]] = defaultdict(list)
    for event in events:
        blocks[event.block_number].append(event)

    return [
        (number, sorted(blocks[number], key=lambda e: e.log_index if e.log_index is not None else -1))
        for number in sorted(blocks)
    ]
