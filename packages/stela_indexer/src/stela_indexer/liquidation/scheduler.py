"""
Liquidation scheduler.

Every interval, queries reconciled state for overdue filled agreements and
submits liquidate(id_low, id_high) for each, serially (one nonce at a time),
waiting for inclusion under a hard timeout.

Tick states: idle -> querying -> dispatching -> idle

Retryable transport failures while submitting are retried with backoff;
rejections and inclusion timeouts are not. A timed-out or failed
submission is logged and the batch moves on. The scheduler never writes
derived tables; a successful liquidation flows back through ingestion as
an AgreementLiquidated event.

Database and redis calls are blocking and run in worker threads so they
do not stall inclusion waits on the event loop.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.orm import Session

from stela_base.redis import RedisLease
from stela_indexer.chain.base import ChainSubmitter
from stela_indexer.contracts.u256 import hex_to_u256, to_u256
from stela_indexer.errors import IndexerError
from stela_indexer.fetcher import RetryPolicy
from stela_indexer.persistence.repo import LiquidationQueries

logger = logging.getLogger(__name__)

LIQUIDATE_ENTRYPOINT = "liquidate"


class SchedulerState(str, Enum):
    IDLE = "idle"
    QUERYING = "querying"
    DISPATCHING = "dispatching"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LiquidationCandidate:
    agreement_id: str
    due_at: int


@dataclass
class TickReport:
    skipped: bool = False
    candidates: int = 0
    liquidated: dict[str, str] = field(default_factory=dict)  # agreement_id -> tx_hash
    timed_out: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class LiquidationScheduler:
    """
    Periodic liquidation dispatcher.

    Args:
        session_factory: Returns a new Session; used read-only
        submitter: Signs and sends liquidate transactions
        contract_address: Protocol contract
        interval: Seconds between ticks
        batch_size: Max candidates per tick
        tx_timeout: Seconds to wait for inclusion of each transaction
        poll_interval: Seconds between inclusion checks
        lock: Optional cross-replica lease, held for the duration of a tick
        retry: Backoff for retryable transport failures while submitting
        clock: Returns the current unix time in seconds
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        submitter: ChainSubmitter,
        contract_address: str,
        interval: float = 120.0,
        batch_size: int = 50,
        tx_timeout: float = 120.0,
        poll_interval: float = 5.0,
        lock: RedisLease | None = None,
        retry: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session_factory = session_factory
        self.submitter = submitter
        self.contract_address = contract_address
        self.interval = interval
        self.batch_size = batch_size
        self.tx_timeout = tx_timeout
        self.poll_interval = poll_interval
        self.lock = lock
        self.retry = retry or RetryPolicy()
        self.clock = clock
        self.state = SchedulerState.IDLE
        self._running = False

    def find_candidates(self, now: int) -> list[LiquidationCandidate]:
        db = self.session_factory()
        try:
            agreements = LiquidationQueries(db).find_liquidatable(now, limit=self.batch_size)
            return [LiquidationCandidate(a.id, a.signed_at + a.duration) for a in agreements]
        finally:
            db.rollback()
            db.close()

    async def tick(self, now: int | None = None) -> TickReport:
        """Run one query + dispatch cycle. Overlapping ticks are skipped."""
        if self._running:
            logger.info("Previous liquidation tick still running, skipping")
            return TickReport(skipped=True)

        self._running = True
        locked = False
        report = TickReport()
        try:
            if self.lock is not None:
                locked = await asyncio.to_thread(self.lock.acquire)
                if not locked:
                    logger.info("Liquidation lock held by another replica, skipping")
                    return TickReport(skipped=True)

            self.state = SchedulerState.QUERYING
            now = int(self.clock()) if now is None else now
            candidates = await asyncio.to_thread(self.find_candidates, now)
            report.candidates = len(candidates)

            if candidates:
                logger.info(f"Found {len(candidates)} liquidatable agreements", extra={"count": len(candidates)})

            self.state = SchedulerState.DISPATCHING
            for candidate in candidates:
                await self._liquidate(candidate, report)

            return report
        finally:
            self.state = SchedulerState.IDLE
            self._running = False
            if locked:
                await asyncio.to_thread(self.lock.release)

    async def _liquidate(self, candidate: LiquidationCandidate, report: TickReport) -> None:
        agreement_id = candidate.agreement_id
        low, high = to_u256(hex_to_u256(agreement_id))
        tx_hash = None

        try:
            tx_hash = await self.retry.call(
                lambda: self.submitter.execute(self.contract_address, LIQUIDATE_ENTRYPOINT, [low, high]),
                extra={"agreement_id": agreement_id},
            )
            await asyncio.wait_for(
                self.submitter.wait_for_transaction(tx_hash, self.poll_interval),
                timeout=self.tx_timeout,
            )
            report.liquidated[agreement_id] = tx_hash
            logger.info(
                f"Liquidated {agreement_id}",
                extra={"agreement_id": agreement_id, "tx_hash": tx_hash},
            )
        except asyncio.TimeoutError:
            # Unknown outcome; ingestion picks up the event if it lands
            report.timed_out.append(agreement_id)
            logger.warning(
                f"Liquidation of {agreement_id} not confirmed within {self.tx_timeout}s",
                extra={"agreement_id": agreement_id, "tx_hash": tx_hash},
            )
        except IndexerError as e:
            report.failed.append(agreement_id)
            logger.error(
                f"Failed to liquidate {agreement_id}: {e}",
                extra={"agreement_id": agreement_id, "tx_hash": tx_hash},
            )
        except Exception as e:
            report.failed.append(agreement_id)
            logger.error(
                f"Failed to liquidate {agreement_id}: {e}",
                extra={"agreement_id": agreement_id, "tx_hash": tx_hash},
                exc_info=True,
            )

    async def run_forever(self, should_stop: Callable[[], bool]) -> None:
        """
        Start a tick every interval until should_stop() returns True.

        Ticks are started on schedule even if the previous one is still
        dispatching; tick() skips the overlap.
        """
        tasks: set[asyncio.Task] = set()
        next_tick = time.monotonic()

        def tick_done(task: asyncio.Task) -> None:
            tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Liquidation tick failed: {task.exception()}", exc_info=task.exception())

        while not should_stop():
            if time.monotonic() >= next_tick:
                task = asyncio.create_task(self.tick())
                tasks.add(task)
                task.add_done_callback(tick_done)
                next_tick += self.interval
            await asyncio.sleep(min(1.0, max(0.0, next_tick - time.monotonic())))

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
