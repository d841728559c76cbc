"""
Tests for the liquidation scheduler.
"""

import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from stela_indexer.chain.stub import StubChain
from stela_indexer.contracts.u256 import to_u256, u256_to_hex
from stela_indexer.decoder import decode
from stela_indexer.errors import SubmissionError, TransportError
from stela_indexer.fetcher import RetryPolicy
from stela_indexer.liquidation.scheduler import LiquidationScheduler, SchedulerState
from stela_indexer.persistence.models import Agreement
from stela_indexer.persistence.repo import LiquidationQueries

BIG_ID = 3 * 2**128 + 17


def add_agreement(db, agreement_id: int, status: str = "filled", signed_at: int = 1000, duration: int | None = 500):
    db.add(
        Agreement(
            id=u256_to_hex(agreement_id),
            status=status,
            issued_debt_percentage=10_000,
            signed_at=signed_at,
            duration=duration,
        )
    )
    db.commit()


def make_scheduler(session_factory, submitter, **kwargs) -> LiquidationScheduler:
    kwargs.setdefault("tx_timeout", 1.0)
    kwargs.setdefault("poll_interval", 0.01)
    return LiquidationScheduler(
        session_factory=session_factory,
        submitter=submitter,
        contract_address="0x5e1a",
        **kwargs,
    )


class TestLiquidationQuery:
    """Tests for the overdue query."""

    def test_overdue_when_term_elapsed(self, db_session):
        add_agreement(db_session, 1, signed_at=1000, duration=500)
        assert [a.id for a in LiquidationQueries(db_session).find_liquidatable(1600)] == [u256_to_hex(1)]

    def test_not_overdue_before_term(self, db_session):
        add_agreement(db_session, 1, signed_at=1000, duration=700)
        assert LiquidationQueries(db_session).find_liquidatable(1600) == []

    def test_exact_deadline_is_not_overdue(self, db_session):
        add_agreement(db_session, 1, signed_at=1000, duration=600)
        assert LiquidationQueries(db_session).find_liquidatable(1600) == []

    def test_only_filled_with_terms(self, db_session):
        add_agreement(db_session, 1, status="partial")
        add_agreement(db_session, 2, status="liquidated")
        add_agreement(db_session, 3, duration=None)
        assert LiquidationQueries(db_session).find_liquidatable(10_000) == []

    def test_ordered_by_deadline_and_capped(self, db_session):
        add_agreement(db_session, 1, signed_at=1000, duration=300)
        add_agreement(db_session, 2, signed_at=1000, duration=100)
        add_agreement(db_session, 3, signed_at=1000, duration=200)

        rows = LiquidationQueries(db_session).find_liquidatable(5000, limit=2)

        assert [r.id for r in rows] == [u256_to_hex(2), u256_to_hex(3)]


class TestTick:
    """Tests for a single scheduler tick."""

    @pytest.mark.asyncio
    async def test_liquidates_overdue_agreement(self, db_session, session_factory):
        add_agreement(db_session, BIG_ID)
        chain = StubChain()
        scheduler = make_scheduler(session_factory, chain)

        report = await scheduler.tick(now=1600)

        assert report.candidates == 1
        assert list(report.liquidated) == [u256_to_hex(BIG_ID)]
        submission = chain.submissions[0]
        assert submission["entrypoint"] == "liquidate"
        assert submission["contract_address"] == "0x5e1a"
        assert submission["calldata"] == list(to_u256(BIG_ID))
        assert scheduler.state == SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_liquidation_event_flows_back_through_chain(self, db_session, session_factory):
        add_agreement(db_session, 5)
        chain = StubChain()

        await make_scheduler(session_factory, chain).tick(now=1600)

        event = decode(chain.events[-1])
        assert event.subject_id == 5
        assert event.tx_hash == chain.submissions[0]["tx_hash"]
        # The scheduler itself never writes derived state
        assert db_session.query(Agreement).one().status == "filled"

    @pytest.mark.asyncio
    async def test_timeout_is_logged_and_batch_continues(self, db_session, session_factory):
        add_agreement(db_session, 1, duration=100)
        add_agreement(db_session, 2, duration=200)
        chain = StubChain(tx_outcome="pending")

        report = await make_scheduler(session_factory, chain, tx_timeout=0.05).tick(now=5000)

        assert report.timed_out == [u256_to_hex(1), u256_to_hex(2)]
        assert report.liquidated == {}
        assert len(chain.submissions) == 2

    @pytest.mark.asyncio
    async def test_reverted_transaction_is_a_failure(self, db_session, session_factory):
        add_agreement(db_session, 1)
        chain = StubChain(tx_outcome="reverted")

        report = await make_scheduler(session_factory, chain).tick(now=1600)

        assert report.failed == [u256_to_hex(1)]

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_batch(self, db_session, session_factory):
        add_agreement(db_session, 1, duration=100)
        add_agreement(db_session, 2, duration=200)
        submitter = MagicMock()
        submitter.execute = AsyncMock(side_effect=[SubmissionError("rejected"), "0xbeef"])
        submitter.wait_for_transaction = AsyncMock(return_value=None)

        report = await make_scheduler(session_factory, submitter).tick(now=5000)

        assert report.failed == [u256_to_hex(1)]
        assert report.liquidated == {u256_to_hex(2): "0xbeef"}
        assert submitter.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_abort_batch(self, db_session, session_factory):
        add_agreement(db_session, 1, duration=100)
        add_agreement(db_session, 2, duration=200)
        submitter = MagicMock()
        submitter.execute = AsyncMock(side_effect=[RuntimeError("boom"), "0xbeef"])
        submitter.wait_for_transaction = AsyncMock(return_value=None)

        report = await make_scheduler(session_factory, submitter).tick(now=5000)

        assert report.failed == [u256_to_hex(1)]
        assert u256_to_hex(2) in report.liquidated

    @pytest.mark.asyncio
    async def test_nothing_due(self, db_session, session_factory):
        add_agreement(db_session, 1, duration=10_000)
        chain = StubChain()

        report = await make_scheduler(session_factory, chain).tick(now=1600)

        assert report.candidates == 0
        assert chain.submissions == []


class TestSubmitRetry:
    """Tests for transport retries while submitting."""

    @pytest.mark.asyncio
    async def test_retryable_transport_error_is_retried_in_same_tick(self, db_session, session_factory):
        add_agreement(db_session, 1)
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        submitter = MagicMock()
        submitter.execute = AsyncMock(side_effect=[TransportError("reset", code="HTTP_ERROR", retryable=True), "0xbeef"])
        submitter.wait_for_transaction = AsyncMock(return_value=None)
        retry = RetryPolicy(max_attempts=3, backoff_base=0.5, sleep=record_sleep)

        report = await make_scheduler(session_factory, submitter, retry=retry).tick(now=1600)

        assert report.liquidated == {u256_to_hex(1): "0xbeef"}
        assert report.failed == []
        assert submitter.execute.await_count == 2
        assert delays == [0.5]

    @pytest.mark.asyncio
    async def test_non_retryable_transport_error_is_not_retried(self, db_session, session_factory):
        add_agreement(db_session, 1)
        submitter = MagicMock()
        submitter.execute = AsyncMock(side_effect=TransportError("bad request", code="400", retryable=False))
        retry = RetryPolicy(max_attempts=3, sleep=AsyncMock())

        report = await make_scheduler(session_factory, submitter, retry=retry).tick(now=1600)

        assert report.failed == [u256_to_hex(1)]
        assert submitter.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, db_session, session_factory):
        add_agreement(db_session, 1)
        submitter = MagicMock()
        submitter.execute = AsyncMock(side_effect=TransportError("timeout", code="TIMEOUT", retryable=True))
        retry = RetryPolicy(max_attempts=3, sleep=AsyncMock())

        report = await make_scheduler(session_factory, submitter, retry=retry).tick(now=1600)

        assert report.failed == [u256_to_hex(1)]
        assert submitter.execute.await_count == 3


class TestBlockingCalls:
    """Database and redis calls stay off the event loop thread."""

    @pytest.mark.asyncio
    async def test_query_and_lock_run_in_worker_threads(self, db_session, session_factory):
        add_agreement(db_session, 1)
        loop_thread = threading.get_ident()
        threads = {}

        def tracked_factory():
            threads["query"] = threading.get_ident()
            return session_factory()

        lock = MagicMock()
        lock.acquire.side_effect = lambda: threads.setdefault("acquire", threading.get_ident()) is not None
        lock.release.side_effect = lambda: threads.setdefault("release", threading.get_ident())

        report = await make_scheduler(tracked_factory, StubChain(), lock=lock).tick(now=1600)

        assert report.candidates == 1
        assert set(threads) == {"query", "acquire", "release"}
        assert loop_thread not in threads.values()


class TestOverlap:
    """Tests for tick exclusion."""

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, session_factory):
        scheduler = make_scheduler(session_factory, StubChain())
        scheduler._running = True

        report = await scheduler.tick(now=1600)

        assert report.skipped

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere_skips(self, session_factory):
        lock = MagicMock()
        lock.acquire.return_value = False

        report = await make_scheduler(session_factory, StubChain(), lock=lock).tick(now=1600)

        assert report.skipped
        lock.release.assert_not_called()

    @pytest.mark.asyncio
    async def test_lock_released_after_tick(self, db_session, session_factory):
        add_agreement(db_session, 1)
        lock = MagicMock()
        lock.acquire.return_value = True

        report = await make_scheduler(session_factory, StubChain(), lock=lock).tick(now=1600)

        assert not report.skipped
        lock.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_run_forever_stops(self, session_factory):
        scheduler = make_scheduler(session_factory, StubChain(), interval=0.01)
        calls = []

        def should_stop():
            calls.append(1)
            return len(calls) > 3

        await scheduler.run_forever(should_stop)

        assert scheduler.state == SchedulerState.IDLE
