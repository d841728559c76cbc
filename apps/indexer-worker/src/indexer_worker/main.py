"""
Indexer Worker - chain events to derived state

This worker:
1. Reads the cursor
2. Fetches the next bounded block range from the node
3. Decodes and reconciles events block by block
4. Advances the cursor
5. Reads loan terms from the contract for rows that lack them

Runs a single sequential pipeline; do not run two replicas against the
same database.
"""

import asyncio
import logging
import signal
import sys

from stela_base.db import get_db
from stela_base.logging import setup_logging
from stela_base.settings import get_settings
from stela_indexer.chain.rpc import StarknetRpcProvider
from stela_indexer.errors import MalformedEventError, OrderingViolation, RangeFetchError
from stela_indexer.fetcher import RetryPolicy
from stela_indexer.pipeline import IndexerPipeline
from stela_indexer.terms import TermsReader, TermsSync

setup_logging()
logger = logging.getLogger(__name__)

# Catch-up passes run back to back; this is the pause between them
BUSY_INTERVAL = 0.1

# Graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    global shutdown_requested
    logger.info(f"Received signal {signum}, requesting shutdown...")
    shutdown_requested = True


signal.signal(signal.SIGTERM, signal_handler)
signal.signal(signal.SIGINT, signal_handler)


async def sleep_unless_shutdown(seconds: float) -> None:
    remaining = seconds
    while remaining > 0 and not shutdown_requested:
        step = min(1.0, remaining)
        await asyncio.sleep(step)
        remaining -= step


async def run() -> int:
    settings = get_settings()
    provider = StarknetRpcProvider(settings.rpc_url, timeout=settings.rpc_timeout_seconds)
    retry = RetryPolicy(
        max_attempts=settings.fetch_max_attempts,
        backoff_base=settings.fetch_backoff_base_seconds,
        backoff_max=settings.fetch_backoff_max_seconds,
    )
    reader = TermsReader(provider, settings.stela_address, retry)
    absent_terms: set[str] = set()

    logger.info(
        f"Starting indexer worker (contract={settings.stela_address}, "
        f"start_block={settings.start_block}, max_range={settings.max_block_range})"
    )

    try:
        while not shutdown_requested:
            db = next(get_db())
            try:
                pipeline = IndexerPipeline(
                    db,
                    provider,
                    settings.stela_address,
                    start_block=settings.start_block,
                    max_block_range=settings.max_block_range,
                    chunk_size=settings.events_chunk_size,
                    retry=retry,
                )
                report = await pipeline.run_once()
                await TermsSync(db, reader, settings.terms_batch_size, absent=absent_terms).sync_missing()

                if report.caught_up:
                    await sleep_unless_shutdown(settings.indexer_poll_interval_seconds)
                else:
                    await asyncio.sleep(BUSY_INTERVAL)

            except (MalformedEventError, OrderingViolation) as e:
                # Needs an operator: ABI drift or a cursor reset
                logger.error(f"Fatal indexing error, stopping: {e}", exc_info=True)
                return 1
            except RangeFetchError as e:
                logger.error(
                    f"Range fetch failed, retrying next poll: {e}",
                    extra={"from_block": e.from_block, "to_block": e.to_block, "attempt": e.attempts},
                )
                await sleep_unless_shutdown(settings.indexer_poll_interval_seconds)
            except Exception as e:
                logger.error(f"Error in indexer loop: {e}", exc_info=True)
                db.rollback()
                await sleep_unless_shutdown(settings.indexer_poll_interval_seconds)
            finally:
                db.close()
    finally:
        await provider.close()

    logger.info("Indexer worker shutting down gracefully")
    return 0


def main():
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
