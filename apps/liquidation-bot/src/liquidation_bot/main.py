"""
Liquidation Bot - overdue agreements to liquidate transactions

This worker:
1. Every interval, queries filled agreements past signed_at + duration
2. Submits liquidate for each, one at a time
3. Waits for inclusion under a timeout, logging failures per agreement

Reads the indexer tables only. With the Redis lock enabled, replicas take
turns per tick.
"""

import asyncio
import logging
import signal
import sys

from stela_base.db import get_sessionmaker
from stela_base.logging import setup_logging
from stela_base.redis import RedisLease, get_redis_client
from stela_base.settings import get_settings
from stela_indexer.chain.account import StarknetAccountSubmitter
from stela_indexer.chain.rpc import StarknetRpcProvider
from stela_indexer.fetcher import RetryPolicy
from stela_indexer.liquidation.scheduler import LiquidationScheduler

setup_logging()
logger = logging.getLogger(__name__)

LOCK_NAME = "stela:liquidation:tick"

# Graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    global shutdown_requested
    logger.info(f"Received signal {signum}, requesting shutdown...")
    shutdown_requested = True


signal.signal(signal.SIGTERM, signal_handler)
signal.signal(signal.SIGINT, signal_handler)


async def run() -> int:
    settings = get_settings()

    if not settings.bot_address or not settings.bot_private_key:
        logger.error("BOT_ADDRESS and BOT_PRIVATE_KEY must be set")
        return 1

    provider = StarknetRpcProvider(settings.rpc_url, timeout=settings.rpc_timeout_seconds)
    submitter = StarknetAccountSubmitter(
        rpc_url=settings.rpc_url,
        address=settings.bot_address,
        private_key=settings.bot_private_key,
        chain_id=settings.chain_id,
        provider=provider,
    )

    lock = None
    if settings.liquidation_lock_enabled:
        # Outlives a tick that waits tx_timeout for every candidate
        ttl_seconds = settings.liquidation_interval_seconds + settings.tx_timeout_seconds
        lock = RedisLease(get_redis_client(), LOCK_NAME, ttl_ms=int(ttl_seconds * 1000))

    scheduler = LiquidationScheduler(
        session_factory=get_sessionmaker(),
        submitter=submitter,
        contract_address=settings.stela_address,
        interval=settings.liquidation_interval_seconds,
        batch_size=settings.liquidation_batch_size,
        tx_timeout=settings.tx_timeout_seconds,
        poll_interval=settings.tx_poll_interval_seconds,
        lock=lock,
        retry=RetryPolicy(
            max_attempts=settings.fetch_max_attempts,
            backoff_base=settings.fetch_backoff_base_seconds,
            backoff_max=settings.fetch_backoff_max_seconds,
        ),
    )

    logger.info(
        f"Starting liquidation bot (contract={settings.stela_address}, "
        f"interval={settings.liquidation_interval_seconds}s, batch={settings.liquidation_batch_size}, "
        f"lock={'on' if lock else 'off'})"
    )

    try:
        await scheduler.run_forever(lambda: shutdown_requested)
    finally:
        await submitter.close()

    logger.info("Liquidation bot shutting down gracefully")
    return 0


def main():
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
