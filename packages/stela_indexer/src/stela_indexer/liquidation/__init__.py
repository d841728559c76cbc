"""Liquidation of overdue agreements."""

from stela_indexer.liquidation.scheduler import (
    LiquidationCandidate,
    LiquidationScheduler,
    SchedulerState,
    TickReport,
)

__all__ = [
    "LiquidationCandidate",
    "LiquidationScheduler",
    "SchedulerState",
    "TickReport",
]
