"""
Escrow periodic task scheduler.

Public API:
    registry - Process-wide TaskRegistry the escrow workers register into
    TaskRegistry / PeriodicTask - Named tasks with intervals
    Ticker - Runs due tasks (tick / run_task / run_forever / status)
"""

from escrow.scheduler.registry import PeriodicTask, RunStatus, TaskRegistry, Ticker, registry

__all__ = [
    "PeriodicTask",
    "RunStatus",
    "TaskRegistry",
    "Ticker",
    "registry",
]
