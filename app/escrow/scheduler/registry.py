"""
Periodic task registry and ticker.

Escrow maintenance jobs (hold expiry, scheduled payouts, dispute escalation,
webhook retries) register themselves here with a name and an interval. The
registry knows nothing about Celery: the Ticker decides what is due and runs
it, and is driven either by Celery beat (escrow.tasks.scheduler_tick) or by
run_forever() in a plain process.

Every run is claimed with a conditional update of PeriodicTaskRun.last_run_at,
so any number of tickers can run side by side and each task still runs once
per interval.

Configuration (via settings):
- ESCROW_PERIODIC_INTERVALS: {task name: seconds} overrides

Usage:
    from escrow.scheduler import registry

    @registry.periodic("release_expired_holds", every=timedelta(hours=6))
    def release_expired_holds(now):
        return HoldService.release_expired_holds(now)

    Ticker().tick()
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from escrow.models import PeriodicTaskRun

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

logger = logging.getLogger(__name__)


class RunStatus:
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PeriodicTask:
    name: str
    func: Callable[[datetime], Any]
    every: timedelta


class TaskRegistry:
    """Named periodic tasks with their intervals."""

    def __init__(self):
        self._tasks: dict[str, PeriodicTask] = {}

    def periodic(self, name: str, every: timedelta) -> Callable:
        """
        Decorator registering `func(now)` to run every `every`.

        Re-registering a name replaces the previous task.
        """

        def decorator(func: Callable[[datetime], Any]) -> Callable:
            self.register(name, func, every)
            return func

        return decorator

    def register(self, name: str, func: Callable[[datetime], Any], every: timedelta) -> PeriodicTask:
        if every <= timedelta(0):
            raise ValueError(f"Interval for {name} must be positive")
        task = PeriodicTask(name=name, func=func, every=every)
        self._tasks[name] = task
        logger.debug(f"Registered periodic task {name} every {every}")
        return task

    def unregister(self, name: str) -> None:
        self._tasks.pop(name, None)

    def get(self, name: str) -> PeriodicTask:
        try:
            return self._tasks[name]
        except KeyError:
            raise LookupError(f"No periodic task registered as {name!r}") from None

    def interval_for(self, task: PeriodicTask) -> timedelta:
        overrides = getattr(settings, "ESCROW_PERIODIC_INTERVALS", None) or {}
        if task.name in overrides:
            return timedelta(seconds=overrides[task.name])
        return task.every

    @property
    def names(self) -> list[str]:
        return sorted(self._tasks)

    def __iter__(self) -> Iterator[PeriodicTask]:
        return iter([self._tasks[name] for name in self.names])

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


registry = TaskRegistry()


class Ticker:
    """
    Runs due tasks from a TaskRegistry.

    Methods:
        tick: Run every task whose interval has elapsed
        run_task: Run one task by name
        run_forever: Tick on a timer until stop_event is set
        status: Last/next run per task
    """

    def __init__(self, task_registry: TaskRegistry | None = None):
        self.registry = task_registry or registry

    def tick(self, now: datetime | None = None) -> dict[str, str]:
        """
        Run every due task once.

        A failing task is recorded and logged; the others still run.
        Returns {task name: run status} for the tasks that ran.
        """
        now = now or timezone.now()
        ran = {}
        for task in self.registry:
            if self._claim(task, now):
                ran[task.name] = self._run(task, now)
        return ran

    def run_task(self, name: str, now: datetime | None = None, force: bool = False) -> str | None:
        """
        Run one task.

        Without force the interval is respected and None is returned when
        the task isn't due (or another ticker claimed it).
        """
        now = now or timezone.now()
        task = self.registry.get(name)
        if not self._claim(task, now, force=force):
            return None
        return self._run(task, now)

    def run_forever(self, poll_seconds: float = 60, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        logger.info(
            f"Escrow scheduler started with {len(self.registry)} tasks",
            extra={"tasks": self.registry.names, "poll_seconds": poll_seconds},
        )
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                # Database unavailable and similar; try again next poll
                logger.exception(f"Scheduler tick failed: {e}")
            stop_event.wait(poll_seconds)
        logger.info("Escrow scheduler stopped")

    def status(self, now: datetime | None = None) -> list[dict[str, Any]]:
        now = now or timezone.now()
        runs = {run.name: run for run in PeriodicTaskRun.objects.filter(name__in=self.registry.names)}
        report = []
        for task in self.registry:
            interval = self.registry.interval_for(task)
            run = runs.get(task.name)
            last_run_at = run.last_run_at if run else None
            next_run_at = last_run_at + interval if last_run_at else now
            report.append(
                {
                    "name": task.name,
                    "interval_seconds": int(interval.total_seconds()),
                    "last_run_at": last_run_at,
                    "last_finished_at": run.last_finished_at if run else None,
                    "last_status": run.last_status if run else "",
                    "last_error": run.last_error if run else "",
                    "next_run_at": next_run_at,
                    "is_due": next_run_at <= now,
                }
            )
        return report

    # =========================================================================
    # Internals
    # =========================================================================

    def _claim(self, task: PeriodicTask, now: datetime, force: bool = False) -> bool:
        PeriodicTaskRun.objects.get_or_create(name=task.name)
        runs = PeriodicTaskRun.objects.filter(name=task.name)
        if not force:
            cutoff = now - self.registry.interval_for(task)
            runs = runs.filter(Q(last_run_at__isnull=True) | Q(last_run_at__lte=cutoff))
        return runs.update(last_run_at=now, last_status=RunStatus.RUNNING) == 1

    def _run(self, task: PeriodicTask, now: datetime) -> str:
        logger.info(f"Running periodic task {task.name}", extra={"task": task.name})
        error = ""
        result: Any = None
        try:
            result = task.func(now)
            status = RunStatus.SUCCEEDED
        except Exception as e:
            status = RunStatus.FAILED
            error = f"{type(e).__name__}: {e}"
            logger.exception(
                f"Periodic task {task.name} failed: {e}",
                extra={"task": task.name},
            )

        PeriodicTaskRun.objects.filter(name=task.name).update(
            last_finished_at=timezone.now(),
            last_status=status,
            last_error=error,
            last_result=result if isinstance(result, dict) else {"result": result},
        )
        if status == RunStatus.SUCCEEDED:
            logger.info(
                f"Periodic task {task.name} finished",
                extra={"task": task.name, "result": result},
            )
        return status
