"""
Tests for Ticker: due-task selection, run claims and the polling loop.
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from escrow.models import PeriodicTaskRun
from escrow.scheduler import RunStatus, TaskRegistry, Ticker


@pytest.fixture
def task_registry():
    return TaskRegistry()


@pytest.fixture
def calls():
    return []


@pytest.fixture
def ticker(task_registry, calls):
    @task_registry.periodic("every_hour", every=timedelta(hours=1))
    def every_hour(now):
        calls.append(("every_hour", now))
        return {"released": 2}

    @task_registry.periodic("every_day", every=timedelta(days=1))
    def every_day(now):
        calls.append(("every_day", now))
        return 7

    return Ticker(task_registry)


def _run(name) -> PeriodicTaskRun:
    return PeriodicTaskRun.objects.get(name=name)


@pytest.mark.django_db
class TestTick:
    def test_first_tick_runs_everything(self, ticker, calls):
        now = timezone.now()

        ran = ticker.tick(now)

        assert ran == {"every_day": RunStatus.SUCCEEDED, "every_hour": RunStatus.SUCCEEDED}
        assert sorted(name for name, _ in calls) == ["every_day", "every_hour"]
        run = _run("every_hour")
        assert run.last_run_at == now
        assert run.last_status == RunStatus.SUCCEEDED
        assert run.last_result == {"released": 2}
        assert _run("every_day").last_result == {"result": 7}

    def test_interval_respected(self, ticker, calls):
        now = timezone.now()
        ticker.tick(now)
        calls.clear()

        assert ticker.tick(now + timedelta(minutes=59)) == {}
        assert ticker.tick(now + timedelta(hours=1)) == {"every_hour": RunStatus.SUCCEEDED}
        assert [name for name, _ in calls] == ["every_hour"]

    def test_failing_task_does_not_stop_others(self, task_registry, calls):
        def broken(now):
            raise RuntimeError("database gone")

        task_registry.register("a_broken", broken, timedelta(minutes=1))
        task_registry.register("b_ok", lambda now: calls.append("ok"), timedelta(minutes=1))

        ran = Ticker(task_registry).tick()

        assert ran == {"a_broken": RunStatus.FAILED, "b_ok": RunStatus.SUCCEEDED}
        assert calls == ["ok"]
        run = _run("a_broken")
        assert run.last_error == "RuntimeError: database gone"
        assert run.last_finished_at is not None

    def test_failed_task_waits_for_next_interval(self, task_registry):
        func = MagicMock(side_effect=RuntimeError("boom"))
        task_registry.register("job", func, timedelta(hours=1))
        ticker = Ticker(task_registry)
        now = timezone.now()

        ticker.tick(now)
        ticker.tick(now + timedelta(minutes=1))

        assert func.call_count == 1

    def test_concurrent_ticker_does_not_rerun(self, ticker, task_registry, calls):
        now = timezone.now()
        ticker.tick(now)

        assert Ticker(task_registry).tick(now) == {}
        assert len(calls) == 2


@pytest.mark.django_db
class TestRunTask:
    def test_not_due_returns_none(self, ticker, calls):
        now = timezone.now()
        ticker.tick(now)

        assert ticker.run_task("every_day", now=now + timedelta(hours=1)) is None

    def test_force_ignores_interval(self, ticker, calls):
        now = timezone.now()
        ticker.tick(now)
        calls.clear()

        status = ticker.run_task("every_day", now=now + timedelta(hours=1), force=True)

        assert status == RunStatus.SUCCEEDED
        assert calls == [("every_day", now + timedelta(hours=1))]

    def test_unknown_task(self, ticker):
        with pytest.raises(LookupError):
            ticker.run_task("missing")


@pytest.mark.django_db
class TestStatus:
    def test_never_run_is_due(self, ticker):
        now = timezone.now()

        report = {row["name"]: row for row in ticker.status(now)}

        assert report["every_hour"]["last_run_at"] is None
        assert report["every_hour"]["is_due"] is True
        assert report["every_hour"]["interval_seconds"] == 3600

    def test_after_run(self, ticker):
        now = timezone.now()
        ticker.tick(now)

        report = {row["name"]: row for row in ticker.status(now + timedelta(minutes=30))}

        assert report["every_hour"]["next_run_at"] == now + timedelta(hours=1)
        assert report["every_hour"]["is_due"] is False
        assert report["every_hour"]["last_status"] == RunStatus.SUCCEEDED


class TestRunForever:
    def test_stops_when_event_set(self, task_registry):
        stop_event = threading.Event()
        ticker = Ticker(task_registry)

        def tick_once(now=None):
            stop_event.set()
            return {}

        with patch.object(ticker, "tick", side_effect=tick_once) as tick:
            ticker.run_forever(poll_seconds=0, stop_event=stop_event)

        assert tick.call_count == 1

    def test_survives_tick_errors(self, task_registry):
        stop_event = threading.Event()
        ticker = Ticker(task_registry)
        outcomes = [RuntimeError("db down"), None]

        def tick_then_stop(now=None):
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome
            stop_event.set()
            return {}

        with patch.object(ticker, "tick", side_effect=tick_then_stop) as tick:
            ticker.run_forever(poll_seconds=0, stop_event=stop_event)

        assert tick.call_count == 2
