"""
Unit tests for TimerService and the job wiring in build_timer_service.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from crewnotify.src.config.settings import AppSettings
from crewnotify.src.services.notification_service import PreferenceEngine
from crewnotify.src.services.scheduled_dispatcher import DispatchSummary
from crewnotify.src.services.timer_service import TimerService, build_timer_service
from crewnotify.src.services.trigger_service import MaterialLevel, TodoSnapshot


NOW = datetime(2026, 3, 2, 12, 0, 0)


class FakeTriggerSource:
    """TriggerSource returning fixed snapshots."""

    def __init__(self, todos=None, materials=None):
        self._todos = todos or []
        self._materials = materials or []
        self.notified_todo_ids = []

    def tasks(self):
        return []

    def todos(self, now):
        return list(self._todos)

    def contract_usage(self):
        return []

    def inventory_usage(self):
        return []

    def material_levels(self):
        return list(self._materials)

    def mark_todos_notified(self, todo_ids):
        self.notified_todo_ids.extend(todo_ids)


@pytest.fixture
def timer(test_session_factory, delivery_router):
    return TimerService(test_session_factory, router=delivery_router)


@pytest.fixture
def settings():
    return AppSettings(DISPATCH_INTERVAL_SECONDS=30, DISPATCH_BATCH_SIZE=50)


# ============================================================================
# Test: Registration
# ============================================================================


class TestRegister:

    def test_register_job(self, timer):
        job = timer.register("noop", 10, lambda engine, now: None)

        assert job.name == "noop"
        assert [j.name for j in timer.jobs] == ["noop"]

    def test_duplicate_name(self, timer):
        timer.register("noop", 10, lambda engine, now: None)
        with pytest.raises(ValueError):
            timer.register("noop", 20, lambda engine, now: None)

    @pytest.mark.parametrize("interval", [0, -5])
    def test_interval_must_be_positive(self, timer, interval):
        with pytest.raises(ValueError):
            timer.register("noop", interval, lambda engine, now: None)


# ============================================================================
# Test: run_once
# ============================================================================


class TestRunOnce:

    def test_passes_engine_and_time(self, timer, delivery_router):
        func = MagicMock(return_value="done")
        timer.register("probe", 10, func)

        assert timer.run_once("probe", now=NOW) == "done"

        engine, now = func.call_args.args
        assert isinstance(engine, PreferenceEngine)
        assert engine.store.router is delivery_router
        assert now == NOW
        job = timer.jobs[0]
        assert (job.run_count, job.last_run_at, job.last_error) == (1, NOW, None)

    def test_unknown_job(self, timer):
        with pytest.raises(KeyError):
            timer.run_once("missing")

    def test_failure_is_recorded_and_raised(self, timer):
        timer.register("broken", 10, MagicMock(side_effect=RuntimeError("sweep failed")))

        with pytest.raises(RuntimeError):
            timer.run_once("broken", now=NOW)

        job = timer.jobs[0]
        assert job.last_error == "sweep failed"
        assert job.run_count == 0

    def test_session_closed_after_run(self, delivery_router):
        session = MagicMock()
        timer = TimerService(lambda: session, router=delivery_router)
        timer.register("noop", 10, lambda engine, now: None)

        timer.run_once("noop", now=NOW)

        session.close.assert_called_once()


# ============================================================================
# Test: build_timer_service
# ============================================================================


class TestBuildTimerService:

    def test_dispatch_job_only_without_source(self, test_session_factory, delivery_router, settings):
        timer = build_timer_service(test_session_factory, router=delivery_router, settings=settings)

        assert [(j.name, j.interval_seconds) for j in timer.jobs] == [("dispatch_scheduled", 30)]
        assert timer.retry_policy.max_attempts == settings.max_delivery_attempts

    def test_registers_trigger_sweeps_with_source(self, test_session_factory, delivery_router, settings):
        timer = build_timer_service(
            test_session_factory, router=delivery_router, settings=settings, source=FakeTriggerSource()
        )

        assert {j.name for j in timer.jobs} == {
            "dispatch_scheduled",
            "deadline_approaching",
            "deadline_overdue",
            "daily_summary",
            "todo_reminders",
            "contract_exceeded",
            "inventory_exceeded",
            "low_stock",
        }

    def test_dispatch_job_delivers_due_records(
        self, test_session_factory, delivery_router, settings, engine, reachable_recipient, push_channel
    ):
        engine.store.create_and_send({
            "recipient_id": reachable_recipient.id,
            "title": "Schedule change",
            "message": "Tomorrow starts at 07:00.",
            "type": "schedule_change",
            "push_token": engine.preferences.get_or_create(reachable_recipient.id).push_token,
            "scheduled_for": NOW + timedelta(minutes=5),
        }, now=NOW)
        timer = build_timer_service(test_session_factory, router=delivery_router, settings=settings)

        summary = timer.run_once("dispatch_scheduled", now=NOW + timedelta(minutes=10))

        assert isinstance(summary, DispatchSummary)
        assert summary.delivered == 1
        assert len(push_channel.calls) == 1

    def test_todo_job_marks_processed(self, test_session_factory, delivery_router, settings, recipient):
        source = FakeTriggerSource(todos=[TodoSnapshot("D-1", "Order gloves", recipient.id, reminder_date=NOW)])
        timer = build_timer_service(test_session_factory, router=delivery_router, settings=settings, source=source)

        result = timer.run_once("todo_reminders", now=NOW)

        assert result.notified == 1
        assert source.notified_todo_ids == ["D-1"]

    def test_low_stock_job_uses_configured_threshold(
        self, test_session_factory, delivery_router, recipient
    ):
        settings = AppSettings(LOW_STOCK_THRESHOLD=10)
        source = FakeTriggerSource(materials=[MaterialLevel("M-1", "Screws", 8, [recipient.id])])
        timer = build_timer_service(test_session_factory, router=delivery_router, settings=settings, source=source)

        assert timer.run_once("low_stock", now=NOW).notified == 1


# ============================================================================
# Test: start / stop
# ============================================================================


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_runs_jobs_until_stopped(self, timer):
        timer.register("probe", 3600, lambda engine, now: None)

        await timer.start()
        assert timer.running
        for _ in range(500):
            if timer.jobs[0].run_count:
                break
            await asyncio.sleep(0.01)

        await timer.stop()
        assert not timer.running
        assert timer.jobs[0].run_count == 1

    @pytest.mark.asyncio
    async def test_failing_job_keeps_loop_alive(self, timer):
        calls = []

        def flaky(engine, now):
            calls.append(now)
            raise RuntimeError("sweep failed")

        timer.register("flaky", 0.01, flaky)

        await timer.start()
        for _ in range(200):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        await timer.stop()

        assert len(calls) >= 2
        assert timer.jobs[0].last_error == "sweep failed"

    @pytest.mark.asyncio
    async def test_stop_without_start(self, timer):
        await timer.stop()
        assert not timer.running
