"""
Timer service: runs the engine's fixed entry points at fixed intervals.

Each registered job gets its own asyncio task that runs the job in a
worker thread, with a fresh database session per run, then waits for its
interval or shutdown. A failing run is logged and the loop continues.
There is no cron syntax; jobs are (name, interval, callable).
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from crewnotify.src.config.settings import AppSettings, get_settings
from crewnotify.src.services.delivery_router import DeliveryRouter, RetryPolicy
from crewnotify.src.services.notification_service import PreferenceEngine
from crewnotify.src.services.scheduled_dispatcher import ScheduledDispatcher
from crewnotify.src.services.trigger_service import TriggerService, TriggerSource
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("scheduler")


JobFunc = Callable[[PreferenceEngine, datetime], Any]


@dataclass
class TimerJob:
    name: str
    interval_seconds: float
    func: JobFunc
    run_count: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None


class TimerService:
    """
    Periodic runner for dispatcher and trigger sweeps.

    Args:
        session_factory: Callable returning a new SQLAlchemy session
        router: Delivery router shared by every run
        retry_policy: Backoff policy for the store
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        router: Optional[DeliveryRouter] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.session_factory = session_factory
        self.router = router
        self.retry_policy = retry_policy
        self._jobs: Dict[str, TimerJob] = {}
        self._tasks: List[asyncio.Task] = []
        self._shutdown_event: Optional[asyncio.Event] = None

    def register(self, name: str, interval_seconds: float, func: JobFunc) -> TimerJob:
        """
        Register a job.

        Raises:
            ValueError: If the name is taken or the interval is not positive
        """
        if name in self._jobs:
            raise ValueError(f"Timer job already registered: {name}")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        job = TimerJob(name=name, interval_seconds=interval_seconds, func=func)
        self._jobs[name] = job
        return job

    @property
    def jobs(self) -> List[TimerJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def run_once(self, name: str, now: Optional[datetime] = None) -> Any:
        """
        Run one job synchronously and return its result.

        Raises:
            KeyError: If no job has that name
        """
        job = self._jobs[name]
        now = now or datetime.utcnow()
        db = self.session_factory()
        try:
            engine = PreferenceEngine(db, router=self.router, retry_policy=self.retry_policy)
            result = job.func(engine, now)
        except Exception as e:
            job.last_error = str(e)
            raise
        finally:
            db.close()

        job.run_count += 1
        job.last_run_at = now
        job.last_error = None
        return result

    async def start(self) -> None:
        """Start one background task per registered job."""
        if self.running:
            return
        self._shutdown_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._job_loop(job), name=f"timer:{job.name}")
            for job in self._jobs.values()
        ]
        logger.info(
            "Timer service started",
            extra={"jobs": {job.name: job.interval_seconds for job in self._jobs.values()}},
        )

    async def stop(self) -> None:
        """Signal shutdown and wait for the job loops to finish."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        for task in self._tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._tasks = []
        logger.info("Timer service stopped")

    async def _job_loop(self, job: TimerJob) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.to_thread(self.run_once, job.name)
            except Exception as e:
                logger.error(
                    f"Timer job failed: {e}",
                    extra={"job": job.name},
                    exc_info=True,
                )

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=job.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass


def _run_dispatch(batch_size: int) -> JobFunc:
    def run(engine: PreferenceEngine, now: datetime):
        return ScheduledDispatcher(engine.store, batch_size=batch_size).process_scheduled_notifications(now=now)
    return run


def register_trigger_sweeps(
    timer: TimerService,
    source: TriggerSource,
    settings: Optional[AppSettings] = None,
) -> None:
    """Register every trigger sweep, pulling snapshots from ``source``."""
    settings = settings or get_settings()

    def approaching(engine: PreferenceEngine, now: datetime):
        return TriggerService(engine).check_approaching_deadlines(source.tasks(), now=now)

    def overdue(engine: PreferenceEngine, now: datetime):
        return TriggerService(engine).check_overdue_deadlines(source.tasks(), now=now)

    def daily_summary(engine: PreferenceEngine, now: datetime):
        return TriggerService(engine).send_daily_summaries(source.tasks(), now=now)

    def todo_reminders(engine: PreferenceEngine, now: datetime):
        result = TriggerService(engine).check_todo_reminders(source.todos(now), now=now)
        if result.processed_ids:
            source.mark_todos_notified(result.processed_ids)
        return result

    def exceeded_contracts(engine: PreferenceEngine, now: datetime):
        return TriggerService(engine).check_exceeded_contracts(source.contract_usage(), now=now)

    def exceeded_inventory(engine: PreferenceEngine, now: datetime):
        return TriggerService(engine).check_exceeded_inventory(source.inventory_usage(), now=now)

    def low_stock(engine: PreferenceEngine, now: datetime):
        return TriggerService(engine, settings.low_stock_threshold).check_low_stock(
            source.material_levels(), now=now
        )

    timer.register("deadline_approaching", settings.deadline_check_interval_seconds, approaching)
    timer.register("deadline_overdue", settings.deadline_check_interval_seconds, overdue)
    timer.register("daily_summary", settings.summary_check_interval_seconds, daily_summary)
    timer.register("todo_reminders", settings.todo_check_interval_seconds, todo_reminders)
    timer.register("contract_exceeded", settings.exceeded_check_interval_seconds, exceeded_contracts)
    timer.register("inventory_exceeded", settings.exceeded_check_interval_seconds, exceeded_inventory)
    timer.register("low_stock", settings.dispatch_interval_seconds, low_stock)


def build_timer_service(
    session_factory: Callable[[], Session],
    router: Optional[DeliveryRouter] = None,
    settings: Optional[AppSettings] = None,
    source: Optional[TriggerSource] = None,
) -> TimerService:
    """
    Timer with the dispatcher sweep registered, plus every trigger sweep
    when a TriggerSource is given.
    """
    settings = settings or get_settings()
    timer = TimerService(
        session_factory=session_factory,
        router=router,
        retry_policy=RetryPolicy.from_settings(settings),
    )
    timer.register(
        "dispatch_scheduled",
        settings.dispatch_interval_seconds,
        _run_dispatch(settings.dispatch_batch_size),
    )
    if source is not None:
        register_trigger_sweeps(timer, source, settings)
    return timer
