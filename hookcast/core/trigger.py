"""In-process periodic trigger for the schedule runner.

Runs ``ScheduleRunner.process_due`` on an APScheduler interval job. Only one
worker per deployment needs it (``SCHEDULER_ENABLED``); overlapping sweeps
from other processes are still safe because schedules are claimed.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from hookcast.core.runner import RunnerResult, ScheduleRunner

logger = logging.getLogger(__name__)

JOB_ID = "process-due-scheduled-messages"


class DispatchTrigger:
    """Periodically invokes the schedule runner.

    Example:
        trigger = DispatchTrigger(runner, interval_seconds=60)
        await trigger.start()
        ...
        await trigger.shutdown()
    """

    def __init__(self, runner: ScheduleRunner, interval_seconds: int = 60) -> None:
        """Initialize trigger.

        Args:
            runner: Runner whose sweep is invoked.
            interval_seconds: Seconds between sweeps.
        """
        self._runner = runner
        self._interval_seconds = interval_seconds
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if trigger is running."""
        return self._running and self._scheduler.running

    async def start(self) -> None:
        """Start the interval job."""
        if self._running:
            logger.warning("Dispatch trigger already running")
            return

        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self._interval_seconds,
        )
        self._scheduler.start()
        self._running = True
        logger.info(f"Dispatch trigger started (every {self._interval_seconds}s)")

    async def shutdown(self) -> None:
        """Stop the interval job."""
        if not self._running:
            return

        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Dispatch trigger shutdown complete")

    async def run_once(self) -> RunnerResult:
        """Run one sweep; errors are logged, never raised into APScheduler."""
        try:
            return await self._runner.process_due()
        except Exception:
            logger.exception("Scheduled runner sweep failed")
            return RunnerResult(processed=0, errors=1)
