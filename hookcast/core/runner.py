"""Scheduled message runner.

Polls for due schedules, claims each one with a compare-and-swap on
``next_run_at`` and processes the claimed ones serially:

- Resolve content, dispatch it, append a run record
- Success: increment run_count in the database, then complete or compute
  the next cron occurrence from the stored count
- Failure: keep run_count, retry after a fixed backoff

Claiming is the only guard against overlapping runners (interval job, HTTP
trigger, run-now, other workers). A claim sets ``claimed_until`` and holds
for ``claim_window``; a dispatch that outlives it can be claimed again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from hookcast.core.discord import MessageSender
from hookcast.core.dispatcher import Dispatcher
from hookcast.core.errors import ClaimConflict, DispatchError
from hookcast.core.resolver import MessageResolver
from hookcast.core.schedule_time import compute_next_run_at
from hookcast.models.schedule import ScheduledMessage, ScheduleStatus
from hookcast.repositories.schedule_repo import ScheduleRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_CLAIM_WINDOW = timedelta(seconds=60)
DEFAULT_RETRY_BACKOFF = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass
class RunnerResult:
    """Totals for one sweep."""
    processed: int = 0
    errors: int = 0


class ScheduleRunner:
    """Processes due scheduled messages.

    Example:
        runner = ScheduleRunner(session_factory, DiscordWebhookSender())
        result = await runner.process_due()
    """

    def __init__(
        self,
        session_factory: Any,
        sender: MessageSender | None = None,
        *,
        dispatcher: Dispatcher | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        claim_window: timedelta = DEFAULT_CLAIM_WINDOW,
        retry_backoff: timedelta = DEFAULT_RETRY_BACKOFF,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize runner.

        Args:
            session_factory: Async session factory for DB access.
            sender: Message sender used to build the default dispatcher.
            dispatcher: Dispatcher to use instead of building one.
            batch_size: Maximum schedules handled per sweep.
            claim_window: How long a claim holds a schedule.
            retry_backoff: Delay before retrying a failed dispatch.
            clock: Returns the current naive UTC time.
        """
        if dispatcher is None:
            if sender is None:
                raise ValueError("Either sender or dispatcher is required")
            dispatcher = Dispatcher(session_factory, sender)

        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._batch_size = batch_size
        self._claim_window = claim_window
        self._retry_backoff = retry_backoff
        self._clock = clock or _utcnow

    def _now(self) -> datetime:
        return self._clock()

    async def process_due(self) -> RunnerResult:
        """Claim and process every due schedule, one at a time.

        Returns:
            RunnerResult with processed and error counts.
        """
        now = self._now()

        try:
            async with self._session_factory() as session:
                due = await ScheduleRepository(session).list_due(now, self._batch_size)
        except Exception as e:
            logger.error(f"Error fetching due scheduled messages: {e}")
            return RunnerResult(processed=0, errors=1)

        result = RunnerResult()
        if not due:
            return result

        logger.info(f"Found {len(due)} due scheduled messages")

        # Serial on purpose: Discord rate limits webhook calls
        for schedule in due:
            try:
                await self.claim(schedule, now)
            except ClaimConflict:
                logger.debug(f"Schedule {schedule.id} claimed by another runner, skipping")
                continue
            except Exception as e:
                logger.error(f"Failed to claim schedule {schedule.id}: {e}")
                result.errors += 1
                continue

            try:
                succeeded = await self.process_one(schedule)
            except Exception as e:
                logger.exception(f"Error processing schedule {schedule.id}: {e}")
                result.errors += 1
                continue

            result.processed += 1
            if not succeeded:
                result.errors += 1

        logger.info(
            f"Runner sweep finished: processed={result.processed} errors={result.errors}"
        )
        return result

    async def claim(self, schedule: ScheduledMessage, now: datetime | None = None) -> datetime:
        """Claim a schedule by pushing its ``next_run_at`` into the future.

        Args:
            schedule: Schedule as read by this runner.
            now: Reference time (default: now).

        Returns:
            The placeholder ``next_run_at`` written by the claim.

        Raises:
            ClaimConflict: If the stored ``next_run_at`` no longer matches or
                another claim on the schedule is still live.
        """
        now = now or self._now()
        claimed_until = now + self._claim_window
        async with self._session_factory() as session:
            won = await ScheduleRepository(session).claim(
                schedule.id,
                schedule.next_run_at,
                claimed_until,
                now,
            )
            await session.commit()

        if not won:
            raise ClaimConflict(schedule.id)
        return claimed_until

    async def run_now(self, schedule: ScheduledMessage) -> bool:
        """Dispatch a schedule immediately, outside its due time.

        The schedule is locked for ``claim_window`` first, so a sweep or
        another run-now cannot send it at the same time.

        Raises:
            ClaimConflict: If a runner is already processing the schedule.
        """
        now = self._now()
        async with self._session_factory() as session:
            won = await ScheduleRepository(session).lock_for_run(
                schedule.id,
                now + self._claim_window,
                now,
            )
            await session.commit()

        if not won:
            raise ClaimConflict(schedule.id)
        return await self.process_one(schedule)

    async def process_one(self, schedule: ScheduledMessage) -> bool:
        """Resolve, dispatch and record one occurrence of a schedule.

        Failures are written to the run log and to ``last_error``; nothing
        propagates to the caller.

        Args:
            schedule: Claimed schedule.

        Returns:
            True if the message was delivered.
        """
        started_at = self._now()

        try:
            async with self._session_factory() as session:
                message = await MessageResolver(session).resolve(schedule)

            result = await self._dispatcher.dispatch(schedule.channel_id, message)
            if not result.success:
                raise DispatchError(result.error or "Failed to send message")
        except Exception as e:
            finished_at = self._now()
            error = str(e) or type(e).__name__
            logger.error(f"Failed to process scheduled message {schedule.id}: {error}")
            await self._record_failure(schedule, started_at, finished_at, error)
            return False

        finished_at = self._now()
        await self._record_success(schedule, started_at, finished_at, result.message_id)
        return True

    async def _record_success(
        self,
        schedule: ScheduledMessage,
        started_at: datetime,
        finished_at: datetime,
        message_id: str | None,
    ) -> None:
        await self._append_run(
            schedule.id,
            started_at=started_at,
            finished_at=finished_at,
            success=True,
            discord_message_id=message_id,
        )

        try:
            async with self._session_factory() as session:
                repo = ScheduleRepository(session)
                stored = await repo.increment_run_count(
                    schedule.id,
                    last_run_at=finished_at,
                    last_error=None,
                    claimed_until=None,
                )
                if stored is None:
                    await session.commit()
                    logger.warning(f"Schedule {schedule.id} was deleted during dispatch")
                    return

                run_count = stored.run_count
                status = stored.status
                values = self._advance(stored, finished_at)
                # A pause or cancel that lands after the read above still wins
                if values and await repo.update_fields(
                    schedule.id,
                    expected_status=status,
                    **values,
                ):
                    status = values.get("status", status)
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to update schedule {schedule.id}: {e}")
            return

        logger.info(f"Sent scheduled message {schedule.id} (run {run_count}, status={status})")

    def _advance(self, stored: ScheduledMessage, finished_at: datetime) -> dict[str, Any]:
        """Status and ``next_run_at`` changes after a successful run.

        Args:
            stored: Schedule as stored after its run count was incremented.
            finished_at: End of the run.
        """
        status = ScheduleStatus(stored.status)
        if status.is_terminal:
            return {}

        if stored.max_runs is not None and stored.run_count >= stored.max_runs:
            return {"status": ScheduleStatus.COMPLETED.value, "next_run_at": None}
        if not stored.is_recurring:
            return {"status": ScheduleStatus.COMPLETED.value, "next_run_at": None}
        if status != ScheduleStatus.ACTIVE:
            return {}

        # Anchored to this run so a late sweep still moves forward
        next_run_at = compute_next_run_at(
            None,
            stored.recurrence_cron,
            stored.timezone,
            finished_at,
        )
        if next_run_at is None:
            return {
                "status": ScheduleStatus.PAUSED.value,
                "next_run_at": None,
                "last_error": "Could not compute next run time",
            }
        return {"next_run_at": next_run_at}

    async def _record_failure(
        self,
        schedule: ScheduledMessage,
        started_at: datetime,
        finished_at: datetime,
        error: str,
    ) -> None:
        await self._append_run(
            schedule.id,
            started_at=started_at,
            finished_at=finished_at,
            success=False,
            error=error,
        )

        bookkeeping: dict[str, Any] = {
            "last_run_at": finished_at,
            "last_error": error,
            "claimed_until": None,
        }
        try:
            async with self._session_factory() as session:
                repo = ScheduleRepository(session)
                # Fixed backoff for recurring and one-shot schedules alike;
                # only while still active so a mid-dispatch pause wins
                retried = await repo.update_fields(
                    schedule.id,
                    expected_status=ScheduleStatus.ACTIVE.value,
                    next_run_at=finished_at + self._retry_backoff,
                    **bookkeeping,
                )
                if not retried:
                    await repo.update_fields(schedule.id, **bookkeeping)
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to update schedule {schedule.id}: {e}")

    async def _append_run(self, schedule_id: str, **fields: Any) -> None:
        try:
            async with self._session_factory() as session:
                await ScheduleRepository(session).add_run(schedule_id, **fields)
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to record run for schedule {schedule_id}: {e}")
