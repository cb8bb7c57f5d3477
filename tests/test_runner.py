"""Tests for ScheduleRunner: due scan, claim, and run processing."""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from hookcast.core.discord import SendResult
from hookcast.core.errors import ClaimConflict
from hookcast.core.runner import RunnerResult, ScheduleRunner
from hookcast.models.schedule import ScheduleStatus
from hookcast.repositories.schedule_repo import ScheduleRepository


class FixedClock:
    """Settable clock returning naive UTC datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def create_runner(session_factory, sender, clock: FixedClock) -> ScheduleRunner:
    return ScheduleRunner(session_factory, sender, clock=clock)


async def _runs(session_factory, schedule_id):
    async with session_factory() as session:
        return await ScheduleRepository(session).list_runs(schedule_id)


NINE_AM = datetime(2024, 1, 1, 9, 0, 0)


class TestProcessDue:
    """Due scan and per-schedule processing."""

    @pytest.mark.asyncio
    async def test_one_shot_success_completes(self, session_factory, make_schedule, load_schedule, fake_sender):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, send_at=NINE_AM)

        result = await create_runner(session_factory, fake_sender, clock).process_due()

        assert result == RunnerResult(processed=1, errors=0)
        stored = await load_schedule(schedule.id)
        assert stored.status == ScheduleStatus.COMPLETED.value
        assert stored.next_run_at is None
        assert stored.run_count == 1
        assert stored.last_run_at == clock.now
        assert stored.last_error is None

        runs = await _runs(session_factory, schedule.id)
        assert len(runs) == 1
        assert runs[0].success is True
        assert runs[0].discord_message_id == "999"

    @pytest.mark.asyncio
    async def test_recurring_success_advances_from_finish_time(
        self, session_factory, make_schedule, load_schedule, fake_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *")

        await create_runner(session_factory, fake_sender, clock).process_due()

        stored = await load_schedule(schedule.id)
        assert stored.status == ScheduleStatus.ACTIVE.value
        assert stored.next_run_at == datetime(2024, 1, 2, 9, 0)
        assert stored.run_count == 1

    @pytest.mark.asyncio
    async def test_max_runs_completes_after_last_success(
        self, session_factory, make_schedule, load_schedule, fake_sender
    ):
        """max_runs=3 completes on the third success; a fourth scan selects nothing."""
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *", max_runs=3)
        runner = create_runner(session_factory, fake_sender, clock)

        for day in range(3):
            clock.now = NINE_AM + timedelta(days=day, seconds=5)
            assert await runner.process_due() == RunnerResult(processed=1, errors=0)

        stored = await load_schedule(schedule.id)
        assert stored.status == ScheduleStatus.COMPLETED.value
        assert stored.next_run_at is None
        assert stored.run_count == 3

        clock.now = NINE_AM + timedelta(days=3, seconds=5)
        assert await runner.process_due() == RunnerResult(processed=0, errors=0)
        assert len(fake_sender.calls) == 3

    @pytest.mark.asyncio
    async def test_failed_recurring_dispatch_backs_off(
        self, session_factory, make_schedule, load_schedule, failing_sender
    ):
        """A failed send retries five minutes after it finished; run_count stays put."""
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *")

        result = await create_runner(session_factory, failing_sender, clock).process_due()

        assert result == RunnerResult(processed=1, errors=1)
        stored = await load_schedule(schedule.id)
        assert stored.status == ScheduleStatus.ACTIVE.value
        assert stored.next_run_at == clock.now + timedelta(minutes=5)
        assert stored.run_count == 0
        assert stored.last_error == "Discord API error: 500 Internal Server Error"
        assert stored.last_run_at == clock.now

        runs = await _runs(session_factory, schedule.id)
        assert len(runs) == 1
        assert runs[0].success is False
        assert runs[0].error == "Discord API error: 500 Internal Server Error"

    @pytest.mark.asyncio
    async def test_failed_one_shot_dispatch_backs_off(
        self, session_factory, make_schedule, load_schedule, failing_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, send_at=NINE_AM)

        await create_runner(session_factory, failing_sender, clock).process_due()

        stored = await load_schedule(schedule.id)
        assert stored.status == ScheduleStatus.ACTIVE.value
        assert stored.next_run_at == clock.now + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_run_count_counts_successes_only(
        self, session_factory, make_schedule, load_schedule, fake_sender, failing_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="*/10 * * * *")

        await create_runner(session_factory, failing_sender, clock).process_due()
        assert (await load_schedule(schedule.id)).run_count == 0

        clock.now = clock.now + timedelta(minutes=5)
        await create_runner(session_factory, fake_sender, clock).process_due()

        stored = await load_schedule(schedule.id)
        assert stored.run_count == 1
        assert stored.last_error is None
        assert len(await _runs(session_factory, schedule.id)) == 2

    @pytest.mark.asyncio
    async def test_unresolvable_content_is_recorded_failure(
        self, session_factory, make_schedule, load_schedule, fake_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, saved_message_id="gone")

        result = await create_runner(session_factory, fake_sender, clock).process_due()

        assert result == RunnerResult(processed=1, errors=1)
        assert fake_sender.calls == []
        stored = await load_schedule(schedule.id)
        assert "Saved message or template not found" in stored.last_error

    @pytest.mark.asyncio
    async def test_missing_channel_is_recorded_failure(
        self, session_factory, make_schedule, load_schedule, fake_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM)
        async with session_factory() as session:
            await ScheduleRepository(session).update_fields(schedule.id, channel_id="no-such-channel")
            await session.commit()

        result = await create_runner(session_factory, fake_sender, clock).process_due()

        assert result == RunnerResult(processed=1, errors=1)
        stored = await load_schedule(schedule.id)
        assert "no-such-channel" in stored.last_error

    @pytest.mark.asyncio
    async def test_future_and_paused_schedules_not_selected(
        self, session_factory, make_schedule, fake_sender
    ):
        clock = FixedClock(NINE_AM)
        await make_schedule(next_run_at=NINE_AM + timedelta(hours=1))
        paused = await make_schedule(next_run_at=NINE_AM - timedelta(hours=1))
        async with session_factory() as session:
            await ScheduleRepository(session).update_fields(
                paused.id, status=ScheduleStatus.PAUSED.value
            )
            await session.commit()

        result = await create_runner(session_factory, fake_sender, clock).process_due()

        assert result == RunnerResult(processed=0, errors=0)
        assert fake_sender.calls == []

    @pytest.mark.asyncio
    async def test_query_failure_reports_one_error(self, session_factory, fake_sender):
        runner = create_runner(session_factory, fake_sender, FixedClock(NINE_AM))

        with patch.object(ScheduleRepository, "list_due", side_effect=RuntimeError("db down")):
            result = await runner.process_due()

        assert result == RunnerResult(processed=0, errors=1)

    @pytest.mark.asyncio
    async def test_pause_during_dispatch_is_kept(
        self, session_factory, make_schedule, load_schedule
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *")

        class PausingSender:
            async def send(self, webhook, content=None, embeds=None):
                async with session_factory() as session:
                    await ScheduleRepository(session).update_fields(
                        schedule.id,
                        status=ScheduleStatus.PAUSED.value,
                        next_run_at=None,
                    )
                    await session.commit()
                return SendResult(success=True, message_id="1")

        await create_runner(session_factory, PausingSender(), clock).process_due()

        stored = await load_schedule(schedule.id)
        assert stored.status == ScheduleStatus.PAUSED.value
        assert stored.next_run_at is None
        assert stored.run_count == 1


class TestClaim:
    """Compare-and-swap claim on next_run_at."""

    @pytest.mark.asyncio
    async def test_same_read_value_claims_once(self, session_factory, make_schedule, fake_sender):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM)
        runner_a = create_runner(session_factory, fake_sender, clock)
        runner_b = create_runner(session_factory, fake_sender, clock)

        claimed_until = await runner_a.claim(schedule)

        assert claimed_until == clock.now + timedelta(seconds=60)
        with pytest.raises(ClaimConflict):
            await runner_b.claim(schedule)

    @pytest.mark.asyncio
    async def test_repository_claim_is_compare_and_swap(self, session_factory, make_schedule):
        schedule = await make_schedule(next_run_at=NINE_AM)
        later = NINE_AM + timedelta(minutes=1)

        async with session_factory() as session:
            repo = ScheduleRepository(session)
            first = await repo.claim(schedule.id, NINE_AM, later, NINE_AM)
            second = await repo.claim(schedule.id, NINE_AM, later, NINE_AM)
            await session.commit()

        assert first is True
        assert second is False

    @pytest.mark.asyncio
    async def test_claimed_schedule_skipped_by_other_runner(
        self, session_factory, make_schedule, fake_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM)

        await create_runner(session_factory, fake_sender, clock).claim(schedule)
        result = await create_runner(session_factory, fake_sender, clock).process_due()

        assert result == RunnerResult(processed=0, errors=0)
        assert fake_sender.calls == []

    @pytest.mark.asyncio
    async def test_lost_claim_in_sweep_is_not_an_error(
        self, session_factory, make_schedule, fake_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        await make_schedule(next_run_at=NINE_AM)
        runner = create_runner(session_factory, fake_sender, clock)

        with patch.object(ScheduleRepository, "claim", return_value=False):
            result = await runner.process_due()

        assert result == RunnerResult(processed=0, errors=0)
        assert fake_sender.calls == []

    @pytest.mark.asyncio
    async def test_expired_claim_is_picked_up_again(
        self, session_factory, make_schedule, load_schedule, fake_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM)

        await create_runner(session_factory, fake_sender, clock).claim(schedule)
        clock.now = clock.now + timedelta(seconds=61)
        result = await create_runner(session_factory, fake_sender, clock).process_due()

        assert result == RunnerResult(processed=1, errors=0)
        assert (await load_schedule(schedule.id)).status == ScheduleStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_lock_for_run_refused_while_claim_is_live(self, session_factory, make_schedule):
        schedule = await make_schedule(next_run_at=NINE_AM)
        claimed_until = NINE_AM + timedelta(minutes=1)

        async with session_factory() as session:
            repo = ScheduleRepository(session)
            assert await repo.claim(schedule.id, NINE_AM, claimed_until, NINE_AM) is True
            live = await repo.lock_for_run(schedule.id, claimed_until, NINE_AM + timedelta(seconds=30))
            expired = await repo.lock_for_run(
                schedule.id,
                claimed_until + timedelta(minutes=1),
                claimed_until,
            )
            await session.commit()

        assert live is False
        assert expired is True

    @pytest.mark.asyncio
    async def test_claim_is_released_after_run(
        self, session_factory, make_schedule, load_schedule, fake_sender, failing_sender
    ):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        succeeded = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *")
        failed = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *")

        runner = create_runner(session_factory, fake_sender, clock)
        await runner.claim(succeeded)
        await runner.process_one(succeeded)
        failing_runner = create_runner(session_factory, failing_sender, clock)
        await failing_runner.claim(failed)
        await failing_runner.process_one(failed)

        assert (await load_schedule(failed.id)).next_run_at == clock.now + timedelta(minutes=5)
        assert (await load_schedule(succeeded.id)).claimed_until is None
        assert (await load_schedule(failed.id)).claimed_until is None


class TestRunNow:
    """Immediate runs outside the due time."""

    @pytest.mark.asyncio
    async def test_run_now_active_recurring(self, session_factory, make_schedule, load_schedule, fake_sender):
        clock = FixedClock(NINE_AM - timedelta(hours=2))
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *")

        succeeded = await create_runner(session_factory, fake_sender, clock).run_now(schedule)

        assert succeeded is True
        stored = await load_schedule(schedule.id)
        assert stored.run_count == 1
        assert stored.next_run_at == NINE_AM

    @pytest.mark.asyncio
    async def test_run_now_paused_keeps_paused(self, session_factory, make_schedule, load_schedule, fake_sender):
        clock = FixedClock(NINE_AM)
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *")
        async with session_factory() as session:
            await ScheduleRepository(session).update_fields(
                schedule.id, status=ScheduleStatus.PAUSED.value, next_run_at=None
            )
            await session.commit()
        paused = await load_schedule(schedule.id)

        succeeded = await create_runner(session_factory, fake_sender, clock).run_now(paused)

        assert succeeded is True
        stored = await load_schedule(schedule.id)
        assert stored.status == ScheduleStatus.PAUSED.value
        assert stored.next_run_at is None
        assert stored.run_count == 1

    @pytest.mark.asyncio
    async def test_run_now_conflicts_with_claim(self, session_factory, make_schedule, fake_sender):
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM)
        runner = create_runner(session_factory, fake_sender, clock)

        await runner.claim(schedule)

        with pytest.raises(ClaimConflict):
            await runner.run_now(schedule)
        assert fake_sender.calls == []

    @pytest.mark.asyncio
    async def test_run_now_during_sweep_does_not_send_again(
        self, session_factory, make_schedule, load_schedule
    ):
        """Run-now on a freshly read row is refused while a sweep is sending it."""
        clock = FixedClock(NINE_AM + timedelta(seconds=5))
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *", max_runs=2)

        class RunNowSender:
            def __init__(self):
                self.calls = 0
                self.conflicts = 0

            async def send(self, webhook, content=None, embeds=None):
                self.calls += 1
                if self.calls == 1:
                    fresh = await load_schedule(schedule.id)
                    try:
                        await runner.run_now(fresh)
                    except ClaimConflict:
                        self.conflicts += 1
                return SendResult(success=True, message_id=str(self.calls))

        sender = RunNowSender()
        runner = create_runner(session_factory, sender, clock)

        result = await runner.process_due()

        assert result == RunnerResult(processed=1, errors=0)
        assert sender.calls == 1
        assert sender.conflicts == 1
        stored = await load_schedule(schedule.id)
        assert stored.run_count == 1
        assert stored.status == ScheduleStatus.ACTIVE.value
        assert stored.next_run_at == datetime(2024, 1, 2, 9, 0)
        assert stored.claimed_until is None

    @pytest.mark.asyncio
    async def test_run_now_nested_on_paused_schedule_is_refused(
        self, session_factory, make_schedule, load_schedule
    ):
        clock = FixedClock(NINE_AM)
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *")
        async with session_factory() as session:
            await ScheduleRepository(session).update_fields(
                schedule.id, status=ScheduleStatus.PAUSED.value, next_run_at=None
            )
            await session.commit()
        paused = await load_schedule(schedule.id)
        conflicts = []

        class NestedSender:
            async def send(self, webhook, content=None, embeds=None):
                try:
                    await runner.run_now(paused)
                except ClaimConflict as e:
                    conflicts.append(e)
                return SendResult(success=True, message_id="1")

        runner = create_runner(session_factory, NestedSender(), clock)

        assert await runner.run_now(paused) is True
        assert len(conflicts) == 1
        assert (await load_schedule(schedule.id)).run_count == 1

    @pytest.mark.asyncio
    async def test_run_count_increments_from_stored_value(
        self, session_factory, make_schedule, load_schedule, fake_sender
    ):
        """Two runs from the same stale copy count twice and honor max_runs."""
        clock = FixedClock(NINE_AM)
        schedule = await make_schedule(next_run_at=NINE_AM, recurrence_cron="0 9 * * *", max_runs=2)
        async with session_factory() as session:
            await ScheduleRepository(session).update_fields(
                schedule.id, status=ScheduleStatus.PAUSED.value, next_run_at=None
            )
            await session.commit()
        stale = await load_schedule(schedule.id)
        runner = create_runner(session_factory, fake_sender, clock)

        await runner.run_now(stale)
        await runner.run_now(stale)

        assert stale.run_count == 0
        stored = await load_schedule(schedule.id)
        assert stored.run_count == 2
        assert stored.status == ScheduleStatus.COMPLETED.value
        assert stored.next_run_at is None
        assert len(fake_sender.calls) == 2


class TestRunnerConstruction:

    def test_requires_sender_or_dispatcher(self, session_factory):
        with pytest.raises(ValueError):
            ScheduleRunner(session_factory)
