"""Next-run computation for scheduled messages.

- One-shot schedules fire at their ``send_at`` instant
- Recurring schedules follow a 5-field cron expression evaluated in the
  schedule's timezone (pytz + croniter), so wall-clock times survive DST.
  A wall-clock time repeated by a fall-back transition fires only once
- All results are naive UTC datetimes, matching the storage convention
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import pytz
from croniter import croniter

logger = logging.getLogger(__name__)

CRON_FIELD_COUNT = 5

CRON_PRESETS: dict[str, str] = {
    "hourly": "0 * * * *",  # Every hour at minute 0
    "daily": "0 0 * * *",  # Every day at midnight
    "weekly": "0 0 * * 0",  # Every Sunday at midnight
    "monthly": "0 0 1 * *",  # First day of every month at midnight
}


def _utcnow() -> datetime:
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def to_utc_naive(value: datetime | str) -> datetime:
    """Normalize a timestamp to a naive UTC datetime.

    Args:
        value: ISO-8601 string or datetime. Naive values are taken as UTC.

    Returns:
        Naive datetime in UTC.

    Raises:
        ValueError: If the string cannot be parsed.
        TypeError: If the value is neither a string nor a datetime.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())
    if not isinstance(value, datetime):
        raise TypeError(f"Expected datetime or ISO string, got {type(value).__name__}")
    if value.tzinfo is not None:
        value = value.astimezone(pytz.UTC).replace(tzinfo=None)
    return value


def is_valid_recurrence(expression: Any) -> bool:
    """Validate 5-field cron expression syntax.

    Args:
        expression: Cron expression to validate.

    Returns:
        True if valid, False otherwise.
    """
    if not isinstance(expression, str):
        return False
    if len(expression.split()) != CRON_FIELD_COUNT:
        return False
    try:
        croniter(expression)
        return True
    except (ValueError, KeyError):
        return False


def is_valid_timezone(timezone: str) -> bool:
    """Check whether a timezone name is known to the tz database."""
    try:
        pytz.timezone(timezone)
        return True
    except (pytz.UnknownTimeZoneError, AttributeError):
        return False


def next_occurrence(
    expression: str,
    timezone: str = "UTC",
    anchor: datetime | None = None,
) -> datetime:
    """Calculate the first cron occurrence strictly after ``anchor``.

    Args:
        expression: 5-field cron expression.
        timezone: Timezone string (e.g., 'America/New_York').
        anchor: Base time (default: now). Naive values are taken as UTC.

    Returns:
        Next run datetime, naive UTC.

    Raises:
        ValueError: If expression or timezone is invalid.
    """
    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError as e:
        raise ValueError(f"Invalid timezone: {timezone}") from e

    if not is_valid_recurrence(expression):
        raise ValueError(f"Invalid cron expression: {expression}")

    if anchor is None:
        base_time = datetime.now(tz)
    else:
        if anchor.tzinfo is None:
            anchor = pytz.UTC.localize(anchor)
        base_time = anchor.astimezone(tz)

    try:
        cron = croniter(expression, base_time)
        next_run = cron.get_next(datetime)
        # A DST fall-back repeats an hour of wall-clock time; fire once per wall time
        while next_run.replace(tzinfo=None) <= base_time.replace(tzinfo=None):
            next_run = cron.get_next(datetime)
    except (ValueError, KeyError) as e:
        raise ValueError(f"Invalid cron expression: {expression}") from e

    # Convert to UTC for storage
    return next_run.astimezone(pytz.UTC).replace(tzinfo=None)


def compute_next_run_at(
    send_at: datetime | str | None,
    recurrence_cron: str | None,
    timezone: str = "UTC",
    anchor: datetime | None = None,
) -> datetime | None:
    """Compute when a schedule should next fire.

    Exactly one of ``send_at`` and ``recurrence_cron`` must be given; any
    other combination, and any parse failure, yields None.

    Args:
        send_at: One-shot fire time.
        recurrence_cron: Cron expression for recurring schedules.
        timezone: Timezone the cron expression is evaluated in.
        anchor: Base time for recurring schedules (default: now).

    Returns:
        Next run time as naive UTC, or None.
    """
    try:
        if send_at and not recurrence_cron:
            return to_utc_naive(send_at)

        if recurrence_cron and not send_at:
            return next_occurrence(recurrence_cron, timezone or "UTC", anchor)
    except (ValueError, TypeError, OverflowError) as e:
        logger.debug(f"Could not compute next run time: {e}")

    return None


def describe_cron(
    expression: str,
    now: datetime | None = None,
    timezone: str = "UTC",
) -> str:
    """Describe how far away the next occurrence of a cron expression is.

    Args:
        expression: Cron expression.
        now: Reference time, naive UTC (default: now).
        timezone: Timezone the expression is evaluated in.

    Returns:
        Human-readable text such as "Runs in 3 hours".
    """
    now = now or _utcnow()
    try:
        next_run = next_occurrence(expression, timezone, now)
    except ValueError:
        return "Invalid cron expression"

    diff = int((next_run - now).total_seconds())
    days, remainder = divmod(diff, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    if days > 0:
        return f"Runs in {days} day{'s' if days != 1 else ''}"
    if hours > 0:
        return f"Runs in {hours} hour{'s' if hours != 1 else ''}"
    if minutes > 0:
        return f"Runs in {minutes} minute{'s' if minutes != 1 else ''}"
    return "Runs soon"
