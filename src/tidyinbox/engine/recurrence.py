"""Recurrence definitions for schedule rules and next-run computation.

A rule's recurrence is one of three variants, so invalid combinations
(a weekly rule without a weekday, a daily rule with a day of month) cannot
be represented once a rule has been parsed:

    Daily(time)
    Weekly(time, day_of_week)     # 0=Sunday .. 6=Saturday
    Monthly(time, day_of_month)   # 1..31, clamped to the month's length

Next-run computation is a pure function of the recurrence, the rule's
timezone and the current instant. It never looks at when the rule last ran,
so a skipped tick does not cause drift.

Usage:
    from tidyinbox.engine.recurrence import parse_recurrence, next_run_after

    recurrence = parse_recurrence("weekly", "09:00", day_of_week=1)
    next_run = next_run_after(recurrence, datetime.now(UTC), "Asia/Manila")
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import regex

from tidyinbox.core.errors import RuleValidationError

RecurrenceType = Literal["daily", "weekly", "monthly"]

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


@dataclass(frozen=True, slots=True)
class Daily:
    """Runs every day at ``time`` (rule-local)."""

    time: time

    @property
    def recurrence_type(self) -> RecurrenceType:
        return "daily"

    def describe(self) -> str:
        return f"daily at {self.time:%H:%M}"


@dataclass(frozen=True, slots=True)
class Weekly:
    """Runs once a week on ``day_of_week`` (0=Sunday) at ``time``."""

    time: time
    day_of_week: int

    @property
    def recurrence_type(self) -> RecurrenceType:
        return "weekly"

    def describe(self) -> str:
        return f"weekly on {WEEKDAY_NAMES[self.day_of_week]} at {self.time:%H:%M}"


@dataclass(frozen=True, slots=True)
class Monthly:
    """Runs once a month on ``day_of_month`` at ``time``.

    Months shorter than ``day_of_month`` run on their last day.
    """

    time: time
    day_of_month: int

    @property
    def recurrence_type(self) -> RecurrenceType:
        return "monthly"

    def describe(self) -> str:
        return f"monthly on day {self.day_of_month} at {self.time:%H:%M}"


Recurrence = Daily | Weekly | Monthly


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` string.

    Raises:
        RuleValidationError: If the value is not a valid 24-hour time
    """
    if not isinstance(value, str) or not regex.match(r"^\d{2}:\d{2}$", value, timeout=1):
        raise RuleValidationError(
            f"time_of_day must be in HH:MM format (e.g. '09:00'), got {value!r}",
            field="time_of_day",
        )
    hours, minutes = map(int, value.split(":"))
    if hours > 23:
        raise RuleValidationError("time_of_day hours must be 00-23", field="time_of_day")
    if minutes > 59:
        raise RuleValidationError("time_of_day minutes must be 00-59", field="time_of_day")
    return time(hours, minutes)


def validate_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Raises:
        RuleValidationError: If the name is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise RuleValidationError(f"Unknown timezone {name!r}", field="timezone") from e


def parse_recurrence(
    recurrence_type: str,
    time_of_day: str,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
) -> Recurrence:
    """Build a recurrence variant from loose persisted fields.

    Args:
        recurrence_type: 'daily', 'weekly' or 'monthly'
        time_of_day: 'HH:MM'
        day_of_week: 0-6, required for (and only for) weekly rules
        day_of_month: 1-31, required for (and only for) monthly rules

    Returns:
        Daily, Weekly or Monthly

    Raises:
        RuleValidationError: On any invalid or missing field
    """
    at = parse_time_of_day(time_of_day)

    if recurrence_type == "daily":
        if day_of_week is not None or day_of_month is not None:
            raise RuleValidationError(
                "Daily rules take neither day_of_week nor day_of_month",
                field="recurrence_type",
            )
        return Daily(time=at)

    if recurrence_type == "weekly":
        if day_of_month is not None:
            raise RuleValidationError("Weekly rules take no day_of_month", field="day_of_month")
        if day_of_week is None or not 0 <= day_of_week <= 6:
            raise RuleValidationError(
                "Weekly rules need day_of_week between 0 (Sunday) and 6 (Saturday)",
                field="day_of_week",
            )
        return Weekly(time=at, day_of_week=day_of_week)

    if recurrence_type == "monthly":
        if day_of_week is not None:
            raise RuleValidationError("Monthly rules take no day_of_week", field="day_of_week")
        if day_of_month is None or not 1 <= day_of_month <= 31:
            raise RuleValidationError(
                "Monthly rules need day_of_month between 1 and 31",
                field="day_of_month",
            )
        return Monthly(time=at, day_of_month=day_of_month)

    raise RuleValidationError(
        f"recurrence_type must be 'daily', 'weekly' or 'monthly', got {recurrence_type!r}",
        field="recurrence_type",
    )


def recurrence_fields(recurrence: Recurrence) -> tuple[str, str, int | None, int | None]:
    """Flatten a recurrence into (type, time_of_day, day_of_week, day_of_month)."""
    time_of_day = f"{recurrence.time:%H:%M}"
    match recurrence:
        case Weekly(day_of_week=dow):
            return recurrence.recurrence_type, time_of_day, dow, None
        case Monthly(day_of_month=dom):
            return recurrence.recurrence_type, time_of_day, None, dom
        case _:
            return recurrence.recurrence_type, time_of_day, None, None


def _sunday_based_weekday(day: date) -> int:
    # date.weekday() is Monday=0; rules use Sunday=0
    return (day.weekday() + 1) % 7


def _monthly_candidates(start: date, day_of_month: int) -> list[date]:
    candidates = []
    year, month = start.year, start.month
    for _ in range(14):
        last_day = calendar.monthrange(year, month)[1]
        candidates.append(date(year, month, min(day_of_month, last_day)))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return candidates


def next_run_after(recurrence: Recurrence, now: datetime, timezone: str) -> datetime:
    """Compute the first occurrence strictly after ``now``.

    Args:
        recurrence: The rule's recurrence
        now: Current instant (timezone-aware; naive values are taken as UTC)
        timezone: IANA timezone the rule's wall-clock time refers to

    Returns:
        The next run as an aware UTC datetime, always > now
    """
    tz = validate_timezone(timezone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    today = now.astimezone(tz).date()

    match recurrence:
        case Daily():
            candidates = [today + timedelta(days=offset) for offset in range(3)]
        case Weekly(day_of_week=dow):
            candidates = [
                today + timedelta(days=offset)
                for offset in range(15)
                if _sunday_based_weekday(today + timedelta(days=offset)) == dow
            ]
        case Monthly(day_of_month=dom):
            candidates = _monthly_candidates(today, dom)

    for day in candidates:
        # Compare in UTC: aware datetimes sharing a tzinfo compare by wall clock
        run_at = datetime.combine(day, recurrence.time, tzinfo=tz).astimezone(UTC)
        if run_at > now:
            return run_at

    raise RuntimeError(f"No next run found for {recurrence!r} after {now.isoformat()}")
