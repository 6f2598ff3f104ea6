"""Statement Email Scheduler -- Schedule Calculator

Pure date arithmetic that decides *when* statements go out and *which
dates* they cover.  No I/O; every function is deterministic in its
arguments.

Weekly cadence:
    The schedule point is the most recent ``target_day`` at ``hour_utc``
    that is not in the future.  The statement covers the 7 days ending
    the day before the schedule point.

Monthly cadence:
    The schedule point is ``day_of_month`` at ``hour_utc`` in the current
    month (clamped to the month length, so day 31 in February means the
    last day of February), or the same clamped day in the previous month
    if that instant is still ahead.  The statement covers the whole
    calendar month before the schedule point's month.

Last-sent markers are stored as ISO-8601 UTC strings; ``format_utc`` and
``parse_utc`` convert between the stored text and aware datetimes.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import date, datetime, timedelta, timezone

from .config import StatementScheduleConfig
from .models import Cadence, DayOfWeek, ReportingPeriod

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_ONE_WEEK = timedelta(days=7)

# Layouts tried when a stored marker is not ISO-8601.  Values parsed with
# these are assumed to be UTC.
_FALLBACK_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d %b %Y %H:%M:%S",
    "%d %b %Y",
)

# Fractional seconds after HH:MM:SS; fromisoformat on 3.10 only takes 3 or 6
# digits, so "06:00:00.5Z" and .NET's "06:00:00.0000000Z" are both resized to 6.
_FRACTION = re.compile(r"(:\d{2})\.(\d+)")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive input is taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def _next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def _monthly_instant(year: int, month: int, day: int, hour: int) -> datetime:
    """``day`` clamped to the month length, at ``hour`` UTC."""
    target_day = min(day, days_in_month(year, month))
    return datetime(year, month, target_day, hour, tzinfo=timezone.utc)


def first_of_month(d: date) -> date:
    return d.replace(day=1)


# ---------------------------------------------------------------------------
# Schedule points
# ---------------------------------------------------------------------------

def most_recent_weekly_schedule(
    now_utc: datetime,
    target_day: DayOfWeek | int | str,
    hour_utc: int,
) -> datetime:
    """Most recent ``target_day`` at ``hour_utc`` that is <= ``now_utc``.

    The result is always in ``(now_utc - 7 days, now_utc]``.

    >>> most_recent_weekly_schedule(datetime(2024, 3, 15, 8), "Monday", 6)
    datetime.datetime(2024, 3, 11, 6, 0, tzinfo=datetime.timezone.utc)
    """
    now = as_utc(now_utc)
    day = DayOfWeek.parse(target_day)
    hour = _clamp(hour_utc, 0, 23)

    day_offset = int(day) - now.weekday()
    midnight = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    scheduled = midnight + timedelta(days=day_offset, hours=hour)

    if scheduled > now:
        scheduled -= _ONE_WEEK

    return scheduled


def most_recent_monthly_schedule(
    now_utc: datetime,
    day_of_month: int,
    hour_utc: int,
) -> datetime:
    """Most recent ``day_of_month`` at ``hour_utc`` that is <= ``now_utc``.

    Days past the end of a month map to that month's last day.

    >>> most_recent_monthly_schedule(datetime(2024, 2, 29, 10), 31, 6)
    datetime.datetime(2024, 2, 29, 6, 0, tzinfo=datetime.timezone.utc)
    """
    now = as_utc(now_utc)
    day = _clamp(day_of_month, 1, 31)
    hour = _clamp(hour_utc, 0, 23)

    scheduled = _monthly_instant(now.year, now.month, day, hour)

    if scheduled > now:
        year, month = _previous_month(now.year, now.month)
        scheduled = _monthly_instant(year, month, day, hour)

    return scheduled


def next_weekly_schedule(
    now_utc: datetime,
    target_day: DayOfWeek | int | str,
    hour_utc: int,
) -> datetime:
    """First weekly firing strictly after ``now_utc``."""
    return most_recent_weekly_schedule(now_utc, target_day, hour_utc) + _ONE_WEEK


def next_monthly_schedule(now_utc: datetime, day_of_month: int, hour_utc: int) -> datetime:
    """First monthly firing strictly after ``now_utc``."""
    now = as_utc(now_utc)
    day = _clamp(day_of_month, 1, 31)
    hour = _clamp(hour_utc, 0, 23)

    scheduled = _monthly_instant(now.year, now.month, day, hour)
    if scheduled <= now:
        year, month = _next_month(now.year, now.month)
        scheduled = _monthly_instant(year, month, day, hour)
    return scheduled


# ---------------------------------------------------------------------------
# Reporting periods
# ---------------------------------------------------------------------------

def weekly_period(schedule_point: datetime) -> ReportingPeriod:
    """The 7 days ending the day before ``schedule_point``."""
    to_date = schedule_point.date() - timedelta(days=1)
    from_date = to_date - timedelta(days=6)
    return ReportingPeriod(from_date=from_date, to_date=to_date)


def monthly_period(schedule_point: datetime) -> ReportingPeriod:
    """The full calendar month before ``schedule_point``'s month."""
    to_date = first_of_month(schedule_point.date()) - timedelta(days=1)
    from_date = first_of_month(to_date)
    return ReportingPeriod(from_date=from_date, to_date=to_date)


# ---------------------------------------------------------------------------
# Cadence dispatch
# ---------------------------------------------------------------------------

def schedule_point_for(
    cadence: Cadence,
    now_utc: datetime,
    settings: StatementScheduleConfig,
) -> datetime:
    """Most recent schedule point for ``cadence`` under ``settings``."""
    if cadence is Cadence.WEEKLY:
        return most_recent_weekly_schedule(
            now_utc, settings.weekly_day_of_week, settings.weekly_send_hour_utc
        )
    return most_recent_monthly_schedule(
        now_utc, settings.monthly_day_of_month, settings.monthly_send_hour_utc
    )


def next_schedule_point_for(
    cadence: Cadence,
    now_utc: datetime,
    settings: StatementScheduleConfig,
) -> datetime:
    if cadence is Cadence.WEEKLY:
        return next_weekly_schedule(
            now_utc, settings.weekly_day_of_week, settings.weekly_send_hour_utc
        )
    return next_monthly_schedule(
        now_utc, settings.monthly_day_of_month, settings.monthly_send_hour_utc
    )


def period_for(cadence: Cadence, schedule_point: datetime) -> ReportingPeriod:
    if cadence is Cadence.WEEKLY:
        return weekly_period(schedule_point)
    return monthly_period(schedule_point)


def is_due(last_sent: datetime | None, schedule_point: datetime) -> bool:
    """True when no marker exists or the marker predates ``schedule_point``.

    A marker equal to or after the schedule point means this period's
    statements already went out.
    """
    if last_sent is None:
        return True
    return as_utc(last_sent) < as_utc(schedule_point)


# ---------------------------------------------------------------------------
# Marker serialization
# ---------------------------------------------------------------------------

def format_utc(value: datetime) -> str:
    """Serialize as round-trippable ISO-8601 with a ``Z`` designator."""
    return as_utc(value).isoformat().replace("+00:00", "Z")


def _six_digit_fraction(match: re.Match) -> str:
    return f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}"


def parse_utc(value: str | None) -> datetime | None:
    """Parse a stored marker into an aware UTC datetime.

    Accepts ISO-8601 (with ``Z``, an offset, or no zone) and a handful of
    generic layouts.  Blank or unparseable text returns ``None`` so the
    caller treats the cadence as never sent.
    """
    if value is None or not value.strip():
        return None

    text = _FRACTION.sub(_six_digit_fraction, value.strip())
    if text.endswith(("z", "Z")):
        text = text[:-1] + "+00:00"

    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def parse_marker(raw: str | None, label: str) -> datetime | None:
    """Parse a stored last-sent marker, warning when text is present but unreadable.

    Unreadable markers count as "never sent".
    """
    parsed = parse_utc(raw)
    if parsed is None and raw and raw.strip():
        logger.warning(
            "Ignoring unparseable %s marker %r; treating as never sent", label, raw
        )
    return parsed
