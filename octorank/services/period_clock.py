"""UTC calendar periods backing leaderboard sessions.

All arithmetic is done in UTC. Weeks start on Sunday 00:00 UTC and are keyed
by the ISO week of the Monday that follows, so every day from Sunday through
Saturday shares one key.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from dateutil.relativedelta import SU, relativedelta

from octorank.core.errors import UnknownSessionTypeError


class SessionType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    OVERALL = "overall"


SESSION_TYPES = tuple(t.value for t in SessionType)

OVERALL_START = datetime(2020, 1, 1, tzinfo=timezone.utc)
OVERALL_END = datetime(2099, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)
OVERALL_KEY = "all-time"

_LAST_MICROSECOND = timedelta(microseconds=1)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_type(session_type: str) -> SessionType:
    try:
        return SessionType(session_type)
    except ValueError:
        raise UnknownSessionTypeError(str(session_type)) from None


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def week_start(now: datetime) -> datetime:
    """Sunday 00:00 UTC on or before ``now``."""
    return _start_of_day(as_utc(now)) + relativedelta(weekday=SU(-1))


@dataclass(frozen=True)
class SessionBounds:
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= as_utc(instant) <= self.end


def session_bounds(session_type: str, now: datetime) -> SessionBounds:
    kind = _coerce_type(session_type)
    now = as_utc(now)

    if kind is SessionType.DAILY:
        start = _start_of_day(now)
        end = start + relativedelta(days=1)
    elif kind is SessionType.WEEKLY:
        start = week_start(now)
        end = start + relativedelta(weeks=1)
    elif kind is SessionType.MONTHLY:
        start = _start_of_day(now).replace(day=1)
        end = start + relativedelta(months=1)
    elif kind is SessionType.YEARLY:
        start = _start_of_day(now).replace(month=1, day=1)
        end = start + relativedelta(years=1)
    else:
        return SessionBounds(OVERALL_START, OVERALL_END)

    return SessionBounds(start, end - _LAST_MICROSECOND)


def period_key(session_type: str, now: datetime) -> str:
    """Calendar identity of the period containing ``now``."""
    kind = _coerce_type(session_type)
    now = as_utc(now)

    if kind is SessionType.DAILY:
        return now.strftime("%Y-%m-%d")
    if kind is SessionType.WEEKLY:
        iso_year, iso_week, _ = (week_start(now) + timedelta(days=1)).isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if kind is SessionType.MONTHLY:
        return now.strftime("%Y-%m")
    if kind is SessionType.YEARLY:
        return now.strftime("%Y")
    return OVERALL_KEY


def session_key(session_type: str, now: datetime) -> str:
    return f"{_coerce_type(session_type).value}-{period_key(session_type, now)}"


def is_in_period(session_type: str, instant: datetime, now: datetime) -> bool:
    return session_bounds(session_type, now).contains(instant)
