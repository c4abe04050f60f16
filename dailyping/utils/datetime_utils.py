import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dailyping.config.settings import settings

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
FALLBACK_TIMEZONE = "UTC"
FALLBACK_TRIGGER_TIME = "08:00"


@dataclass(frozen=True)
class LocalClock:
    """A user's wall-clock view of an instant."""

    hhmm: str
    day: date
    timezone: str
    # Local HH:MM one minute earlier, "" when that was still the previous day
    previous_hhmm: Optional[str] = None

    @property
    def day_key(self) -> str:
        return self.day.isoformat()

    def reaches(self, hhmm: str) -> bool:
        """
        True when ``hhmm`` is this minute or a wall time the clock jumped over
        since the previous minute (the spring-forward gap of a DST change).
        """
        if hhmm == self.hhmm:
            return True
        if self.previous_hhmm is None:
            return False
        return self.previous_hhmm < hhmm < self.hhmm


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to UTC timezone-aware datetime.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: UTC timezone-aware datetime
    """
    if dt.tzinfo is None:
        # Assume naive datetime is in UTC
        return dt.replace(tzinfo=timezone.utc)
    else:
        return dt.astimezone(timezone.utc)


def _load_zone(name: Optional[str]) -> Optional[ZoneInfo]:
    if not isinstance(name, str) or not name.strip():
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """
    Resolve an IANA timezone identifier, falling back to the configured default.

    Never raises: an absent or unknown identifier resolves to
    ``settings.DEFAULT_TIMEZONE`` and, if that is broken too, to UTC.
    """
    return (
        _load_zone(name)
        or _load_zone(settings.DEFAULT_TIMEZONE)
        or ZoneInfo(FALLBACK_TIMEZONE)
    )


def is_valid_hhmm(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(HHMM_PATTERN.match(value))


def normalize_trigger_time(value: Optional[str]) -> str:
    """
    Return ``value`` as a zero-padded ``HH:MM`` string or the configured default.

    Accepts single-digit hours ("7:05") since older clients stored them that way.
    """
    if isinstance(value, str):
        candidate = value.strip()
        if re.match(r"^\d:[0-5]\d$", candidate):
            candidate = f"0{candidate}"
        if is_valid_hhmm(candidate):
            return candidate

    if is_valid_hhmm(settings.DEFAULT_TRIGGER_TIME):
        return settings.DEFAULT_TRIGGER_TIME
    return FALLBACK_TRIGGER_TIME


def _previous_minute(previous: datetime, local: datetime) -> Optional[str]:
    if previous.date() == local.date():
        return previous.strftime("%H:%M")
    # Previous minute was yesterday, so any time of today before ``local`` was skipped
    if previous.date() < local.date():
        return ""
    return None


def local_clock(instant: datetime, tz_name: Optional[str]) -> LocalClock:
    """
    Partition an instant into the user's local ``HH:MM`` and calendar day.

    The calendar day is the *local* date, so two instants on the same UTC date
    can land on different days and vice versa. Naive instants are read as UTC.

    Args:
        instant: The moment being evaluated
        tz_name: IANA timezone identifier (may be missing or invalid)

    Returns:
        LocalClock with ``hhmm``, ``day``, the zone actually used and the
        previous minute's ``HH:MM``
    """
    zone = resolve_timezone(tz_name)
    utc_instant = to_utc(instant)
    local = utc_instant.astimezone(zone)
    previous = (utc_instant - timedelta(minutes=1)).astimezone(zone)
    return LocalClock(
        hhmm=local.strftime("%H:%M"),
        day=local.date(),
        timezone=zone.key,
        previous_hhmm=_previous_minute(previous, local),
    )


def local_day(instant: datetime, tz_name: Optional[str]) -> date:
    """Local calendar day of ``instant`` in ``tz_name``."""
    return local_clock(instant, tz_name).day


def parse_day(value: Union[str, date]) -> date:
    """Parse a ``YYYY-MM-DD`` day key. ``datetime`` values are rejected."""
    if isinstance(value, datetime):
        raise ValueError("Expected a calendar day, got a datetime")
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def previous_day(day: date) -> date:
    return day - timedelta(days=1)
