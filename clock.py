"""
clock.py — Civil time for reminder decisions.

Every date comparison uses one fixed civil timezone (UTC+5 by default),
computed from UTC plus a numeric offset. Host locale and host timezone are
never consulted.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from config import UTC_OFFSET_HOURS, TIMEZONE_LABEL, WINDOW_HOUR, WINDOW_MINUTES

CIVIL_TZ = timezone(timedelta(hours=UTC_OFFSET_HOURS), TIMEZONE_LABEL)


@dataclass(frozen=True)
class CivilNow:
    """A single instant, viewed in civil time."""
    instant: datetime  # aware, in CIVIL_TZ

    @property
    def date(self) -> date:
        return self.instant.date()

    @property
    def tomorrow(self) -> date:
        return self.date + timedelta(days=1)

    @property
    def hour(self) -> int:
        return self.instant.hour

    @property
    def minute(self) -> int:
        return self.instant.minute

    @property
    def utc(self) -> datetime:
        return self.instant.astimezone(timezone.utc)

    def isoformat(self) -> str:
        """UTC ISO timestamp, the format written to the store."""
        return self.utc.isoformat()


def civil_now(utc_now: Optional[datetime] = None) -> CivilNow:
    """
    Current civil date and time of day.
    A naive utc_now is taken to be UTC.
    """
    if utc_now is None:
        utc_now = datetime.now(timezone.utc)
    elif utc_now.tzinfo is None:
        utc_now = utc_now.replace(tzinfo=timezone.utc)
    return CivilNow(instant=utc_now.astimezone(CIVIL_TZ))


def civil_at(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> CivilNow:
    """Build a CivilNow from civil wall-clock fields."""
    return CivilNow(instant=datetime(year, month, day, hour, minute, tzinfo=CIVIL_TZ))


def civil_date_only(value: str) -> date:
    """
    Parse a YYYY-MM-DD string as a civil calendar date (civil midnight).
    Raises ValueError for anything else.
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected a YYYY-MM-DD string, got {value!r}")
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()


def civil_midnight(value: str) -> datetime:
    """Civil midnight at the start of a YYYY-MM-DD date, as an aware datetime."""
    d = civil_date_only(value)
    return datetime(d.year, d.month, d.day, tzinfo=CIVIL_TZ)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO timestamp from the store into an aware datetime.

    Returns None for empty values. A bare date is read as civil midnight and
    a naive timestamp as UTC. Raises ValueError for malformed input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if len(text) == 10:
            return civil_midnight(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def civil_date_of(value: Optional[str]) -> Optional[date]:
    """Civil calendar date on which a stored timestamp falls."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(CIVIL_TZ).date()


def in_reminder_window(now: CivilNow, hour: int = WINDOW_HOUR, minutes: int = WINDOW_MINUTES) -> bool:
    """True between hour:00 and hour:(minutes - 1) civil time, inclusive."""
    return now.hour == hour and 0 <= now.minute < minutes


def reminder_window_passed(now: CivilNow, hour: int = WINDOW_HOUR, minutes: int = WINDOW_MINUTES) -> bool:
    """True once today's reminder window has closed."""
    return (now.hour, now.minute) >= (hour, minutes)


def format_civil(dt: datetime) -> str:
    """Human readable civil time, e.g. 'Jan 05, 2025 09:02 AM PKT'."""
    return dt.astimezone(CIVIL_TZ).strftime(f"%b %d, %Y %I:%M %p {TIMEZONE_LABEL}")
