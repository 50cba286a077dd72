"""ISO-week period calculator.

Every component that needs "this week" resolves it here, so instantiation,
verification and scoring agree on boundaries without talking to each other.

Keys follow ISO-8601 weeks (`date.isocalendar()`): the ISO year is used in the
key, so Monday 2024-12-30 belongs to `2025-01` and Sunday 2021-01-03 belongs to
`2020-53`. A period runs from Monday 00:00 to Sunday 23:59:59.999 in a single
time zone that callers pass explicitly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config_loader import DEFAULT_TIMEZONE
from .errors import InvalidPeriodKey

DEFAULT_PERIOD_TIMEZONE = DEFAULT_TIMEZONE
_PERIOD_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")
_END_OF_DAY = time(hour=23, minute=59, second=59, microsecond=999000)


def _zone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone: {timezone_name}") from exc


def as_aware(instant: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant


@dataclass(frozen=True, slots=True)
class Period:
    """One Monday-to-Sunday week."""

    key: str
    start: datetime
    end: datetime
    timezone: str

    @property
    def iso_year(self) -> int:
        return int(self.key[:4])

    @property
    def week(self) -> int:
        return int(self.key[5:])

    def contains(self, instant: datetime) -> bool:
        value = as_aware(instant)
        return self.start <= value <= self.end

    def day_end(self, day_offset: int) -> datetime:
        """Due instant for a task assigned to `day_offset` (1 = Monday ... 7 = Sunday).

        Days 1-6 are due at the end of the following day; day 7 is due at the end
        of Sunday itself.
        """
        if not 1 <= day_offset <= 7:
            raise ValueError("day_offset must be between 1 and 7.")
        due_date = self.start.date() + timedelta(days=min(day_offset, 6))
        return datetime.combine(due_date, _END_OF_DAY, tzinfo=self.start.tzinfo)

    def previous(self) -> "Period":
        return period_for_instant(self.start - timedelta(days=1), self.timezone)

    def next(self) -> "Period":
        return period_for_instant(self.end + timedelta(days=1), self.timezone)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.key,
            "period_start": self.start.isoformat(),
            "period_end": self.end.isoformat(),
            "timezone": self.timezone,
        }


def _build_period(iso_year: int, iso_week: int, timezone_name: str) -> Period:
    zone = _zone(timezone_name)
    monday = date.fromisocalendar(iso_year, iso_week, 1)
    start = datetime.combine(monday, time.min, tzinfo=zone)
    end = datetime.combine(monday + timedelta(days=6), _END_OF_DAY, tzinfo=zone)
    return Period(
        key=f"{iso_year:04d}-{iso_week:02d}",
        start=start,
        end=end,
        timezone=timezone_name,
    )


def period_for_instant(instant: datetime, timezone_name: str = DEFAULT_PERIOD_TIMEZONE) -> Period:
    """Return the period containing `instant` as seen in `timezone_name`."""
    local = as_aware(instant).astimezone(_zone(timezone_name))
    iso = local.isocalendar()
    return _build_period(iso.year, iso.week, timezone_name)


def period_from_key(key: str, timezone_name: str = DEFAULT_PERIOD_TIMEZONE) -> Period:
    """Parse a `YYYY-WW` key into its period."""
    raw = str(key or "").strip()
    match = _PERIOD_KEY_RE.match(raw)
    if match is None:
        raise InvalidPeriodKey(raw)
    iso_year, iso_week = int(match.group(1)), int(match.group(2))
    try:
        date.fromisocalendar(iso_year, iso_week, 1)
    except ValueError as exc:
        raise InvalidPeriodKey(raw, f"week {iso_week} does not exist in ISO year {iso_year}") from exc
    return _build_period(iso_year, iso_week, timezone_name)


def resolve_period(
    period_key: str | None = None,
    *,
    now: datetime | None = None,
    timezone_name: str = DEFAULT_PERIOD_TIMEZONE,
) -> Period:
    """Resolve an explicit key, or the period containing `now` (default: current time)."""
    if period_key is not None and str(period_key).strip():
        return period_from_key(period_key, timezone_name)
    return period_for_instant(now if now is not None else datetime.now(tz=UTC), timezone_name)


def local_date(instant: datetime, timezone_name: str = DEFAULT_PERIOD_TIMEZONE) -> date:
    """Calendar date of `instant` in the period time zone."""
    return as_aware(instant).astimezone(_zone(timezone_name)).date()
