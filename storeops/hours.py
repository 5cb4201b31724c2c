"""Business hours: live open/closed status, pre-save validation and time formatting.

Times are "HH:MM" strings in 24-hour form. Because they are always zero padded,
plain string comparison orders them correctly. Periods never span midnight.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone as dt_timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

# Indexed by datetime.weekday(), Monday first.
WEEKDAYS: tuple[str, ...] = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)

_TIME_24 = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_TIME_12 = re.compile(r"^\s*(\d{1,2}):([0-5]\d)\s*([AaPp][Mm])\s*$")


class HoursValidationError(ValueError):
    def __init__(self, messages: Sequence[str]) -> None:
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


@dataclass(frozen=True)
class WeeklyPeriod:
    day: str
    open: str
    close: str


@dataclass(frozen=True)
class SpecialHourOverride:
    date: date
    is_closed: bool = False
    open: str | None = None
    close: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class StoreStatus:
    is_open: bool
    label: str
    special: bool = False


@dataclass(frozen=True)
class SpecialHoursEntry:
    override: SpecialHourOverride
    label: str
    days_away: int


def is_valid_time(value: str | None) -> bool:
    return bool(value) and _TIME_24.match(value) is not None


def to_12_hour(value: str) -> str:
    """Format "13:05" as "1:05 PM". Malformed input is returned unchanged."""
    if not isinstance(value, str):
        return value
    match = _TIME_24.match(value)
    if not match:
        return value
    hour, minute = int(match.group(1)), match.group(2)
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minute} {suffix}"


def to_24_hour(value: str) -> str:
    """Parse "1:05 PM" into "13:05". Malformed input is returned unchanged."""
    if not isinstance(value, str):
        return value
    match = _TIME_12.match(value)
    if not match:
        return value
    hour, minute, suffix = int(match.group(1)), match.group(2), match.group(3).upper()
    if not 1 <= hour <= 12:
        return value
    if suffix == "AM":
        hour = 0 if hour == 12 else hour
    else:
        hour = 12 if hour == 12 else hour + 12
    return f"{hour:02d}:{minute}"


def format_range(open_time: str | None, close_time: str | None) -> str:
    if not open_time or not close_time:
        return "Closed"
    return f"{to_12_hour(open_time)} - {to_12_hour(close_time)}"


def resolve_timezone(name: str | None) -> ZoneInfo | dt_timezone:
    if not name:
        return dt_timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return dt_timezone.utc


def localize(now: datetime, timezone: str | None) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)
    return now.astimezone(resolve_timezone(timezone))


def _overrides_for(overrides: Iterable[SpecialHourOverride], today: date) -> list[SpecialHourOverride]:
    return [override for override in overrides if override.date == today]


def _status_for_window(open_time: str, close_time: str, now_hhmm: str, suffix: str = "") -> StoreStatus | None:
    if open_time <= now_hhmm < close_time:
        return StoreStatus(True, f"Open until {to_12_hour(close_time)}{suffix}", bool(suffix))
    if now_hhmm < open_time:
        return StoreStatus(False, f"Opens at {to_12_hour(open_time)}{suffix}", bool(suffix))
    return None


def compute_status(
    periods: Sequence[WeeklyPeriod],
    overrides: Sequence[SpecialHourOverride],
    now: datetime,
    timezone: str | None,
) -> StoreStatus:
    local_now = localize(now, timezone)
    today = local_now.date()
    now_hhmm = local_now.strftime("%H:%M")

    todays_overrides = _overrides_for(overrides, today)
    if any(override.is_closed for override in todays_overrides):
        return StoreStatus(False, "Closed today (special hours)", True)
    windows = sorted(
        (o for o in todays_overrides if is_valid_time(o.open) and is_valid_time(o.close)),
        key=lambda o: o.open,
    )
    if windows:
        for window in windows:
            status = _status_for_window(window.open, window.close, now_hhmm, " (special hours)")
            if status is not None:
                return status
        return StoreStatus(False, "Closed (special hours)", True)
    if todays_overrides:
        logger.debug("Ignoring special hours for %s without a valid time range", today)

    weekday = WEEKDAYS[local_now.weekday()]
    todays = sorted(
        (p for p in periods if p.day == weekday and is_valid_time(p.open) and is_valid_time(p.close)),
        key=lambda p: p.open,
    )
    if not todays:
        return StoreStatus(False, "Closed today")

    for period in todays:
        status = _status_for_window(period.open, period.close, now_hhmm)
        if status is not None:
            return status
    return StoreStatus(False, "Closed")


def _range_errors(label: str, open_time: str | None, close_time: str | None) -> list[str]:
    if not is_valid_time(open_time) or not is_valid_time(close_time):
        return [f"{label}: open and close times must be in HH:MM format"]
    if open_time >= close_time:
        return [f"{label}: close time must be after open time"]
    return []


def _overlap_errors(label: str, ranges: list[tuple[str, str]]) -> list[str]:
    errors: list[str] = []
    ordered = sorted(ranges)
    for index, (open_a, close_a) in enumerate(ordered):
        for open_b, close_b in ordered[index + 1:]:
            if open_a < close_b and open_b < close_a:
                errors.append(
                    f"{label}: {format_range(open_a, close_a)} overlaps {format_range(open_b, close_b)}"
                )
    return errors


def validate_periods(periods: Sequence[WeeklyPeriod]) -> list[str]:
    errors: list[str] = []
    by_day: dict[str, list[tuple[str, str]]] = defaultdict(list)

    for period in periods:
        day_label = period.day.title() if isinstance(period.day, str) else str(period.day)
        if period.day not in WEEKDAYS:
            errors.append(f"{day_label}: unknown day")
            continue
        range_errors = _range_errors(day_label, period.open, period.close)
        if range_errors:
            errors.extend(range_errors)
            continue
        by_day[period.day].append((period.open, period.close))

    for day in WEEKDAYS:
        errors.extend(_overlap_errors(day.title(), by_day.get(day, [])))
    return errors


def validate_overrides(overrides: Sequence[SpecialHourOverride]) -> list[str]:
    errors: list[str] = []
    by_date: dict[date, list[tuple[str, str]]] = defaultdict(list)

    for override in overrides:
        if override.is_closed:
            continue
        label = override.date.isoformat()
        range_errors = _range_errors(label, override.open, override.close)
        if range_errors:
            errors.extend(range_errors)
            continue
        by_date[override.date].append((override.open, override.close))

    for day in sorted(by_date):
        errors.extend(_overlap_errors(day.isoformat(), by_date[day]))
    return errors


def ensure_valid_periods(periods: Sequence[WeeklyPeriod]) -> None:
    errors = validate_periods(periods)
    if errors:
        raise HoursValidationError(errors)


def ensure_valid_overrides(overrides: Sequence[SpecialHourOverride]) -> None:
    errors = validate_overrides(overrides)
    if errors:
        raise HoursValidationError(errors)


def upcoming_special_hours(
    overrides: Sequence[SpecialHourOverride],
    now: datetime,
    timezone: str | None,
    days_ahead: int = 7,
) -> list[SpecialHoursEntry]:
    """Today's and upcoming overrides within ``days_ahead`` days, soonest first."""
    today = localize(now, timezone).date()
    horizon = today + timedelta(days=days_ahead)
    entries = [
        SpecialHoursEntry(
            override=override,
            label="today" if override.date == today else "upcoming",
            days_away=(override.date - today).days,
        )
        for override in overrides
        if today <= override.date <= horizon
    ]
    return sorted(entries, key=lambda entry: entry.override.date)
