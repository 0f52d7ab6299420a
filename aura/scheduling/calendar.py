"""
Business calendar resolution.

Operating hours arrive as loosely keyed maps (``"segunda-feira"``, ``"terca"``,
``"Tuesday"``...) because owners edit them from different screens and older
records were typed by hand. Everything in here converts those keys to the
``Weekday`` enum on read; raw keys never leave this module.
"""

import datetime
import enum
import unicodedata
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ..errors import ValidationError

MINUTES_PER_DAY = 24 * 60


class Weekday(enum.Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, day: datetime.date) -> "Weekday":
        return _BY_ISO_INDEX[day.weekday()]


_BY_ISO_INDEX = list(Weekday)

_ALIASES = {
    "monday": Weekday.MONDAY,
    "mon": Weekday.MONDAY,
    "segunda": Weekday.MONDAY,
    "seg": Weekday.MONDAY,
    "tuesday": Weekday.TUESDAY,
    "tue": Weekday.TUESDAY,
    "terca": Weekday.TUESDAY,
    "ter": Weekday.TUESDAY,
    "wednesday": Weekday.WEDNESDAY,
    "wed": Weekday.WEDNESDAY,
    "quarta": Weekday.WEDNESDAY,
    "qua": Weekday.WEDNESDAY,
    "thursday": Weekday.THURSDAY,
    "thu": Weekday.THURSDAY,
    "quinta": Weekday.THURSDAY,
    "qui": Weekday.THURSDAY,
    "friday": Weekday.FRIDAY,
    "fri": Weekday.FRIDAY,
    "sexta": Weekday.FRIDAY,
    "sex": Weekday.FRIDAY,
    "saturday": Weekday.SATURDAY,
    "sat": Weekday.SATURDAY,
    "sabado": Weekday.SATURDAY,
    "sab": Weekday.SATURDAY,
    "sunday": Weekday.SUNDAY,
    "sun": Weekday.SUNDAY,
    "domingo": Weekday.SUNDAY,
    "dom": Weekday.SUNDAY,
}


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_weekday(key) -> Optional[Weekday]:
    """Map any accepted spelling of a weekday to its canonical member.

    Returns None for keys that do not name a weekday.
    """
    if isinstance(key, Weekday):
        return key
    if not isinstance(key, str):
        return None

    cleaned = _strip_accents(key).strip().lower().rstrip(".")
    for suffix in ("-feira", " feira", "feira"):
        if cleaned.endswith(suffix):
            cleaned = cleaned[: -len(suffix)].strip()
            break
    return _ALIASES.get(cleaned)


def parse_time_of_day(value) -> Optional[int]:
    """Parse ``"HH:MM"`` (seconds tolerated) into minutes after midnight."""
    if isinstance(value, datetime.time):
        return value.hour * 60 + value.minute
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= minutes < 60) or hours < 0:
        return None
    total = hours * 60 + minutes
    if total > MINUTES_PER_DAY:
        return None
    return total


def format_time_of_day(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def to_time(minutes: int) -> datetime.time:
    return datetime.time(minutes // 60, minutes % 60)


@dataclass(frozen=True)
class DayWindow:
    closed: bool
    open: int
    close: int

    def to_dict(self):
        return {
            "closed": self.closed,
            "open": format_time_of_day(self.open),
            "close": format_time_of_day(self.close),
        }


# Missing configuration must not block bookings: a day nobody configured is
# treated as open for business with these hours.
FAIL_OPEN_WINDOW = DayWindow(closed=False, open=9 * 60, close=18 * 60)


def parse_day_entry(entry) -> Optional[DayWindow]:
    """Turn a raw ``{closed, open, close}`` entry into a DayWindow.

    Older records use ``enabled`` instead of ``closed``. Entries whose times
    cannot be read are treated as absent.
    """
    if not isinstance(entry, Mapping):
        return None
    if "closed" in entry:
        closed = bool(entry.get("closed"))
    else:
        closed = not bool(entry.get("enabled", True))

    open_min = parse_time_of_day(entry.get("open"))
    close_min = parse_time_of_day(entry.get("close"))
    if closed:
        return DayWindow(True, open_min or 0, close_min or 0)
    if open_min is None or close_min is None:
        return None
    return DayWindow(False, open_min, close_min)


def normalize_schedule(raw) -> Dict[Weekday, DayWindow]:
    """Read a weekday-keyed hours map into canonical form.

    When two spellings land on the same weekday the English key wins,
    otherwise the first one seen.
    """
    schedule: Dict[Weekday, DayWindow] = {}
    if not isinstance(raw, Mapping):
        return schedule

    canonical_seen = set()
    for key, entry in raw.items():
        day = normalize_weekday(key)
        if day is None:
            continue
        window = parse_day_entry(entry)
        if window is None:
            continue
        is_canonical = isinstance(key, str) and key.strip().lower() == day.value
        if day in schedule and (day in canonical_seen or not is_canonical):
            continue
        schedule[day] = window
        if is_canonical:
            canonical_seen.add(day)
    return schedule


def canonicalize_hours(raw) -> dict:
    """Validate owner-submitted hours and return them keyed by canonical weekday."""
    if not isinstance(raw, Mapping):
        raise ValidationError("Operating hours must be an object keyed by weekday")

    result = {}
    for key, entry in raw.items():
        day = normalize_weekday(key)
        if day is None:
            raise ValidationError(f"Unknown weekday '{key}'")
        window = parse_day_entry(entry)
        if window is None:
            raise ValidationError(f"Invalid hours for '{key}', expected HH:MM")
        if not window.closed and window.open >= window.close:
            raise ValidationError(f"Opening time must be before closing time on '{key}'")
        result[day.value] = window.to_dict()
    return result


def resolve_day_window(on_date: datetime.date, salon_hours=None, professional_hours=None) -> DayWindow:
    """Resolve the open/close window that applies on ``on_date``.

    A professional's own entry wins when it exists and is not closed; a closed
    or missing professional entry defers to the salon. With no entry anywhere
    the day falls back to FAIL_OPEN_WINDOW.
    """
    day = Weekday.of(on_date)

    professional_window = normalize_schedule(professional_hours).get(day)
    if professional_window is not None and not professional_window.closed:
        return professional_window

    salon_window = normalize_schedule(salon_hours).get(day)
    if salon_window is not None:
        return salon_window

    return FAIL_OPEN_WINDOW


def window_for(salon, professional, on_date: datetime.date) -> DayWindow:
    """ORM-facing wrapper around resolve_day_window."""
    return resolve_day_window(
        on_date,
        salon_hours=salon.operating_hours if salon is not None else None,
        professional_hours=professional.operating_hours if professional is not None else None,
    )
