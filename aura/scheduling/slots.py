import datetime
from typing import Callable, Iterable, List, Optional

from .calendar import DayWindow, format_time_of_day
from .conflicts import Booking, has_conflict

SLOT_STEP_MINUTES = 30
SAME_DAY_BUFFER_MINUTES = 10


def generate_slots(
    window: DayWindow,
    existing: Iterable[Booking],
    total_duration: int,
    professional_id,
    on_date: datetime.date,
    now_cutoff: Optional[int] = None,
    step: int = SLOT_STEP_MINUTES,
    buffer: int = SAME_DAY_BUFFER_MINUTES,
) -> List[str]:
    """
    Bookable start times ("HH:MM", ascending) for one professional on one date.

    Candidates are anchored at ``window.open`` and spaced ``step`` minutes
    apart; a candidate survives when the whole service fits before closing,
    it does not collide with an existing booking, and (same-day only) it
    starts at least ``buffer`` minutes after ``now_cutoff``.

    Invalid input yields an empty list, never an exception.
    """
    if window is None or window.closed:
        return []
    if not total_duration or total_duration <= 0 or step <= 0:
        return []
    if window.open >= window.close:
        return []

    existing = list(existing)
    earliest = None if now_cutoff is None else now_cutoff + buffer

    slots = []
    for start in range(window.open, window.close, step):
        if start + total_duration > window.close:
            break
        if earliest is not None and start < earliest:
            continue
        candidate = Booking(professional_id, on_date, start, total_duration)
        if has_conflict(candidate, existing):
            continue
        slots.append(format_time_of_day(start))
    return slots


def bookable_dates(
    today: datetime.date,
    days: int,
    resolve: Callable[[datetime.date], DayWindow],
) -> List[datetime.date]:
    """The rolling window of upcoming days, minus days that resolve as closed."""
    offered = []
    for offset in range(days):
        day = today + datetime.timedelta(days=offset)
        if resolve(day).closed:
            continue
        offered.append(day)
    return offered
