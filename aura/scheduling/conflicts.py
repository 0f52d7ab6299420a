"""
One definition of "overlap", shared by slot generation, booking and reschedule.
"""

import datetime
from dataclasses import dataclass
from typing import Iterable, Optional

CANCELED = "canceled"


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    # half-open intervals, so back-to-back bookings do not collide
    return b_start < a_end and b_end > a_start


@dataclass(frozen=True)
class Booking:
    """The slice of an appointment the validator cares about."""

    professional_id: Optional[int]
    date: datetime.date
    start: int
    duration: int
    status: str = "confirmed"
    appointment_id: Optional[int] = None

    @property
    def end(self):
        return self.start + self.duration

    @classmethod
    def from_appointment(cls, appointment):
        start = appointment.start_time
        return cls(
            professional_id=appointment.professional_id,
            date=appointment.appt_date,
            start=start.hour * 60 + start.minute,
            duration=appointment.duration_min,
            status=appointment.status,
            appointment_id=appointment.id,
        )


def find_conflicts(candidate: Booking, existing: Iterable[Booking], ignore_id=None):
    """Return the bookings that overlap ``candidate`` for the same professional and date."""
    clashes = []
    for other in existing:
        if other.status == CANCELED:
            continue
        if other.professional_id != candidate.professional_id or other.date != candidate.date:
            continue
        if ignore_id is not None and other.appointment_id == ignore_id:
            continue
        if intervals_overlap(candidate.start, candidate.end, other.start, other.end):
            clashes.append(other)
    return clashes


def has_conflict(candidate: Booking, existing: Iterable[Booking], ignore_id=None) -> bool:
    return bool(find_conflicts(candidate, existing, ignore_id=ignore_id))
