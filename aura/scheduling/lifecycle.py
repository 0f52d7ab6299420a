"""
Appointment lifecycle: status transitions and every write that touches the
appointment table.

Writes that claim time on a professional's calendar (create, reschedule) lock
that professional's row first, then run the overlap check, then write, all in
one transaction. Two sessions booking the same professional therefore
serialize on the database instead of both passing the check. The overlap
check reads with FOR UPDATE as well: under REPEATABLE READ a plain SELECT
would still see the snapshot taken before the lock was granted.
"""

import datetime
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, OperationalError

from ..errors import (
    BookingError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Appointment, AuthUser, Professional
from .calendar import MINUTES_PER_DAY, format_time_of_day, to_time
from .conflicts import Booking, find_conflicts
from .pricing import to_money

PENDING = "pending"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELED = "canceled"

TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELED},
    CONFIRMED: {COMPLETED, CANCELED},
    COMPLETED: set(),
    CANCELED: set(),
}
TERMINAL = {COMPLETED, CANCELED}
DELETABLE = {PENDING, CANCELED}

STATUS_LABELS = {
    PENDING: "Awaiting payment",
    CONFIRMED: "Confirmed",
    COMPLETED: "Completed",
    CANCELED: "Canceled",
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def check_transition(current: str, target: str):
    if current in TERMINAL:
        raise InvalidTransitionError(
            f"Appointment is already {current}", current=current, target=target
        )
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move appointment from {current} to {target}",
            current=current,
            target=target,
        )


@contextmanager
def atomic():
    """Commit on success; map storage failures onto the booking error taxonomy."""
    try:
        yield
        db.session.commit()
    except BookingError:
        db.session.rollback()
        raise
    except IntegrityError as e:
        db.session.rollback()
        current_app.logger.warning(f"Appointment write rejected by storage: {e.orig}")
        raise ConflictError("Slot no longer available, choose another") from e
    except OperationalError as e:
        db.session.rollback()
        current_app.logger.error(f"Storage unavailable during appointment write: {e}")
        raise ExternalServiceError("Storage is temporarily unavailable, try again") from e


def get_appointment(appointment_id) -> Appointment:
    appointment = db.session.get(Appointment, appointment_id)
    if not appointment:
        raise NotFoundError("Appointment not found", appointment_id=appointment_id)
    return appointment


def bookings_query(professional_id, on_date: datetime.date, lock=False):
    stmt = select(Appointment).where(
        Appointment.professional_id == professional_id,
        Appointment.appt_date == on_date,
        Appointment.status != CANCELED,
    )
    if lock:
        # a locking read sees rows committed after this transaction's snapshot
        stmt = stmt.with_for_update()
    return stmt


def bookings_for(professional_id, on_date: datetime.date, lock=False):
    stmt = bookings_query(professional_id, on_date, lock=lock)
    return [Booking.from_appointment(a) for a in db.session.scalars(stmt)]


def appointments_for_day(salon_id, on_date: datetime.date, professional_id=None):
    stmt = select(Appointment).where(
        Appointment.salon_id == salon_id,
        Appointment.appt_date == on_date,
        Appointment.status != CANCELED,
    )
    if professional_id is not None:
        stmt = stmt.where(Appointment.professional_id == professional_id)
    return list(db.session.scalars(stmt.order_by(Appointment.start_time)))


def client_appointments(client_id, today: datetime.date, upcoming=True):
    """A client's history split the way the client area shows it.

    Upcoming holds open appointments from today on; previous holds everything
    else, newest first.
    """
    stmt = select(Appointment).where(Appointment.client_id == client_id)
    open_statuses = (PENDING, CONFIRMED)
    if upcoming:
        stmt = stmt.where(
            Appointment.appt_date >= today, Appointment.status.in_(open_statuses)
        ).order_by(Appointment.appt_date, Appointment.start_time)
    else:
        stmt = stmt.where(
            or_(Appointment.appt_date < today, Appointment.status.notin_(open_statuses))
        ).order_by(Appointment.appt_date.desc(), Appointment.start_time.desc())
    return list(db.session.scalars(stmt))


def _lock_professional(professional_id) -> Professional:
    stmt = select(Professional).where(Professional.id == professional_id).with_for_update()
    professional = db.session.scalar(stmt)
    if not professional:
        raise NotFoundError("Professional not found", professional_id=professional_id)
    return professional


def _ensure_free(candidate: Booking, ignore_id=None):
    clashes = find_conflicts(
        candidate,
        bookings_for(candidate.professional_id, candidate.date, lock=True),
        ignore_id=ignore_id,
    )
    if clashes:
        current_app.logger.warning(
            f"Conflict for professional {candidate.professional_id} on {candidate.date} "
            f"at {format_time_of_day(candidate.start)}: overlaps appointment "
            f"{clashes[0].appointment_id}"
        )
        raise ConflictError(
            "Slot no longer available, choose another",
            date=candidate.date.isoformat(),
            time=format_time_of_day(candidate.start),
        )


def _check_span(start, duration):
    if start is None or not (0 <= start < MINUTES_PER_DAY):
        raise ValidationError("Start time must be between 00:00 and 23:59")
    if start + duration > MINUTES_PER_DAY:
        raise ValidationError("Appointment must end by midnight")


def create_appointment(
    *,
    salon_id,
    client_id,
    professional_id,
    on_date: datetime.date,
    start: int,
    duration: int,
    service_names: str,
    valor,
    status=PENDING,
    booked_by_ai=False,
) -> Appointment:
    if status not in (PENDING, CONFIRMED):
        raise InvalidTransitionError(f"Appointments cannot be created as {status}")
    if professional_id is None:
        raise ValidationError("A professional is required")
    if not duration or duration <= 0:
        raise ValidationError("Duration must be positive")
    _check_span(start, duration)
    valor = to_money(valor)
    if valor < 0:
        raise ValidationError("Value cannot be negative")

    with atomic():
        if not db.session.get(AuthUser, client_id):
            raise NotFoundError("Client not found", client_id=client_id)
        professional = _lock_professional(professional_id)
        if professional.salon_id != salon_id:
            raise ValidationError("Professional does not work at this salon")

        _ensure_free(Booking(professional_id, on_date, start, duration))

        appointment = Appointment(
            salon_id=salon_id,
            client_id=client_id,
            professional_id=professional_id,
            service_names=service_names,
            valor=valor,
            appt_date=on_date,
            start_time=to_time(start),
            duration_min=duration,
            status=status,
            booked_by_ai=booked_by_ai,
        )
        db.session.add(appointment)
        db.session.flush()

    current_app.logger.info(
        f"Appointment {appointment.id} created as {status} for professional "
        f"{professional_id} on {on_date} at {format_time_of_day(start)}"
    )
    return appointment


def _move_status(appointment_id, target: str) -> Appointment:
    with atomic():
        appointment = get_appointment(appointment_id)
        check_transition(appointment.status, target)
        appointment.status = target
        appointment.updated_at = datetime.datetime.now()

    current_app.logger.info(f"Appointment {appointment_id} moved to {target}")
    return appointment


def finish(appointment_id) -> Appointment:
    return _move_status(appointment_id, COMPLETED)


def cancel(appointment_id) -> Appointment:
    return _move_status(appointment_id, CANCELED)


def delete(appointment_id):
    """Hard removal, reserved for pending or canceled records."""
    with atomic():
        appointment = get_appointment(appointment_id)
        if appointment.status not in DELETABLE:
            raise InvalidTransitionError(
                f"A {appointment.status} appointment cannot be deleted; cancel it instead",
                current=appointment.status,
            )
        db.session.delete(appointment)

    current_app.logger.info(f"Appointment {appointment_id} deleted")


def discard_pending(appointment_id, payment_id=None) -> bool:
    """Compensating delete for a pending appointment whose payment did not go through.

    With ``payment_id`` the delete only happens when that payment is the one
    attached to the appointment, so a late failure notice for an earlier
    attempt cannot release a slot a newer payment is still holding.
    """
    with atomic():
        appointment = db.session.get(Appointment, appointment_id)
        if appointment is None:
            return False
        if payment_id is not None and appointment.payment_id != str(payment_id):
            current_app.logger.info(
                f"Not discarding appointment {appointment_id}: payment {payment_id} "
                f"is not the attached one ({appointment.payment_id})"
            )
            return False
        if appointment.status != PENDING:
            current_app.logger.warning(
                f"Not discarding appointment {appointment_id}: status is {appointment.status}"
            )
            return False
        db.session.delete(appointment)

    current_app.logger.info(f"Pending appointment {appointment_id} discarded")
    return True


def reschedule(appointment_id, on_date: datetime.date, start: int, professional_id=None) -> Appointment:
    """Move an appointment; on conflict nothing about the original record changes."""
    with atomic():
        appointment = get_appointment(appointment_id)
        if appointment.status in TERMINAL:
            raise InvalidTransitionError(
                f"A {appointment.status} appointment cannot be rescheduled",
                current=appointment.status,
            )

        _check_span(start, appointment.duration_min)

        target_professional = professional_id or appointment.professional_id
        professional = _lock_professional(target_professional)
        if professional.salon_id != appointment.salon_id:
            raise ValidationError("Professional does not work at this salon")

        _ensure_free(
            Booking(target_professional, on_date, start, appointment.duration_min),
            ignore_id=appointment.id,
        )

        appointment.professional_id = target_professional
        appointment.appt_date = on_date
        appointment.start_time = to_time(start)
        appointment.updated_at = datetime.datetime.now()

    current_app.logger.info(
        f"Appointment {appointment_id} rescheduled to {on_date} {format_time_of_day(start)} "
        f"with professional {target_professional}"
    )
    return appointment


def confirm_payment(appointment_id, payment_id, payment_method=None) -> bool:
    """Flip pending -> confirmed for an approved payment.

    Returns True only for the delivery that made the change; repeats find the
    appointment already confirmed and do nothing.
    """
    with atomic():
        appointment = get_appointment(appointment_id)
        if appointment.status == CONFIRMED:
            return False
        if appointment.status != PENDING:
            current_app.logger.warning(
                f"Payment {payment_id} approved for appointment {appointment_id} "
                f"which is {appointment.status}; ignoring"
            )
            return False
        appointment.status = CONFIRMED
        appointment.payment_id = str(payment_id) if payment_id is not None else None
        appointment.payment_method = payment_method
        appointment.updated_at = datetime.datetime.now()

    current_app.logger.info(f"Appointment {appointment_id} confirmed by payment {payment_id}")
    return True


def attach_payment(appointment_id, payment_id, payment_method=None):
    """Record the gateway's payment id on a still-pending appointment."""
    with atomic():
        appointment = get_appointment(appointment_id)
        appointment.payment_id = str(payment_id) if payment_id is not None else None
        appointment.payment_method = payment_method


def appointment_to_dict(appointment: Appointment) -> dict:
    start = appointment.start_time
    start_min = start.hour * 60 + start.minute
    return {
        "id": appointment.id,
        "salon_id": appointment.salon_id,
        "client_id": appointment.client_id,
        "client_name": appointment.client.full_name if appointment.client else None,
        "professional_id": appointment.professional_id,
        "professional_name": (
            appointment.professional.name if appointment.professional else None
        ),
        "service_names": appointment.service_names,
        "valor": str(to_money(appointment.valor)),
        "date": appointment.appt_date.isoformat(),
        "time": format_time_of_day(start_min),
        "end_time": format_time_of_day(start_min + appointment.duration_min),
        "duration_min": appointment.duration_min,
        "status": appointment.status,
        "status_label": STATUS_LABELS.get(appointment.status, appointment.status),
        "booked_by_ai": bool(appointment.booked_by_ai),
        "payment_id": appointment.payment_id,
        "payment_method": appointment.payment_method,
    }
