import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import mysql

from aura.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from aura.models import Appointment
from aura.scheduler import complete_finished_appointments
from aura.scheduling import lifecycle
from aura.scheduling.calendar import parse_time_of_day

DAY = datetime.date(2025, 6, 10)


@pytest.fixture
def book(db, studio_x, ana, sample_client):
    def _book(time="10:00", duration=30, status=lifecycle.CONFIRMED, professional=None, day=DAY):
        return lifecycle.create_appointment(
            salon_id=studio_x.id,
            client_id=sample_client.id,
            professional_id=(professional or ana).id,
            on_date=day,
            start=parse_time_of_day(time),
            duration=duration,
            service_names="Corte",
            valor=Decimal("52.50"),
            status=status,
        )

    return _book


@pytest.mark.lifecycle
class TestCreate:
    def test_create_persists(self, db, book):
        appointment = book()
        stored = db.session.get(Appointment, appointment.id)
        assert stored.status == "confirmed"
        assert stored.start_time == datetime.time(10, 0)
        assert stored.valor == Decimal("52.50")

    def test_overlap_rejected(self, book):
        book("10:00", 60)
        with pytest.raises(ConflictError):
            book("10:30", 30)

    def test_back_to_back_allowed(self, book):
        book("10:00", 30)
        book("10:30", 30)

    def test_canceled_slot_is_free_again(self, book):
        first = book("10:00")
        lifecycle.cancel(first.id)
        book("10:00")

    def test_unknown_client(self, studio_x, ana):
        with pytest.raises(NotFoundError):
            lifecycle.create_appointment(
                salon_id=studio_x.id,
                client_id=999,
                professional_id=ana.id,
                on_date=DAY,
                start=600,
                duration=30,
                service_names="Corte",
                valor=50,
            )

    def test_cannot_create_completed(self, book):
        with pytest.raises(InvalidTransitionError):
            book(status=lifecycle.COMPLETED)

    def test_non_positive_duration(self, book):
        with pytest.raises(ValidationError):
            book(duration=0)

    @pytest.mark.parametrize("time, duration", [("24:00", 30), ("23:45", 30), ("23:59", 2)])
    def test_must_end_by_midnight(self, db, book, time, duration):
        with pytest.raises(ValidationError):
            book(time, duration)
        assert db.session.scalars(select(Appointment)).all() == []

    def test_last_slot_of_the_day(self, book):
        appointment = book("23:30", 30)
        assert appointment.start_time == datetime.time(23, 30)


@pytest.mark.lifecycle
class TestTransitions:
    def test_finish_and_cancel(self, book):
        a = book("10:00")
        b = book("11:00")
        assert lifecycle.finish(a.id).status == "completed"
        assert lifecycle.cancel(b.id).status == "canceled"

    @pytest.mark.parametrize("terminal", ["completed", "canceled"])
    def test_terminal_status_is_immutable(self, book, terminal):
        appointment = book()
        if terminal == "completed":
            lifecycle.finish(appointment.id)
        else:
            lifecycle.cancel(appointment.id)

        for operation in (lifecycle.finish, lifecycle.cancel):
            with pytest.raises(InvalidTransitionError):
                operation(appointment.id)
        with pytest.raises(InvalidTransitionError):
            lifecycle.reschedule(appointment.id, DAY, 900)
        assert lifecycle.confirm_payment(appointment.id, "pay-1") is False
        assert lifecycle.get_appointment(appointment.id).status == terminal

    def test_pending_cannot_complete(self, book):
        appointment = book(status=lifecycle.PENDING)
        with pytest.raises(InvalidTransitionError):
            lifecycle.finish(appointment.id)

    def test_delete_only_pending_or_canceled(self, db, book):
        confirmed = book("10:00")
        with pytest.raises(InvalidTransitionError):
            lifecycle.delete(confirmed.id)

        pending = book("11:00", status=lifecycle.PENDING)
        lifecycle.delete(pending.id)
        assert db.session.get(Appointment, pending.id) is None

    def test_missing_appointment(self, db):
        with pytest.raises(NotFoundError):
            lifecycle.finish(12345)


@pytest.mark.lifecycle
class TestPaymentConfirmation:
    def test_compensating_deletion(self, db, book):
        appointment = book(status=lifecycle.PENDING)
        # payment capture failed right after creation
        assert lifecycle.discard_pending(appointment.id) is True
        assert db.session.get(Appointment, appointment.id) is None

    def test_discard_leaves_confirmed_alone(self, db, book):
        appointment = book()
        assert lifecycle.discard_pending(appointment.id) is False
        assert db.session.get(Appointment, appointment.id) is not None

    def test_discard_only_for_the_attached_payment(self, db, book):
        appointment = book(status=lifecycle.PENDING)
        lifecycle.attach_payment(appointment.id, "pay-2", "pix")
        # a late failure for an earlier attempt
        assert lifecycle.discard_pending(appointment.id, payment_id="pay-1") is False
        assert db.session.get(Appointment, appointment.id) is not None

        assert lifecycle.discard_pending(appointment.id, payment_id="pay-2") is True
        assert db.session.get(Appointment, appointment.id) is None

    def test_confirmation_is_idempotent(self, book):
        appointment = book(status=lifecycle.PENDING)
        assert lifecycle.confirm_payment(appointment.id, "pay-9", "pix") is True
        assert lifecycle.confirm_payment(appointment.id, "pay-9", "pix") is False

        stored = lifecycle.get_appointment(appointment.id)
        assert stored.status == "confirmed"
        assert stored.payment_id == "pay-9"
        assert stored.payment_method == "pix"


@pytest.mark.lifecycle
class TestReschedule:
    def test_move_to_free_slot(self, book):
        appointment = book("10:00")
        moved = lifecycle.reschedule(appointment.id, DAY, parse_time_of_day("15:00"))
        assert moved.start_time == datetime.time(15, 0)

    def test_overlap_with_itself_is_ignored(self, book):
        appointment = book("10:00", 60)
        moved = lifecycle.reschedule(appointment.id, DAY, parse_time_of_day("10:30"))
        assert moved.start_time == datetime.time(10, 30)

    def test_conflict_leaves_original_untouched(self, db, book):
        appointment = book("10:00")
        book("15:00", 60)
        with pytest.raises(ConflictError):
            lifecycle.reschedule(appointment.id, DAY, parse_time_of_day("15:30"))

        db.session.expire_all()
        stored = db.session.get(Appointment, appointment.id)
        assert stored.start_time == datetime.time(10, 0)
        assert stored.appt_date == DAY

    def test_cannot_run_past_midnight(self, db, book):
        appointment = book("10:00", 30)
        with pytest.raises(ValidationError):
            lifecycle.reschedule(appointment.id, DAY, parse_time_of_day("23:45"))
        with pytest.raises(ValidationError):
            lifecycle.reschedule(appointment.id, DAY, 24 * 60)

        db.session.expire_all()
        assert db.session.get(Appointment, appointment.id).start_time == datetime.time(10, 0)


@pytest.mark.lifecycle
class TestOverlapLocking:
    def test_overlap_check_reads_with_for_update(self):
        # SQLite drops FOR UPDATE, so render against MySQL
        locked = str(lifecycle.bookings_query(1, DAY, lock=True).compile(dialect=mysql.dialect()))
        plain = str(lifecycle.bookings_query(1, DAY).compile(dialect=mysql.dialect()))
        assert "FOR UPDATE" in locked
        assert "FOR UPDATE" not in plain

    def test_writes_use_the_locking_read(self, monkeypatch, book):
        calls = []
        original = lifecycle.bookings_for

        def recording(professional_id, on_date, lock=False):
            calls.append(lock)
            return original(professional_id, on_date, lock=lock)

        monkeypatch.setattr(lifecycle, "bookings_for", recording)
        appointment = book("10:00")
        lifecycle.reschedule(appointment.id, DAY, parse_time_of_day("11:00"))
        assert calls == [True, True]


@pytest.mark.lifecycle
class TestQueries:
    def test_day_listing_skips_canceled(self, studio_x, book):
        keep = book("10:00")
        drop = book("11:00")
        lifecycle.cancel(drop.id)
        ids = [a.id for a in lifecycle.appointments_for_day(studio_x.id, DAY)]
        assert ids == [keep.id]

    def test_client_history(self, sample_client, book):
        past = book("10:00", day=datetime.date(2025, 6, 2))
        future = book("10:00", day=datetime.date(2025, 6, 20))
        today = datetime.date(2025, 6, 10)

        upcoming = lifecycle.client_appointments(sample_client.id, today, upcoming=True)
        previous = lifecycle.client_appointments(sample_client.id, today, upcoming=False)
        assert [a.id for a in upcoming] == [future.id]
        assert [a.id for a in previous] == [past.id]

    def test_appointment_to_dict(self, book):
        data = lifecycle.appointment_to_dict(book("10:00", 45))
        assert data["time"] == "10:00"
        assert data["end_time"] == "10:45"
        assert data["valor"] == "52.50"
        assert data["client_name"] == "Maria Silva"
        assert data["professional_name"] == "Ana"


@pytest.mark.lifecycle
class TestAutoComplete:
    def test_completes_only_finished_confirmed(self, db, book):
        done = book("09:00", 30)
        running = book("10:00", 60)
        pending = book("08:00", 30, status=lifecycle.PENDING)

        count = complete_finished_appointments(datetime.datetime(2025, 6, 10, 10, 30))
        assert count == 1
        assert db.session.get(Appointment, done.id).status == "completed"
        assert db.session.get(Appointment, running.id).status == "confirmed"
        assert db.session.get(Appointment, pending.id).status == "pending"
