# noqa: E402
from apscheduler.schedulers.background import BackgroundScheduler
import atexit
import datetime
from zoneinfo import ZoneInfo
from sqlalchemy import select
from aura.extensions import db
from aura.models import Appointment
from aura.scheduling import lifecycle

scheduler = BackgroundScheduler()


def complete_finished_appointments(now: datetime.datetime) -> int:
    """Mark confirmed appointments whose end time has passed as completed.

    Must run inside an app context. Returns how many were completed.
    """
    candidates = db.session.scalars(
        select(Appointment).where(
            Appointment.status == lifecycle.CONFIRMED,
            Appointment.appt_date <= now.date(),
        )
    ).all()

    finished = []
    for appointment in candidates:
        start = datetime.datetime.combine(appointment.appt_date, appointment.start_time)
        end = start + datetime.timedelta(minutes=appointment.duration_min)
        if end <= now:
            lifecycle.check_transition(appointment.status, lifecycle.COMPLETED)
            appointment.status = lifecycle.COMPLETED
            appointment.updated_at = now
            finished.append(appointment)

    if finished:
        db.session.commit()
    return len(finished)


def init_scheduler(app):
    """Initialize the APScheduler scheduler with Flask app context."""

    @scheduler.scheduled_job("interval", minutes=5)
    def scheduled_task():
        """Auto-complete appointments that have ended."""
        current_time = datetime.datetime.now(
            ZoneInfo(app.config["SALON_TIMEZONE"])
        ).replace(tzinfo=None)
        current_time_str = current_time.strftime("%Y-%m-%d %H:%M:%S")

        try:
            with app.app_context():
                count = complete_finished_appointments(current_time)
                if count:
                    print(
                        f"[SCHEDULER] {current_time_str} - Auto-completed {count} appointment(s)"
                    )
                else:
                    print(
                        f"[SCHEDULER] {current_time_str} - No appointments to auto-complete"
                    )

        except Exception as e:
            print(
                f"[SCHEDULER] {current_time_str} - Error auto-completing appointments: {e}"
            )
            with app.app_context():
                db.session.rollback()

    if not scheduler.running:
        scheduler.start()
        print("[SCHEDULER] Scheduler started")
    else:
        print("[SCHEDULER] Scheduler already running (skipping duplicate start)")

    # Shut down the scheduler when exiting the app
    atexit.register(lambda: scheduler.shutdown())
