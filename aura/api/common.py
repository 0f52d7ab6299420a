# Shared helpers for the booking blueprints
import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from flask import current_app, jsonify
from sqlalchemy import select

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Salon
from ..scheduling.flow import BookingContext
from ..services.payment_gateway import gateway_for_salon


def salon_now() -> datetime.datetime:
    """Wall-clock time at the salon, naive so it compares with stored dates and times."""
    tz = ZoneInfo(current_app.config["SALON_TIMEZONE"])
    return datetime.datetime.now(tz).replace(tzinfo=None)


def get_salon(salon_id) -> Salon:
    salon = db.session.get(Salon, salon_id)
    if not salon:
        raise NotFoundError("Salon not found", salon_id=salon_id)
    return salon


def get_salon_by_slug(slug) -> Salon:
    salon = db.session.scalar(select(Salon).where(Salon.slug == slug))
    if not salon:
        raise NotFoundError("Salon not found", slug=slug)
    return salon


def payment_gateway(salon):
    # tests swap the factory for a fake gateway
    factory = current_app.config.get("PAYMENT_GATEWAY_FACTORY") or gateway_for_salon
    return factory(salon)


def booking_context(salon, promo_verified=False) -> BookingContext:
    cfg = current_app.config
    return BookingContext(
        salon=salon,
        now=salon_now(),
        promo_verified=promo_verified,
        gateway=payment_gateway(salon),
        tax_rate=Decimal(str(cfg["SERVICE_TAX_RATE"])),
        window_days=cfg["BOOKING_WINDOW_DAYS"],
        slot_step=cfg["SLOT_STEP_MINUTES"],
        same_day_buffer=cfg["SAME_DAY_BUFFER_MINUTES"],
    )


def parse_date_arg(value, name="date") -> datetime.date:
    if not value:
        raise ValidationError(f"Query parameter '{name}' is required (YYYY-MM-DD)")
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"'{name}' must be YYYY-MM-DD", value=value)


def unexpected_error(e, what):
    db.session.rollback()
    current_app.logger.error(f"Error {what}: {e}")
    return jsonify({"status": "error", "message": "Internal server error", "details": str(e)}), 500

