# Salon public details, catalog, operating hours and availability
from flask import Blueprint, current_app, jsonify, request

from ...errors import BookingError, NotFoundError, ValidationError, error_response
from ...extensions import db
from ...models import Professional
from ...scheduling import lifecycle
from ...scheduling.access import has_assistant_access, has_feature_access, issue_promo_token
from ...scheduling.calendar import Weekday, canonicalize_hours, normalize_schedule, window_for
from ...scheduling.slots import generate_slots
from ..common import get_salon, get_salon_by_slug, parse_date_arg, salon_now, unexpected_error

salon_details_bp = Blueprint("salon_details", __name__, url_prefix="/api/salons")


def _salon_professional(salon, professional_id) -> Professional:
    professional = db.session.get(Professional, professional_id)
    if not professional or professional.salon_id != salon.id:
        raise NotFoundError("Professional not found", professional_id=professional_id)
    return professional


def _hours_view(raw):
    schedule = normalize_schedule(raw)
    return {
        day.value: schedule[day].to_dict() if day in schedule else None for day in Weekday
    }


@salon_details_bp.route("/<slug>", methods=["GET"])
def get_salon_by_public_slug(slug):
    """
    Salon behind a public booking link
    ---
    tags:
      - Salons
    parameters:
      - name: slug
        in: path
        type: string
        required: true
    responses:
      200:
        description: Salon found
      404:
        description: Salon not found
    """
    try:
        salon = get_salon_by_slug(slug)
        now = salon_now()
        return jsonify({
            "id": salon.id,
            "name": salon.name,
            "slug": salon.slug,
            "phone": salon.phone,
            "address": salon.address,
            "operating_hours": _hours_view(salon.operating_hours),
            "feature_access": has_feature_access(salon, now),
            "assistant_enabled": has_assistant_access(salon, now),
            "pays_on_site": not salon.gateway_configured,
            "payment_public_key": salon.payment_public_key,
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "fetching salon")


@salon_details_bp.route("/<int:salon_id>/catalog", methods=["GET"])
def get_catalog(salon_id):
    try:
        salon = get_salon(salon_id)
        services = sorted(salon.services, key=lambda s: (s.category or "", s.name))
        return jsonify({
            "salon_id": salon.id,
            "services": [
                {
                    "id": s.id,
                    "name": s.name,
                    "category": s.category,
                    "price": str(s.price),
                    "duration_min": s.duration_min,
                    "description": s.description,
                    "image_url": s.image_url,
                }
                for s in services
            ],
            "professionals": [
                {"id": p.id, "name": p.name, "role": p.role}
                for p in salon.professionals
                if p.status == "active"
            ],
            "products": [
                {"id": p.id, "name": p.name, "price": str(p.price), "stock": p.stock}
                for p in salon.products
                if (p.stock or 0) > 0
            ],
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "fetching catalog")


@salon_details_bp.route("/<int:salon_id>/hours", methods=["GET"])
def get_hours(salon_id):
    try:
        salon = get_salon(salon_id)
        return jsonify({"salon_id": salon.id, "hours": _hours_view(salon.operating_hours)}), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "fetching hours")


@salon_details_bp.route("/<int:salon_id>/hours", methods=["PUT"])
def update_hours(salon_id):
    """
    PUT /api/salons/<salon_id>/hours
    Body: weekday-keyed map, e.g. {"segunda-feira": {"closed": false, "open": "09:00", "close": "18:00"}}
    Keys in any accepted spelling are stored under the English weekday name.
    """
    try:
        salon = get_salon(salon_id)
        hours = canonicalize_hours(request.get_json(silent=True))
        salon.operating_hours = hours
        db.session.commit()
        current_app.logger.info(f"Operating hours updated for salon {salon.id}")
        return jsonify({
            "status": "success",
            "message": "Hours updated",
            "hours": _hours_view(hours),
        }), 200
    except BookingError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "updating hours")


@salon_details_bp.route("/<int:salon_id>/professionals/<int:professional_id>/hours", methods=["PUT"])
def update_professional_hours(salon_id, professional_id):
    """Override hours for one professional. A null body clears the override."""
    try:
        salon = get_salon(salon_id)
        professional = _salon_professional(salon, professional_id)
        raw = request.get_json(silent=True)
        professional.operating_hours = canonicalize_hours(raw) if raw else None
        db.session.commit()
        current_app.logger.info(f"Override hours updated for professional {professional.id}")
        return jsonify({
            "status": "success",
            "message": "Hours updated",
            "hours": _hours_view(professional.operating_hours),
        }), 200
    except BookingError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "updating professional hours")


@salon_details_bp.route("/<int:salon_id>/window", methods=["GET"])
def get_day_window(salon_id):
    """Resolved open/close window for ?date=, optionally for ?professional_id=."""
    try:
        salon = get_salon(salon_id)
        day = parse_date_arg(request.args.get("date"))
        professional = None
        professional_id = request.args.get("professional_id", type=int)
        if professional_id is not None:
            professional = _salon_professional(salon, professional_id)
        return jsonify({
            "salon_id": salon.id,
            "date": day.isoformat(),
            "weekday": Weekday.of(day).value,
            "window": window_for(salon, professional, day).to_dict(),
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "resolving window")


@salon_details_bp.route("/<int:salon_id>/professionals/<int:professional_id>/slots", methods=["GET"])
def get_slots(salon_id, professional_id):
    """
    Free start times for one professional on one date
    ---
    tags:
      - Salons
    parameters:
      - name: salon_id
        in: path
        type: integer
        required: true
      - name: professional_id
        in: path
        type: integer
        required: true
      - name: date
        in: query
        type: string
        required: true
      - name: duration
        in: query
        type: integer
        required: false
      - name: service_ids
        in: query
        type: string
        required: false
        description: Comma separated, used when duration is not given
    responses:
      200:
        description: Slots as HH:MM strings
    """
    try:
        salon = get_salon(salon_id)
        professional = _salon_professional(salon, professional_id)
        day = parse_date_arg(request.args.get("date"))

        duration = request.args.get("duration", type=int)
        if duration is None:
            raw_ids = request.args.get("service_ids", "")
            try:
                wanted = {int(v) for v in raw_ids.split(",") if v.strip()}
            except ValueError:
                raise ValidationError("service_ids must be a comma separated list of ids")
            if not wanted:
                raise ValidationError("Pass duration or service_ids")
            duration = sum(s.duration_min for s in salon.services if s.id in wanted)

        cfg = current_app.config
        now = salon_now()
        cutoff = now.hour * 60 + now.minute if day == now.date() else None
        if day < now.date():
            slots = []
        else:
            slots = generate_slots(
                window_for(salon, professional, day),
                lifecycle.bookings_for(professional.id, day),
                duration,
                professional.id,
                day,
                now_cutoff=cutoff,
                step=cfg["SLOT_STEP_MINUTES"],
                buffer=cfg["SAME_DAY_BUFFER_MINUTES"],
            )
        return jsonify({
            "salon_id": salon.id,
            "professional_id": professional.id,
            "date": day.isoformat(),
            "duration_min": duration,
            "slots": slots,
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "generating slots")


@salon_details_bp.route("/<int:salon_id>/promo-link", methods=["POST"])
def create_promo_link(salon_id):
    """Signed link the salon's assistant hands out; carries the promo discount."""
    try:
        salon = get_salon(salon_id)
        if not has_assistant_access(salon, salon_now()):
            return jsonify({
                "status": "error",
                "message": "Assistant is not enabled for this salon's plan",
            }), 403

        token = issue_promo_token(
            salon.id,
            current_app.config["SECRET_KEY"],
            current_app.config["PROMO_TOKEN_TTL_HOURS"],
        )
        return jsonify({
            "status": "success",
            "token": token,
            "discount_percent": salon.ai_promo_discount or 0,
            "path": f"/book/{salon.slug}?promo=1&token={token}",
        }), 201
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "issuing promo link")
