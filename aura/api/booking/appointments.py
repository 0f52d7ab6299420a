# Staff calendar, appointment status changes and client history
from flask import Blueprint, current_app, jsonify, request

from ...errors import BookingError, ValidationError, error_response
from ...models import Professional
from ...extensions import db
from ...scheduling import lifecycle
from ...scheduling.calendar import window_for
from ...scheduling.flow import BookingFlow
from ..common import (
    booking_context,
    get_salon,
    parse_date_arg,
    payment_gateway,
    salon_now,
    unexpected_error,
)

appointments_bp = Blueprint("appointments", __name__, url_prefix="/api/appointments")


@appointments_bp.route("/salon/<int:salon_id>/day", methods=["GET"])
def get_salon_day(salon_id):
    """
    GET /api/appointments/salon/<salon_id>/day?date=YYYY-MM-DD[&professional_id=]
    Purpose: Everything the staff calendar needs to draw one day.

    Behavior:
    - Returns the salon's resolved window for the day, each active
      professional's own window, and the day's non-canceled appointments
      ordered by start time.
    - professional_id narrows the appointments to one column.
    - Unknown salon → 404. Missing or malformed date → 400.
    """
    try:
        salon = get_salon(salon_id)
        day = parse_date_arg(request.args.get("date"))
        professional_id = request.args.get("professional_id", type=int)

        professionals = [p for p in salon.professionals if p.status == "active"]
        if professional_id is not None:
            professionals = [p for p in professionals if p.id == professional_id]

        appointments = lifecycle.appointments_for_day(salon.id, day, professional_id)
        return jsonify({
            "salon_id": salon.id,
            "date": day.isoformat(),
            "window": window_for(salon, None, day).to_dict(),
            "professionals": [
                {"id": p.id, "name": p.name, "window": window_for(salon, p, day).to_dict()}
                for p in professionals
            ],
            "appointments": [lifecycle.appointment_to_dict(a) for a in appointments],
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "loading salon day")


@appointments_bp.route("/<int:appointment_id>", methods=["GET"])
def get_appointment(appointment_id):
    try:
        appointment = lifecycle.get_appointment(appointment_id)
        return jsonify(lifecycle.appointment_to_dict(appointment)), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "fetching appointment")


@appointments_bp.route("/<int:appointment_id>/finish", methods=["POST"])
def finish_appointment(appointment_id):
    try:
        appointment = lifecycle.finish(appointment_id)
        return jsonify({
            "status": "success",
            "message": "Appointment completed",
            "appointment": lifecycle.appointment_to_dict(appointment),
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "finishing appointment")


@appointments_bp.route("/<int:appointment_id>/cancel", methods=["POST"])
def cancel_appointment(appointment_id):
    try:
        appointment = lifecycle.cancel(appointment_id)
        return jsonify({
            "status": "success",
            "message": "Appointment canceled",
            "appointment": lifecycle.appointment_to_dict(appointment),
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "canceling appointment")


@appointments_bp.route("/<int:appointment_id>", methods=["DELETE"])
def delete_appointment(appointment_id):
    """Hard delete. Only pending or canceled appointments can go."""
    try:
        lifecycle.delete(appointment_id)
        return jsonify({"status": "success", "message": "Appointment deleted"}), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "deleting appointment")


@appointments_bp.route("/<int:appointment_id>/reschedule", methods=["POST"])
def reschedule_appointment(appointment_id):
    """
    Move an appointment (drag and drop on the staff calendar)
    ---
    tags:
      - Appointments
    parameters:
      - name: appointment_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [date, time]
          properties:
            date:
              type: string
              example: "2025-06-10"
            time:
              type: string
              example: "14:00"
            professional_id:
              type: integer
    responses:
      200:
        description: Appointment moved
      409:
        description: Target overlaps another appointment; nothing changed
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("date") or not data.get("time"):
            raise ValidationError("date and time are required")

        appointment = lifecycle.get_appointment(appointment_id)
        salon = get_salon(appointment.salon_id)
        ctx = booking_context(salon)
        flow = BookingFlow.start_reschedule(
            ctx,
            appointment,
            on_date=data.get("date"),
            time=data.get("time"),
            professional_id=data.get("professional_id"),
        )
        flow.confirm(ctx)

        appointment = lifecycle.get_appointment(appointment_id)
        return jsonify({
            "status": "success",
            "message": "Appointment rescheduled",
            "appointment": lifecycle.appointment_to_dict(appointment),
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "rescheduling appointment")


@appointments_bp.route("/<int:appointment_id>/payment-status", methods=["GET"])
def payment_status(appointment_id):
    """
    Ask the gateway about a pending appointment's payment and confirm it when
    approved. Safe to call repeatedly.
    """
    try:
        appointment = lifecycle.get_appointment(appointment_id)
        payment = None
        if appointment.status == lifecycle.PENDING and appointment.payment_id:
            gateway = payment_gateway(get_salon(appointment.salon_id))
            if gateway is not None:
                result = gateway.check_status(appointment.payment_id)
                payment = result.presentation()
                if result.approved:
                    lifecycle.confirm_payment(appointment.id, result.payment_id, result.method)
                    appointment = lifecycle.get_appointment(appointment_id)
                elif result.failed and lifecycle.discard_pending(
                    appointment.id, payment_id=result.payment_id
                ):
                    current_app.logger.info(
                        f"Payment {result.payment_id} ended as {result.status}; "
                        f"appointment {appointment_id} released"
                    )
                    return jsonify({
                        "appointment_id": appointment_id,
                        "status": "discarded",
                        "status_label": "Payment not approved, time released",
                        "payment_id": result.payment_id,
                        "payment": payment,
                    }), 200

        return jsonify({
            "appointment_id": appointment.id,
            "status": appointment.status,
            "status_label": lifecycle.STATUS_LABELS[appointment.status],
            "payment_id": appointment.payment_id,
            "payment": payment,
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "checking payment status")


def _client_history(client_id, upcoming):
    today = salon_now().date()
    appointments = lifecycle.client_appointments(client_id, today, upcoming=upcoming)
    return jsonify({
        "client_id": client_id,
        "appointments_found": len(appointments),
        "appointments": [lifecycle.appointment_to_dict(a) for a in appointments],
    }), 200


@appointments_bp.route("/client/<int:client_id>/upcoming", methods=["GET"])
def client_upcoming(client_id):
    try:
        return _client_history(client_id, upcoming=True)
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "loading upcoming appointments")


@appointments_bp.route("/client/<int:client_id>/previous", methods=["GET"])
def client_previous(client_id):
    try:
        return _client_history(client_id, upcoming=False)
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "loading previous appointments")


@appointments_bp.route("/professional/<int:professional_id>", methods=["GET"])
def professional_day(professional_id):
    """GET /api/appointments/professional/<id>?date=YYYY-MM-DD"""
    try:
        professional = db.session.get(Professional, professional_id)
        if not professional:
            return jsonify({"status": "error", "message": "Professional not found"}), 404
        day = parse_date_arg(request.args.get("date"))
        appointments = lifecycle.appointments_for_day(professional.salon_id, day, professional.id)
        return jsonify({
            "professional_id": professional.id,
            "date": day.isoformat(),
            "window": window_for(professional.salon, professional, day).to_dict(),
            "appointments": [lifecycle.appointment_to_dict(a) for a in appointments],
        }), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "loading professional day")
