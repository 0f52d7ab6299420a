# Payment gateway notifications
from flask import Blueprint, current_app, jsonify, request

from ...errors import BookingError, ExternalServiceError, NotFoundError, error_response
from ...scheduling import lifecycle
from ..common import get_salon, payment_gateway, unexpected_error

webhooks_bp = Blueprint("payment_webhooks", __name__, url_prefix="/api/payments")


def _notification():
    """Pull (topic, payment id) from either notification style the gateway sends."""
    body = request.get_json(silent=True) or {}
    topic = request.args.get("topic") or request.args.get("type") or body.get("type")
    payment_id = (
        request.args.get("id")
        or request.args.get("data.id")
        or (body.get("data") or {}).get("id")
    )
    return topic, payment_id


@webhooks_bp.route("/webhook", methods=["POST"])
def payment_webhook():
    """
    Payment notification from the gateway
    ---
    tags:
      - Payments
    parameters:
      - name: salon_id
        in: query
        type: integer
        required: true
      - name: topic
        in: query
        type: string
      - name: id
        in: query
        type: string
    responses:
      200:
        description: Notification handled (or ignored)
      400:
        description: Missing salon or salon without a payment account
      503:
        description: Gateway unreachable, the gateway should retry
    """
    try:
        salon_id = request.args.get("salon_id", type=int)
        if salon_id is None:
            return jsonify({"status": "error", "message": "salon_id is required"}), 400

        topic, payment_id = _notification()
        if topic != "payment" or not payment_id:
            return jsonify({"status": "ignored", "reason": "not a payment notification"}), 200

        salon = get_salon(salon_id)
        gateway = payment_gateway(salon)
        if gateway is None:
            return jsonify({
                "status": "error",
                "message": "Salon has no payment account configured",
            }), 400

        # never trust the notification body; ask the gateway what happened
        result = gateway.check_status(payment_id)
        if not (result.approved or result.failed):
            current_app.logger.info(
                f"Payment {result.payment_id} for salon {salon.id} is {result.status}; nothing to do"
            )
            return jsonify({"status": "ignored", "payment_status": result.status}), 200

        try:
            appointment_id = int(result.external_reference)
        except (TypeError, ValueError):
            current_app.logger.warning(
                f"Payment {result.payment_id} ({result.status}) has no usable reference "
                f"({result.external_reference!r})"
            )
            return jsonify({"status": "ignored", "reason": "missing reference"}), 200

        try:
            appointment = lifecycle.get_appointment(appointment_id)
        except NotFoundError:
            current_app.logger.warning(
                f"Payment {result.payment_id} references unknown appointment {appointment_id}"
            )
            return jsonify({"status": "ignored", "reason": "unknown appointment"}), 200

        if appointment.salon_id != salon.id:
            current_app.logger.warning(
                f"Payment {result.payment_id} for salon {salon.id} references appointment "
                f"{appointment_id} of salon {appointment.salon_id}"
            )
            return jsonify({"status": "ignored", "reason": "salon mismatch"}), 200

        if result.failed:
            # only releases the time while this payment is still the one attached
            discarded = lifecycle.discard_pending(appointment_id, payment_id=result.payment_id)
            return jsonify({
                "status": "success" if discarded else "ignored",
                "appointment_id": appointment_id,
                "payment_status": result.status,
                "discarded": discarded,
            }), 200

        changed = lifecycle.confirm_payment(appointment_id, result.payment_id, result.method)
        return jsonify({
            "status": "success",
            "appointment_id": appointment_id,
            "changed": changed,
        }), 200

    except ExternalServiceError as e:
        current_app.logger.error(f"Payment webhook could not reach a collaborator: {e.message}")
        return error_response(e)
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "handling payment webhook")
