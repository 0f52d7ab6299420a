# Client booking conversation and staff manual entry
from flask import Blueprint, current_app, jsonify, request, session

from ...errors import BookingError, NotFoundError, error_response
from ...scheduling.access import verify_promo_token
from ...scheduling.flow import BookingDraft, BookingFlow
from ..common import (
    booking_context,
    get_salon,
    get_salon_by_slug,
    unexpected_error,
)

booking_bp = Blueprint("booking", __name__, url_prefix="/api/booking")

SESSION_KEY = "booking"
PROMO_KEY = "promo_salon_id"


def _load():
    data = session.get(SESSION_KEY)
    if not data:
        raise NotFoundError("No booking in progress")
    draft = BookingDraft.from_dict(data)
    salon = get_salon(draft.salon_id)
    ctx = booking_context(salon, promo_verified=session.get(PROMO_KEY) == salon.id)
    return BookingFlow(draft), ctx


def _save(flow):
    data = flow.draft.to_dict()
    # QR images overflow the 4KB cookie; qr_code is enough to redraw one
    if data.get("payment"):
        data["payment"] = {k: v for k, v in data["payment"].items() if k != "qr_code_base64"}
    session[SESSION_KEY] = data


def _snapshot_response(flow, ctx, code=200):
    _save(flow)
    return jsonify({"status": "success", **flow.snapshot(ctx)}), code


def _step(action, what):
    """
    Load the draft from the session, apply one transition and answer with the
    new snapshot.

    A rejected transition still saves the draft: conflicts and failed payments
    move it back to an earlier state, and the client needs to see where it
    landed (with the refreshed slots when it is back at TIME_SELECTION).
    """
    try:
        flow, ctx = _load()
        try:
            action(flow, ctx)
        except BookingError as e:
            _save(flow)
            body = e.to_dict()
            body.update(flow.snapshot(ctx))
            return jsonify(body), e.status_code
        return _snapshot_response(flow, ctx)
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, what)


def _body():
    return request.get_json(silent=True) or {}


@booking_bp.route("/start/<slug>", methods=["POST"])
def start_booking(slug):
    """
    Start the guided booking conversation for a salon's public page
    ---
    tags:
      - Booking
    parameters:
      - name: slug
        in: path
        type: string
        required: true
      - name: promo
        in: query
        type: string
        required: false
        description: Marker set by assistant promo links
      - name: token
        in: query
        type: string
        required: false
        description: Signed promo token issued by POST /salons/{id}/promo-link
    responses:
      201:
        description: Draft created, state IDENTITY_CHECK
      404:
        description: Salon not found
    """
    try:
        salon = get_salon_by_slug(slug)
        data = _body()
        via_assistant = bool(data.get("via_assistant") or request.args.get("promo"))
        token = data.get("promo_token") or request.args.get("token")

        session.pop(PROMO_KEY, None)
        if token and verify_promo_token(token, salon.id, current_app.config["SECRET_KEY"]):
            session[PROMO_KEY] = salon.id
        elif token:
            current_app.logger.warning(f"Rejected promo token for salon {salon.id}")

        flow = BookingFlow.start_guided(salon.id, via_assistant=via_assistant)
        ctx = booking_context(salon, promo_verified=session.get(PROMO_KEY) == salon.id)
        return _snapshot_response(flow, ctx, 201)
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "starting booking")


@booking_bp.route("/manual", methods=["POST"])
def start_manual_booking():
    """
    Staff entry from the calendar.

    Body: salon_id, client_id, and optionally professional_id and date taken
    from the calendar cell that was clicked. Manual bookings are confirmed on
    creation and paid at the salon.
    """
    try:
        data = _body()
        salon = get_salon(data.get("salon_id"))
        ctx = booking_context(salon)
        flow = BookingFlow.start_manual(
            ctx,
            client_id=data.get("client_id"),
            professional_id=data.get("professional_id"),
            on_date=data.get("date"),
        )
        session.pop(PROMO_KEY, None)
        return _snapshot_response(flow, ctx, 201)
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "starting manual booking")


@booking_bp.route("/state", methods=["GET"])
def booking_state():
    try:
        flow, ctx = _load()
        return jsonify({"status": "success", **flow.snapshot(ctx)}), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "reading booking state")


@booking_bp.route("/identity/contact", methods=["POST"])
def identity_contact():
    """Phone number or email typed at the first step."""
    data = _body()
    return _step(lambda flow, ctx: flow.submit_contact(ctx, data.get("contact")), "submitting contact")


@booking_bp.route("/identity/email", methods=["POST"])
def identity_email():
    data = _body()
    return _step(lambda flow, ctx: flow.submit_email(ctx, data.get("email")), "submitting email")


@booking_bp.route("/identity/name", methods=["POST"])
def identity_name():
    data = _body()
    return _step(lambda flow, ctx: flow.submit_name(ctx, data.get("name")), "submitting name")


@booking_bp.route("/identity/password", methods=["POST"])
def identity_password():
    data = _body()
    return _step(
        lambda flow, ctx: flow.submit_password(ctx, data.get("password")), "signing in"
    )


@booking_bp.route("/identity/register", methods=["POST"])
def identity_register():
    data = _body()
    return _step(
        lambda flow, ctx: flow.register(ctx, data.get("password"), data.get("confirmation")),
        "registering client",
    )


@booking_bp.route("/services/toggle", methods=["POST"])
def toggle_service():
    data = _body()
    return _step(
        lambda flow, ctx: flow.toggle_service(ctx, data.get("service_id")), "toggling service"
    )


@booking_bp.route("/products/toggle", methods=["POST"])
def toggle_product():
    data = _body()
    return _step(
        lambda flow, ctx: flow.toggle_product(ctx, data.get("product_id")), "toggling product"
    )


@booking_bp.route("/professional", methods=["POST"])
def choose_professional():
    data = _body()
    return _step(
        lambda flow, ctx: flow.select_professional(ctx, data.get("professional_id")),
        "choosing professional",
    )


@booking_bp.route("/date", methods=["POST"])
def choose_date():
    data = _body()
    return _step(lambda flow, ctx: flow.select_date(ctx, data.get("date")), "choosing date")


@booking_bp.route("/time", methods=["POST"])
def choose_time():
    """
    Pick one of the offered slots
    ---
    tags:
      - Booking
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            time:
              type: string
              example: "10:30"
    responses:
      200:
        description: Moved to REVIEW_CONFIRM
      409:
        description: Slot was taken meanwhile; snapshot carries refreshed slots
    """
    data = _body()
    return _step(lambda flow, ctx: flow.select_time(ctx, data.get("time")), "choosing time")


@booking_bp.route("/advance", methods=["POST"])
def advance():
    return _step(lambda flow, ctx: flow.advance(ctx), "advancing booking")


@booking_bp.route("/back", methods=["POST"])
def back():
    return _step(lambda flow, ctx: flow.back(ctx), "stepping back")


@booking_bp.route("/confirm", methods=["POST"])
def confirm():
    """
    Confirm the reviewed booking
    ---
    tags:
      - Booking
    parameters:
      - in: body
        name: body
        required: false
        schema:
          type: object
          properties:
            payment_method:
              type: string
              example: pix
            card_token:
              type: string
    responses:
      200:
        description: TERMINAL_SUCCESS, or PAYMENT while an asynchronous payment is pending
      402:
        description: Payment declined, draft back at REVIEW_CONFIRM
      409:
        description: Slot taken, draft back at TIME_SELECTION
      503:
        description: Payment or storage unavailable, retry
    """
    data = _body()
    return _step(
        lambda flow, ctx: flow.confirm(
            ctx, payment_method=data.get("payment_method"), card_token=data.get("card_token")
        ),
        "confirming booking",
    )


@booking_bp.route("/payment/poll", methods=["POST"])
def poll_payment():
    return _step(lambda flow, ctx: flow.poll_payment(ctx), "polling payment")


@booking_bp.route("/abandon", methods=["POST"])
def abandon():
    try:
        if session.get(SESSION_KEY):
            flow, ctx = _load()
            flow.abandon(ctx)
        session.pop(SESSION_KEY, None)
        session.pop(PROMO_KEY, None)
        return jsonify({"status": "success", "message": "Booking abandoned"}), 200
    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "abandoning booking")
