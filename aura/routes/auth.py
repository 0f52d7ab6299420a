from flask import Blueprint, current_app, jsonify, request

from ..errors import BookingError, error_response
from ..services import identity
from ..api.common import unexpected_error

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _account_json(account):
    return {
        "id": account.id,
        "email": account.email,
        "full_name": account.full_name,
        "phone": account.phone,
        "role": account.role,
    }


@auth_bp.route("/signup", methods=["POST"])
def signup_user():
    try:
        data = request.get_json(force=True)
        email = data.get("email")
        password = data.get("password")
        full_name = data.get("full_name")
        phone = data.get("phone")
        role = (data.get("role") or "CLIENT").upper()

        # Validate required fields
        if not email or not password or not full_name:
            return jsonify({
                "status": "error",
                "message": "Missing required fields (email, password, full_name)"
            }), 400

        if role not in ["CLIENT", "OWNER", "PROFESSIONAL"]:
            return jsonify({
                "status": "error",
                "message": f"Role '{role}' is not a valid or supported role for this signup."
            }), 400

        account = identity.sign_up(email, password, full_name, phone=phone, role=role)

        return jsonify({
            "status": "success",
            "message": "User registered successfully",
            "user": _account_json(account)
        }), 201

    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "signing up")


@auth_bp.route("/login", methods=["POST"])
def login_user():
    try:
        data = request.get_json(force=True)
        email = data.get("email")
        password = data.get("password")

        if not email or not password:
            return jsonify({
                "status": "error",
                "message": "Email and password required"
            }), 400

        account = identity.sign_in(email, password)
        token = identity.issue_token(account, current_app.config["SECRET_KEY"])

        return jsonify({
            "status": "success",
            "message": "Login successful",
            "token": token,
            "user": _account_json(account)
        }), 200

    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "logging in")


@auth_bp.route("/lookup", methods=["POST"])
def lookup_contact():
    """Does an account exist for this phone or email? Used by the booking chat."""
    try:
        data = request.get_json(silent=True) or {}
        account = identity.lookup_by_contact(data.get("contact"))
        if account is None:
            return jsonify({"exists": False}), 200
        first_name = (account.full_name or "").split(" ")[0] or None
        return jsonify({"exists": True, "first_name": first_name}), 200

    except BookingError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e, "looking up contact")
