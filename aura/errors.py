"""
Error taxonomy for the booking engine.

Every error carries the HTTP status and a short machine-readable code so the
blueprints can turn it into the usual JSON error body without guessing.
"""

from flask import jsonify


class BookingError(Exception):
    status_code = 400
    code = "booking_error"

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {"status": "error", "error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BookingError):
    """Client-correctable input problem (missing selection, bad contact...)."""

    status_code = 400
    code = "validation_error"


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class ConflictError(BookingError):
    """The requested slot overlaps an existing, non-canceled appointment."""

    status_code = 409
    code = "slot_unavailable"


class InvalidTransitionError(BookingError):
    status_code = 409
    code = "invalid_transition"


class PaymentDeclinedError(BookingError):
    status_code = 402
    code = "payment_declined"


class ExternalServiceError(BookingError):
    """Storage, identity or payment collaborator failed or timed out. Retryable."""

    status_code = 503
    code = "service_unavailable"


def error_response(error):
    return jsonify(error.to_dict()), error.status_code
