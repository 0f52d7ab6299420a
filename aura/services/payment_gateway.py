import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from flask import current_app

from ..errors import ExternalServiceError, PaymentDeclinedError, ValidationError
from ..scheduling.pricing import to_money

APPROVED = "approved"
AWAITING_STATUSES = {"pending", "in_process", "authorized"}
# final answers that will never turn into an approval (expired PIX codes end as cancelled)
FAILED_STATUSES = {"rejected", "cancelled"}
# methods the payer settles outside the checkout (bank transfer, QR code)
ASYNC_METHODS = {"pix", "bolbradesco", "pec"}


@dataclass
class PaymentResult:
    payment_id: str
    status: str
    method: Optional[str] = None
    external_reference: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None

    @property
    def approved(self):
        return self.status == APPROVED

    @property
    def awaiting(self):
        return self.status in AWAITING_STATUSES

    @property
    def failed(self):
        return self.status in FAILED_STATUSES

    @classmethod
    def from_response(cls, data: Dict[str, Any]):
        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        reference = data.get("external_reference") or (data.get("metadata") or {}).get(
            "appointment_id"
        )
        return cls(
            payment_id=str(data.get("id")),
            status=data.get("status") or "unknown",
            method=data.get("payment_method_id"),
            external_reference=str(reference) if reference is not None else None,
            qr_code=transaction.get("qr_code"),
            qr_code_base64=transaction.get("qr_code_base64"),
            ticket_url=transaction.get("ticket_url"),
        )

    def presentation(self):
        return {
            "payment_id": self.payment_id,
            "status": self.status,
            "method": self.method,
            "qr_code": self.qr_code,
            "qr_code_base64": self.qr_code_base64,
            "ticket_url": self.ticket_url,
        }


class PaymentGateway:
    """Thin client for the salon's payment account (Mercado Pago REST API)."""

    def __init__(self, access_token: str, base_url: str, timeout: int = 15, notification_url=None):
        if not access_token:
            raise ValidationError("Salon has no payment credentials configured")
        self.access_token = access_token.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.notification_url = notification_url

    def _headers(self, idempotency_key=None) -> Dict[str, str]:
        h = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            h["X-Idempotency-Key"] = idempotency_key
        return h

    def _request(self, method, path, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise ExternalServiceError("Payment service timed out, try again") from e
        except requests.RequestException as e:
            raise ExternalServiceError("Payment service is unreachable, try again") from e

        if resp.status_code >= 500:
            raise ExternalServiceError(
                f"Payment service error ({resp.status_code})", gateway_status=resp.status_code
            )
        if resp.status_code >= 400:
            raise PaymentDeclinedError(
                "Payment was refused by the gateway",
                gateway_status=resp.status_code,
                gateway_message=resp.text[:200],
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ExternalServiceError(
                "Payment service sent an unreadable reply, try again",
                gateway_status=resp.status_code,
            ) from e

    def create_order(
        self,
        amount,
        payer_email: str,
        external_reference,
        method: str,
        card_token: Optional[str] = None,
        installments: int = 1,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentResult:
        if not method:
            raise ValidationError("Choose a payment method")
        if method not in ASYNC_METHODS and not card_token:
            raise ValidationError("Card payments need a card token")

        payload: Dict[str, Any] = {
            "transaction_amount": float(to_money(amount)),
            "payment_method_id": method,
            "payer": {"email": payer_email},
            "external_reference": str(external_reference),
            "description": description or f"Appointment {external_reference}",
            "metadata": {"appointment_id": str(external_reference), **(metadata or {})},
        }
        if card_token:
            payload["token"] = card_token
            payload["installments"] = installments
        if self.notification_url:
            payload["notification_url"] = self.notification_url

        data = self._request(
            "POST",
            "/v1/payments",
            headers=self._headers(idempotency_key=f"appt-{external_reference}-{uuid.uuid4()}"),
            json=payload,
        )
        return PaymentResult.from_response(data)

    def check_status(self, payment_id) -> PaymentResult:
        data = self._request("GET", f"/v1/payments/{payment_id}", headers=self._headers())
        return PaymentResult.from_response(data)


def gateway_for_salon(salon) -> Optional[PaymentGateway]:
    """Gateway bound to the salon's credentials, or None for pay-on-site salons."""
    if salon is None or not salon.gateway_configured:
        return None
    notification_url = current_app.config.get("PAYMENT_WEBHOOK_URL")
    if notification_url:
        notification_url = f"{notification_url}?salon_id={salon.id}"
    return PaymentGateway(
        salon.payment_secret_key,
        base_url=current_app.config["PAYMENT_API_BASE"],
        timeout=current_app.config["PAYMENT_TIMEOUT_SECONDS"],
        notification_url=notification_url,
    )
