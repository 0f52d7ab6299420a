import pytest
import requests

from aura.errors import ExternalServiceError, PaymentDeclinedError
from aura.services import payment_gateway
from aura.services.payment_gateway import PaymentGateway, PaymentResult


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body


@pytest.fixture
def gateway():
    return PaymentGateway("TEST-token", base_url="https://payments.test")


def reply_with(monkeypatch, response):
    def fake_request(method, url, **kwargs):
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(payment_gateway.requests, "request", fake_request)


@pytest.mark.payments
class TestGatewayReplies:
    def test_approved_card(self, monkeypatch, gateway):
        reply_with(
            monkeypatch,
            FakeResponse(body={"id": 123, "status": "approved", "payment_method_id": "visa", "external_reference": "7"}),
        )
        result = gateway.create_order(52.5, "maria@example.com", 7, "visa", card_token="tok")
        assert result.approved
        assert result.payment_id == "123"
        assert result.external_reference == "7"

    def test_unreadable_body_is_a_service_error(self, monkeypatch, gateway):
        reply_with(monkeypatch, FakeResponse(status_code=200, text="<html>maintenance</html>"))
        with pytest.raises(ExternalServiceError):
            gateway.create_order(52.5, "maria@example.com", 7, "visa", card_token="tok")
        with pytest.raises(ExternalServiceError):
            gateway.check_status("123")

    def test_timeout(self, monkeypatch, gateway):
        reply_with(monkeypatch, requests.Timeout("slow"))
        with pytest.raises(ExternalServiceError):
            gateway.check_status("123")

    def test_client_error_is_declined(self, monkeypatch, gateway):
        reply_with(monkeypatch, FakeResponse(status_code=400, body={}, text="invalid card"))
        with pytest.raises(PaymentDeclinedError):
            gateway.create_order(52.5, "maria@example.com", 7, "visa", card_token="tok")


@pytest.mark.payments
class TestPaymentResult:
    @pytest.mark.parametrize(
        "status, approved, awaiting, failed",
        [
            ("approved", True, False, False),
            ("pending", False, True, False),
            ("in_process", False, True, False),
            ("rejected", False, False, True),
            ("cancelled", False, False, True),
            ("refunded", False, False, False),
        ],
    )
    def test_status_groups(self, status, approved, awaiting, failed):
        result = PaymentResult(payment_id="1", status=status)
        assert (result.approved, result.awaiting, result.failed) == (approved, awaiting, failed)
