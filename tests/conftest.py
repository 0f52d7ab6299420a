"""
Pytest configuration and shared fixtures for the booking engine tests.
"""

import datetime
import os
from decimal import Decimal
from zoneinfo import ZoneInfo

import bcrypt
import pytest

os.environ.setdefault("TESTING", "True")
os.environ.setdefault("FLASK_ENV", "testing")

from main import create_app  # noqa: E402
from aura.config import is_production_database  # noqa: E402
from aura.extensions import db as database  # noqa: E402
from aura.models import AuthUser, Base, Product, Professional, Salon, Service  # noqa: E402
from aura.errors import ExternalServiceError  # noqa: E402
from aura.services.payment_gateway import PaymentResult  # noqa: E402

OPEN_DAY = {"closed": False, "open": "09:00", "close": "18:00"}
STUDIO_X_HOURS = {
    "monday": dict(OPEN_DAY),
    "tuesday": dict(OPEN_DAY),
    "wednesday": dict(OPEN_DAY),
    "thursday": dict(OPEN_DAY),
    "friday": dict(OPEN_DAY),
    "saturday": dict(OPEN_DAY),
    "sunday": {"closed": True, "open": "00:00", "close": "00:00"},
}
CLIENT_PASSWORD = "segredo123"


@pytest.fixture(scope="session")
def app():
    """Create and configure a test app instance on in-memory SQLite."""
    test_db_url = os.environ.get("DATABASE_TEST_URL", "sqlite://")
    if is_production_database(test_db_url):
        pytest.exit("DATABASE_TEST_URL appears to be production; tests aborted")

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": test_db_url,
            "SQLALCHEMY_ENGINE_OPTIONS": {},
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "AUTO_COMPLETE_ENABLED": False,
        }
    )
    yield app


@pytest.fixture
def db(app):
    """Fresh schema per test."""
    with app.app_context():
        Base.metadata.create_all(bind=database.engine)
        yield database
        database.session.remove()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def client(app, db):
    return app.test_client()


@pytest.fixture
def salon_today(app):
    return datetime.datetime.now(ZoneInfo(app.config["SALON_TIMEZONE"])).date()


@pytest.fixture
def next_tuesday(salon_today):
    """A Tuesday strictly after today, always inside the booking window."""
    days_ahead = (1 - salon_today.weekday()) % 7 or 7
    return salon_today + datetime.timedelta(days=days_ahead)


@pytest.fixture
def sample_client(db):
    hashed_pw = bcrypt.hashpw(CLIENT_PASSWORD.encode("utf-8"), bcrypt.gensalt())
    user = AuthUser(
        email="maria@example.com",
        password_hash=hashed_pw.decode("utf-8"),
        role="CLIENT",
        full_name="Maria Silva",
        phone="11987654321",
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def studio_x(db):
    """Studio X: open Mon-Sat 09:00-18:00, professional Ana, service Corte (30 min, 50.00)."""
    salon = Salon(
        name="Studio X",
        slug="studio-x",
        phone="1133334444",
        address="Rua Augusta, 100",
        operating_hours=STUDIO_X_HOURS,
        subscription_plan="pro",
        subscription_status="active",
        ai_enabled=True,
        ai_promo_discount=20,
        pays_on_site=True,
    )
    db.session.add(salon)
    db.session.flush()

    db.session.add_all(
        [
            Professional(salon_id=salon.id, name="Ana", role="Cabeleireira", status="active"),
            Service(
                salon_id=salon.id,
                name="Corte",
                category="Cabelo",
                price=Decimal("50.00"),
                duration_min=30,
            ),
            Service(
                salon_id=salon.id,
                name="Escova",
                category="Cabelo",
                price=Decimal("50.00"),
                duration_min=30,
            ),
            Product(salon_id=salon.id, name="Shampoo", price=Decimal("30.00"), stock=5),
            Product(salon_id=salon.id, name="Condicionador", price=Decimal("35.00"), stock=0),
        ]
    )
    db.session.commit()
    return salon


@pytest.fixture
def ana(studio_x):
    return next(p for p in studio_x.professionals if p.name == "Ana")


@pytest.fixture
def corte(studio_x):
    return next(s for s in studio_x.services if s.name == "Corte")


@pytest.fixture
def escova(studio_x):
    return next(s for s in studio_x.services if s.name == "Escova")


class FakeGateway:
    """Stands in for the payment account; answers with a fixed status."""

    def __init__(self, status="approved", error=None):
        self.status = status
        self.error = error
        self.orders = []
        self.payments = {}

    def create_order(self, amount, payer_email, external_reference, method, card_token=None, **kwargs):
        if self.error is not None:
            raise self.error
        self.orders.append(
            {
                "amount": amount,
                "payer_email": payer_email,
                "external_reference": external_reference,
                "method": method,
            }
        )
        payment_id = f"pay-{len(self.orders)}"
        self.payments[payment_id] = PaymentResult(
            payment_id=payment_id,
            status=self.status,
            method=method,
            external_reference=str(external_reference),
            qr_code="00020126-pix" if self.status == "pending" else None,
        )
        return self.payments[payment_id]

    def check_status(self, payment_id):
        if payment_id not in self.payments:
            raise ExternalServiceError("unknown payment")
        return self.payments[payment_id]

    def settle(self, payment_id, status="approved"):
        current = self.payments[payment_id]
        self.payments[payment_id] = PaymentResult(
            payment_id=current.payment_id,
            status=status,
            method=current.method,
            external_reference=current.external_reference,
        )


@pytest.fixture
def fake_gateway(app):
    gateway = FakeGateway()
    app.config["PAYMENT_GATEWAY_FACTORY"] = lambda salon: gateway
    yield gateway
    app.config.pop("PAYMENT_GATEWAY_FACTORY", None)
