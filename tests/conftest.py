import hashlib
import hmac
import os
import time
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

# Set test environment variables before the app reads its configuration
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_MIGRATIONS"] = "false"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ADMIN_SECRET"] = "test-admin-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy_key_for_testing"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["RESEND_API_KEY"] = ""
os.environ["WHATSAPP_TOKEN"] = ""

from fastapi.testclient import TestClient

from app.db.base import Base
from app.db.session import SessionLocal, engine, get_db
from app.dependencies.access import get_notifier, get_payments
from app.main import app as fastapi_app
from app.services.access_manager import AccessManager
from app.services.account_store import AccountStore
from app.services.notifications import NotificationChannel, NotificationDispatcher, NotificationError
from app.services.payment_adapter import PaymentConfirmation, StripePaymentAdapter

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_KEY = "test-admin-key"
START = datetime(2026, 1, 1, 12, 0, 0)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePayments(StripePaymentAdapter):
    """Stripe adapter with canned checkout sessions; webhook signatures stay real."""

    def __init__(self):
        super().__init__(api_key="sk_test_dummy_key_for_testing", webhook_secret=WEBHOOK_SECRET)
        self.sessions = {}
        self.checkouts = []
        self.error = None

    def add_session(self, session_id, email, paid=True, name="Ana", phone="+52 55 1234 5678",
                    amount=Decimal("500.00"), currency="mxn"):
        self.sessions[session_id] = PaymentConfirmation(
            payment_ref=session_id,
            paid=paid,
            email=email,
            phone=phone,
            name=name,
            amount=amount,
            currency=currency,
        )

    def create_checkout_session(self, name, email, phone=None):
        self.checkouts.append({"name": name, "email": email, "phone": phone})
        n = len(self.checkouts)
        return {"url": f"https://checkout.stripe.test/cs_test_{n}", "id": f"cs_test_{n}"}

    def confirm(self, session_id):
        if self.error is not None:
            raise self.error
        return self.sessions.get(session_id) or PaymentConfirmation(payment_ref=session_id, paid=False)


class RecordingChannel(NotificationChannel):
    name = "recording"

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def can_reach(self, account):
        return True

    def send(self, account, subject, text, html_body=None):
        if self.fail:
            raise NotificationError("provider down")
        self.sent.append({"email": account.email, "subject": subject, "text": text})
        return True


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs webhook deliveries."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture(autouse=True)
def tables():
    """Fresh in-memory schema for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def notifier(channel):
    return NotificationDispatcher([channel])


@pytest.fixture
def store(db_session):
    return AccountStore(db_session)


@pytest.fixture
def manager(store, payments, notifier, clock):
    return AccessManager(store, payments, notifier, clock=clock)


@pytest.fixture
def client(payments, notifier):
    """A test client wired to the fake payment provider and recording channel."""

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_payments] = lambda: payments
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(fastapi_app) as test_client:
        yield test_client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}
