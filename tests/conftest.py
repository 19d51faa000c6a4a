"""
Pytest configuration for the billing core.
Points the ORM at a throwaway SQLite file and wires the app with in-memory fakes.
"""

import os
import tempfile
import time

# Must be set before any import touches database.session
_test_data_dir = tempfile.mkdtemp(prefix="billing_core_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{_test_data_dir}/test.db"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Any, Dict, List, Optional, Sequence, Union

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from database import models  # noqa: F401
from database.session import Base, SessionLocal, engine
from main import build_services, create_app
from svc.webhook_verifier import StripeCheckoutSession, StripeSubscription
from utils.config import Settings
from utils.errors import UpstreamFailure, ValidationFailed

JWT_SECRET = "test-jwt-secret-for-hs256-signing"
WEBHOOK_SECRET = "whsec_test_secret"
# Aligned to an hour boundary so window arithmetic in tests stays obvious.
START_TIME = 1_767_225_600.0


class FakeClock:
    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBillingProvider:
    """Stands in for Stripe: hands out deterministic URLs and canned objects."""

    def __init__(self) -> None:
        self.configured = True
        self.checkout_calls: List[Dict[str, Any]] = []
        self.portal_calls: List[Dict[str, Any]] = []
        self.sessions: Dict[str, StripeCheckoutSession] = {}
        self.subscriptions: Dict[str, StripeSubscription] = {}
        self.subscription_lookups: List[str] = []
        self.fail_subscription_lookup = False

    def add_session(self, data: Dict[str, Any]) -> StripeCheckoutSession:
        session = StripeCheckoutSession.model_validate(data)
        self.sessions[session.id] = session
        return session

    def add_subscription(self, data: Dict[str, Any]) -> StripeSubscription:
        subscription = StripeSubscription.model_validate(data)
        self.subscriptions[subscription.id] = subscription
        return subscription

    def create_checkout_session(
        self,
        *,
        user_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> str:
        self.checkout_calls.append(
            {
                "user_id": user_id,
                "price_id": price_id,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "customer_email": customer_email,
                "client_reference_id": user_id,
                "metadata": {"user_id": user_id},
            }
        )
        return f"https://checkout.stripe.test/c/{len(self.checkout_calls)}"

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        self.portal_calls.append({"customer_id": customer_id, "return_url": return_url})
        return f"https://billing.stripe.test/p/{customer_id}"

    def retrieve_checkout_session(self, session_id: str) -> StripeCheckoutSession:
        if session_id not in self.sessions:
            raise ValidationFailed("Invalid session_id")
        return self.sessions[session_id]

    def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        self.subscription_lookups.append(subscription_id)
        if self.fail_subscription_lookup or subscription_id not in self.subscriptions:
            raise UpstreamFailure("Unable to retrieve subscription from Stripe.")
        return self.subscriptions[subscription_id]


class FakeMailer:
    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.sender = "FreelanceFlow <test@example.com>"
        self.sent: List[Dict[str, Any]] = []
        self.fail_for: set = set()

    def send(
        self,
        *,
        to: Union[str, Sequence[str]],
        subject: str,
        text: Optional[str] = None,
        html: Optional[str] = None,
        sender: Optional[str] = None,
    ) -> Optional[str]:
        recipients = [to] if isinstance(to, str) else list(to)
        if any(address in self.fail_for for address in recipients):
            raise UpstreamFailure("Failed to send email", status_code=500)
        self.sent.append({"to": recipients, "subject": subject, "text": text, "html": html})
        return f"msg_{len(self.sent)}"


class FakeStorage:
    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.bucket = "review-files"
        self.objects: Dict[str, bytes] = {}
        self.removed: List[str] = []

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        self.objects[path] = data

    def remove(self, path: str) -> None:
        self.removed.append(path)
        self.objects.pop(path, None)

    def create_signed_url(self, path: str, expires_in: int = 3600) -> Optional[str]:
        return f"https://storage.test/signed/{path}?expires={expires_in}"


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        frontend_base_url="https://app.example.com",
        auth_jwt_secret=JWT_SECRET,
        resend_api_key="re_test_123",
        storage_url="https://storage.test",
        storage_service_key="service-role-key",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def services(settings, provider, mailer, storage, clock):
    return build_services(settings, provider=provider, mailer=mailer, storage=storage, clock=clock)


@pytest.fixture
def client(settings, services):
    return TestClient(create_app(settings=settings, services=services))


def make_token(user_id: str, email: Optional[str] = None, secret: str = JWT_SECRET) -> str:
    claims: Dict[str, Any] = {"sub": user_id, "aud": "authenticated", "exp": int(time.time()) + 3600}
    if email:
        claims["email"] = email
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def auth_headers():
    """Build bearer headers for a given user id."""

    def _headers(user_id: str = "user-1", email: Optional[str] = None) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, email)}"}

    return _headers
