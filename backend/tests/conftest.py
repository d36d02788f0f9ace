import os
import json
import dataclasses
from datetime import timedelta

# 1. Set required environment variables before any coaching module is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["ADMIN_NOTIFICATION_EMAILS"] = "admin@coaching.test"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["PRICE_ID_W_PREMIUM_6W"] = "price_w_premium_6w"
os.environ["PRICE_ID_M_STARTER_18W"] = "price_m_starter_18w"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coaching.database import Base, get_db
from coaching.dependencies import get_captcha_verifier, get_email_client, get_stripe_gateway
from coaching.errors import InvalidInput
from coaching.main import app
from coaching.models import (
    Order,
    OrderStatus,
    PlanDuration,
    PlanType,
    SignUpStatus,
    Subscription,
    SubscriptionStatus,
    User,
    UserRole,
)
from coaching.services.captcha import CaptchaVerifier
from coaching.services.email_service import EmailDispatcher
from coaching.services.security import get_password_hash
from coaching.services.stripe_service import ProcessorSubscription
from coaching.timeutils import utcnow


# ============== Fakes ==============

class FakeResponse:
    def __init__(self, status_code=202, message_id="msg-123"):
        self.status_code = status_code
        self.headers = {"X-Message-Id": message_id}


class FakeEmailClient:
    """Stands in for SendGridAPIClient."""

    def __init__(self):
        self.sent = []
        self.status_code = 202
        self.error = None

    def send(self, message):
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        return FakeResponse(self.status_code, message_id=f"msg-{len(self.sent)}")


class FakeGateway:
    """In-memory stand-in for StripeGateway."""

    def __init__(self):
        self.subscriptions = {}
        self.calls = []
        self.checkout_sessions = []

    def add_subscription(self, subscription_id, status="active", customer_id="cus_123",
                         cancel_at_period_end=False, period_end=None):
        now = utcnow()
        remote = ProcessorSubscription(
            id=subscription_id,
            customer_id=customer_id,
            status=status,
            cancel_at_period_end=cancel_at_period_end,
            current_period_start=now - timedelta(days=10),
            current_period_end=period_end or now + timedelta(days=20),
            metadata={},
        )
        self.subscriptions[subscription_id] = remote
        return remote

    def create_checkout_session(self, price_id, email, metadata, idempotency_key=None):
        self.checkout_sessions.append({
            "price_id": price_id,
            "email": email,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        return "https://checkout.stripe.test/session/cs_test_1"

    def construct_event(self, payload, signature):
        if signature != "valid-signature":
            raise InvalidInput("Invalid signature")
        return json.loads(payload)

    def retrieve_subscription(self, subscription_id):
        self.calls.append(("retrieve", subscription_id))
        return self.subscriptions.get(subscription_id)

    def set_cancel_at_period_end(self, subscription_id, value):
        self.calls.append(("set_cancel_at_period_end", subscription_id, value))
        remote = dataclasses.replace(self.subscriptions[subscription_id], cancel_at_period_end=value)
        self.subscriptions[subscription_id] = remote
        return remote

    def cancel_subscription(self, subscription_id):
        self.calls.append(("cancel", subscription_id))
        remote = dataclasses.replace(self.subscriptions[subscription_id], status="canceled")
        self.subscriptions[subscription_id] = remote
        return remote


# ============== Database ==============

@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


# ============== Collaborators ==============

@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def dispatcher(db_session, email_client):
    return EmailDispatcher(
        db_session,
        email_client,
        from_email="Coaching <noreply@coaching.test>",
        frontend_url="http://frontend.test",
        admin_emails=["admin@coaching.test"],
        activation_expire_hours=24,
    )


@pytest.fixture
def client(db_session, gateway, email_client):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    app.dependency_overrides[get_email_client] = lambda: email_client
    app.dependency_overrides[get_captcha_verifier] = lambda: CaptchaVerifier(None)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ============== Factories ==============

@pytest.fixture
def make_user(db_session):
    def _make_user(email="client@example.com", password=None, role=UserRole.CLIENT,
                   stripe_customer_id=None, name=None):
        user = User(
            email=email,
            name=name,
            role=role,
            stripe_customer_id=stripe_customer_id,
            email_verified=password is not None,
        )
        if password is not None:
            user.hashed_password = get_password_hash(password)
            user.activated_at = utcnow()
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make_user


@pytest.fixture
def make_order(db_session):
    def _make_order(user, plan_id="woman-premium-6w", session_id="cs_test_existing"):
        order = Order(
            user_id=user.id,
            plan_id=plan_id,
            amount=15000,
            currency="eur",
            status=OrderStatus.COMPLETED,
            sign_up_status=SignUpStatus.PENDING,
            stripe_session_id=session_id,
        )
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order
    return _make_order


@pytest.fixture
def make_subscription(db_session):
    def _make_subscription(user, stripe_subscription_id="sub_123", status=SubscriptionStatus.ACTIVE,
                           cancel_at_period_end=False):
        subscription = Subscription(
            user_id=user.id,
            stripe_subscription_id=stripe_subscription_id,
            plan_type=PlanType.WOMAN_PREMIUM,
            duration=PlanDuration.WEEKS_6,
            status=status,
            cancel_at_period_end=cancel_at_period_end,
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription
    return _make_subscription


@pytest.fixture
def checkout_payload():
    """Builds a checkout.session.completed event payload."""
    def _checkout_payload(session_id="cs_test_1", email="Guest@Example.com", plan_id="woman-premium-6w",
                          customer="cus_123", metadata=None, event_id="evt_1"):
        if metadata is None:
            metadata = {
                "planId": plan_id,
                "tosAccepted": "true",
                "tosVersion": "v2.0",
                "privacyAccepted": "true",
                "privacyVersion": "v1.1",
                "marketingOptIn": "false",
                "ipAddress": "203.0.113.7",
                "userAgent": "pytest",
            }
        return {
            "id": event_id,
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "customer": customer,
                    "customer_email": email,
                    "customer_details": {"email": email, "name": "Guest Person"},
                    "custom_fields": [
                        {"key": "full_name", "type": "text", "text": {"value": "Giulia Rossi"}},
                    ],
                    "payment_intent": "pi_123",
                    "amount_total": 15000,
                    "currency": "eur",
                    "metadata": metadata,
                }
            },
        }
    return _checkout_payload
