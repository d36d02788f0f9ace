"""End-to-end tests through the FastAPI app."""
import hashlib
import hmac
import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from coaching.dependencies import get_captcha_verifier, get_stripe_gateway
from coaching.main import app
from coaching.models import EmailLog, EmailType, Order, SignUpStatus, SubscriptionStatus, User, UserRole
from coaching.services.auth import create_access_token, session_claims
from coaching.services.captcha import CaptchaVerifier
from coaching.services.stripe_service import StripeGateway
from coaching.services.tokens import issue_activation_token

WEBHOOK_SECRET = "whsec_test_secret"


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(session_claims(user))}"}


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def activation_link(email_client):
    """Pull token and userId out of the activation email."""
    message = next(m.get() for m in email_client.sent if m.get()["subject"] == "Activate your account")
    html = message["content"][0]["value"]
    href = html.split('href="')[1].split('"')[0].replace("&amp;", "&")
    query = parse_qs(urlparse(href).query)
    return query["token"][0], query["userId"][0]


def test_health(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestGuestCheckoutFlow:

    @pytest.fixture(autouse=True)
    def real_webhook_verification(self, gateway):
        # Real signature check, fake everything else
        real = StripeGateway(secret_key=None, webhook_secret=WEBHOOK_SECRET)
        gateway.construct_event = real.construct_event

    def post_event(self, client, event):
        body = json.dumps(event).encode()
        return client.post(
            "/api/stripe/webhook",
            content=body,
            headers={"Stripe-Signature": stripe_signature(body), "Content-Type": "application/json"},
        )

    def test_checkout_activation_login(self, client, db_session, email_client, checkout_payload):
        response = self.post_event(client, checkout_payload())
        assert response.status_code == 200
        assert response.json() == {"received": True}

        user = db_session.query(User).one()
        assert user.email == "guest@example.com"
        assert user.role == UserRole.CLIENT

        token, user_id = activation_link(email_client)
        assert user_id == user.id

        response = client.post("/api/auth/validate-token", json={"token": token, "userId": user_id})
        assert response.status_code == 200
        assert response.json()["email"] == "guest@example.com"

        response = client.post(
            "/api/auth/activate",
            json={"token": token, "userId": user_id, "password": "Password1", "name": "Giulia"},
        )
        assert response.status_code == 200
        assert response.json()["user"]["email_verified"] is True

        order = db_session.query(Order).one()
        db_session.refresh(order)
        assert order.sign_up_status == SignUpStatus.ACTIVATED

        response = client.post("/api/auth/login", json={"email": "guest@example.com", "password": "Password1"})
        assert response.status_code == 200
        access_token = response.json()["access_token"]

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {access_token}"})
        assert response.status_code == 200
        assert response.json()["name"] == "Giulia"

        # The same link cannot be used twice
        response = client.post(
            "/api/auth/activate",
            json={"token": token, "userId": user_id, "password": "Password2"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_token"

    def test_replayed_webhook(self, client, db_session, email_client, checkout_payload):
        event = checkout_payload()
        assert self.post_event(client, event).status_code == 200
        assert self.post_event(client, event).status_code == 200

        assert db_session.query(Order).count() == 1
        assert db_session.query(EmailLog).filter(EmailLog.email_type == EmailType.SIGNUP).count() == 1

    def test_bad_signature(self, client, checkout_payload):
        body = json.dumps(checkout_payload()).encode()
        response = client.post(
            "/api/stripe/webhook",
            content=body,
            headers={"Stripe-Signature": stripe_signature(body, secret="whsec_wrong")},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature"

    def test_missing_signature(self, client, checkout_payload):
        response = client.post("/api/stripe/webhook", content=json.dumps(checkout_payload()).encode())

        assert response.status_code == 400

    def test_unknown_customer_subscription_is_retried(self, client):
        event = {
            "id": "evt_sub",
            "type": "customer.subscription.created",
            "data": {"object": {"id": "sub_1", "customer": "cus_nobody", "status": "active"}},
        }

        assert self.post_event(client, event).status_code == 404


class TestAuthEndpoints:

    def test_weak_password_rejected(self, client, db_session, make_user):
        user = make_user()
        token = issue_activation_token(db_session, user.id)

        response = client.post(
            "/api/auth/activate",
            json={"token": token, "userId": user.id, "password": "alllowercase1"},
        )

        assert response.status_code == 422

    def test_login_failure_is_generic(self, client, make_user):
        make_user(email="active@example.com", password="Password1")

        wrong_password = client.post("/api/auth/login", json={"email": "active@example.com", "password": "Nope1234"})
        unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "Password1"})

        assert wrong_password.status_code == unknown.status_code == 401
        assert wrong_password.json() == unknown.json()

    def test_me_requires_token(self, client):
        response = client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_resend_is_generic(self, client, make_user):
        make_user(email="pending@example.com")

        known = client.post("/api/auth/resend-activation", json={"email": "pending@example.com"})
        unknown = client.post("/api/auth/resend-activation", json={"email": "ghost@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()


class TestSubscriptionEndpoints:

    def test_get_without_subscription(self, client, make_user):
        user = make_user(password="Password1")

        response = client.get("/api/subscription", headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json() == {"subscription": None, "has_subscription": False}

    def test_cancel_then_reactivate(self, client, gateway, make_user, make_subscription):
        user = make_user(password="Password1")
        make_subscription(user)
        gateway.add_subscription("sub_123")

        response = client.post("/api/subscription/cancel", json={}, headers=auth_headers(user))
        assert response.status_code == 200
        assert response.json()["subscription"]["cancel_at_period_end"] is True
        assert response.json()["subscription"]["status"] == "ACTIVE"

        response = client.post("/api/subscription/reactivate", headers=auth_headers(user))
        assert response.status_code == 200
        assert response.json()["subscription"]["cancel_at_period_end"] is False

    def test_reactivate_conflict(self, client, gateway, make_user, make_subscription):
        user = make_user(password="Password1")
        make_subscription(user, status=SubscriptionStatus.CANCELLED)
        gateway.add_subscription("sub_123", status="canceled")

        response = client.post("/api/subscription/reactivate", headers=auth_headers(user))

        assert response.status_code == 409
        assert response.json()["code"] == "already_cancelled"

    def test_sync_other_users_subscription(self, client, gateway, make_user, make_subscription):
        owner = make_user(email="owner@example.com", password="Password1")
        stranger = make_user(email="stranger@example.com", password="Password1")
        admin = make_user(email="admin@example.com", password="Password1", role=UserRole.ADMIN)
        subscription = make_subscription(owner)
        gateway.add_subscription("sub_123", status="past_due")

        assert client.get(f"/api/subscription/sync/{subscription.id}", headers=auth_headers(stranger)).status_code == 404

        response = client.get(f"/api/subscription/sync/{subscription.id}", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["status"] == "PAST_DUE"


class TestCheckoutEndpoint:

    def test_creates_session(self, client, gateway):
        response = client.post(
            "/api/checkout/sessions",
            json={
                "planId": "woman-premium-6w",
                "email": "buyer@example.com",
                "acceptedTos": True,
                "acceptedPrivacy": True,
                "tosVersion": "v2.0",
            },
            headers={"User-Agent": "pytest-agent", "Idempotency-Key": "idem-1"},
        )

        assert response.status_code == 200
        assert response.json()["url"].startswith("https://checkout.stripe.test/")

        session = gateway.checkout_sessions[0]
        assert session["price_id"] == "price_w_premium_6w"
        assert session["idempotency_key"] == "idem-1"
        assert session["metadata"]["tosAccepted"] == "true"
        assert session["metadata"]["tosVersion"] == "v2.0"
        assert session["metadata"]["userAgent"] == "pytest-agent"

    def test_unknown_plan(self, client):
        response = client.post(
            "/api/checkout/sessions",
            json={"planId": "woman-gold-6w", "email": "buyer@example.com", "acceptedTos": True},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Unknown planId"


class TestAdminEndpoints:

    def test_requires_key(self, client):
        assert client.get("/api/admin/scheduler", headers={"X-Admin-Key": "wrong"}).status_code == 403

    def test_scheduler_status(self, client):
        response = client.get("/api/admin/scheduler", headers={"X-Admin-Key": "test-admin-key"})

        assert response.status_code == 200
        assert response.json()["running"] is False


def test_gateway_dependency_reads_settings():
    gateway = get_stripe_gateway()

    assert gateway.webhook_secret == WEBHOOK_SECRET
    assert gateway.frontend_url == "http://frontend.test"


class TestCaptchaProtection:

    @pytest.fixture
    def rejecting_captcha(self, client):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": False}))
        verifier = CaptchaVerifier("hcaptcha-secret", client=httpx.Client(transport=transport))
        app.dependency_overrides[get_captcha_verifier] = lambda: verifier
        return verifier

    def test_resend_blocked(self, client, rejecting_captcha, email_client, make_user):
        make_user(email="pending@example.com")

        response = client.post(
            "/api/auth/resend-activation",
            json={"email": "pending@example.com", "h-captcha-response": "bad-token"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "CAPTCHA verification failed"
        assert email_client.sent == []

    def test_activate_blocked(self, client, rejecting_captcha, db_session, make_user):
        user = make_user()
        token = issue_activation_token(db_session, user.id)

        response = client.post(
            "/api/auth/activate",
            json={"token": token, "userId": user.id, "password": "Password1", "h-captcha-response": "bad-token"},
        )

        assert response.status_code == 400
        db_session.refresh(user)
        assert user.hashed_password is None

    def test_checkout_blocked(self, client, rejecting_captcha, gateway):
        response = client.post(
            "/api/checkout/sessions",
            json={"planId": "woman-premium-6w", "email": "buyer@example.com", "acceptedTos": True},
        )

        assert response.status_code == 400
        assert gateway.checkout_sessions == []

    def test_accepting_captcha_lets_resend_through(self, client, email_client, make_user):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": True}))
        verifier = CaptchaVerifier("hcaptcha-secret", client=httpx.Client(transport=transport))
        app.dependency_overrides[get_captcha_verifier] = lambda: verifier
        make_user(email="pending@example.com")

        response = client.post(
            "/api/auth/resend-activation",
            json={"email": "pending@example.com", "h-captcha-response": "good-token"},
        )

        assert response.status_code == 200
        assert len(email_client.sent) == 1
