"""
FastAPI dependencies that build the external-service clients and the
services composed from them. Tests swap these out via dependency_overrides.
"""
from typing import Optional

from fastapi import Depends, Request
from sendgrid import SendGridAPIClient
from sqlalchemy.orm import Session

from coaching.config import get_settings
from coaching.database import get_db
from coaching.services.captcha import CaptchaVerifier
from coaching.services.email_service import EmailDispatcher
from coaching.services.stripe_service import StripeGateway
from coaching.services.subscription_service import SubscriptionReconciler
from coaching.services.webhook_handler import WebhookHandler


def get_stripe_gateway() -> StripeGateway:
    settings = get_settings()
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        frontend_url=settings.frontend_url,
    )


def get_email_client():
    """SendGrid client, or None when no API key is configured."""
    api_key = get_settings().sendgrid_api_key
    if not api_key:
        return None
    return SendGridAPIClient(api_key)


def get_email_dispatcher(
    db: Session = Depends(get_db),
    client=Depends(get_email_client),
) -> EmailDispatcher:
    settings = get_settings()
    return EmailDispatcher(
        db,
        client,
        from_email=settings.from_email,
        frontend_url=settings.frontend_url,
        admin_emails=settings.admin_emails,
        activation_expire_hours=settings.activation_token_expire_hours,
    )


def get_reconciler(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(db, gateway)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_captcha_verifier() -> CaptchaVerifier:
    return CaptchaVerifier(get_settings().hcaptcha_secret)


def get_webhook_handler(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> WebhookHandler:
    return WebhookHandler(db, gateway, dispatcher, reconciler)
