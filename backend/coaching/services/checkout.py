"""
Checkout service: plan catalog and Stripe Checkout session creation.
"""
import logging
from typing import Optional

from coaching.config import Settings, get_settings
from coaching.errors import InvalidInput
from coaching.services.stripe_service import StripeGateway
from coaching.services.webhook_events import METADATA_VALUE_LIMIT

logger = logging.getLogger(__name__)

# Plan slug -> Settings attribute holding its Stripe price id
PLAN_PRICE_SETTINGS = {
    # Woman plans
    "woman-starter-6w": "price_id_w_starter_6w",
    "woman-starter-18w": "price_id_w_starter_18w",
    "woman-starter-36w": "price_id_w_starter_36w",
    "woman-premium-6w": "price_id_w_premium_6w",
    "woman-premium-18w": "price_id_w_premium_18w",
    "woman-premium-36w": "price_id_w_premium_36w",
    # Man plans
    "man-starter-6w": "price_id_m_starter_6w",
    "man-starter-18w": "price_id_m_starter_18w",
    "man-starter-36w": "price_id_m_starter_36w",
    "man-premium-6w": "price_id_m_premium_6w",
    "man-premium-18w": "price_id_m_premium_18w",
    "man-premium-36w": "price_id_m_premium_36w",
}


def get_price_id(plan_id: str, settings: Optional[Settings] = None) -> Optional[str]:
    """Return the configured Stripe price id for a plan slug."""
    settings = settings or get_settings()
    attribute = PLAN_PRICE_SETTINGS.get(plan_id)
    if attribute is None:
        return None
    return getattr(settings, attribute) or None


def _flag(value: bool) -> str:
    return "true" if value else "false"


def create_checkout_session(
    gateway: StripeGateway,
    plan_id: str,
    email: str,
    accepted_tos: bool,
    accepted_privacy: bool,
    tos_version: str,
    privacy_version: str,
    marketing_opt_in: bool = False,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Start a Stripe Checkout for a plan and return the redirect URL.

    Consent travels in the session metadata and is written to the ledger
    when the completed-checkout webhook arrives.
    """
    price_id = get_price_id(plan_id, settings)
    if not price_id:
        raise InvalidInput("Unknown planId")

    if not accepted_tos:
        raise InvalidInput("Terms of service must be accepted")

    metadata = {
        "planId": plan_id,
        "tosAccepted": _flag(accepted_tos),
        "tosVersion": tos_version,
        "privacyAccepted": _flag(accepted_privacy),
        "privacyVersion": privacy_version,
        "marketingOptIn": _flag(marketing_opt_in),
    }
    if ip_address:
        metadata["ipAddress"] = ip_address[:METADATA_VALUE_LIMIT]
    if user_agent:
        metadata["userAgent"] = user_agent[:METADATA_VALUE_LIMIT]

    logger.info(f"Checkout session request: plan={plan_id} price={price_id}")
    return gateway.create_checkout_session(price_id, email, metadata, idempotency_key=idempotency_key)
