"""
Checkout router: starts Stripe Checkout for a coaching plan.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from coaching.dependencies import client_ip, get_captcha_verifier, get_stripe_gateway
from coaching.schemas import CheckoutSessionCreate, CheckoutSessionResponse
from coaching.services import checkout as checkout_service
from coaching.services.captcha import CaptchaVerifier
from coaching.services.stripe_service import StripeGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/sessions", response_model=CheckoutSessionResponse)
def create_checkout_session(
    data: CheckoutSessionCreate,
    request: Request,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    captcha: CaptchaVerifier = Depends(get_captcha_verifier),
):
    """Create a Stripe Checkout session for a plan and return its URL."""
    ip_address = client_ip(request)
    captcha.verify(data.captcha_token, ip_address)

    url = checkout_service.create_checkout_session(
        gateway,
        plan_id=data.plan_id,
        email=data.email,
        accepted_tos=data.accepted_tos,
        accepted_privacy=data.accepted_privacy,
        tos_version=data.tos_version,
        privacy_version=data.privacy_version,
        marketing_opt_in=data.marketing_opt_in,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
        idempotency_key=idempotency_key,
    )
    return CheckoutSessionResponse(url=url)
