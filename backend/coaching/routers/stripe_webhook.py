"""
Stripe webhook endpoint.
"""
from fastapi import APIRouter, Depends, Header, Request

from coaching.dependencies import get_webhook_handler
from coaching.errors import InvalidInput
from coaching.services.webhook_handler import WebhookHandler

router = APIRouter(prefix="/stripe", tags=["stripe"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    handler: WebhookHandler = Depends(get_webhook_handler),
):
    """Handle Stripe webhook events.

    Ledger failures surface as a non-2xx response so Stripe redelivers.
    """
    if not stripe_signature:
        raise InvalidInput("Missing Stripe signature")

    payload = await request.body()
    handler.handle(payload, stripe_signature)
    return {"received": True}
