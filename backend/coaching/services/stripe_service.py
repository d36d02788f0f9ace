"""
Stripe service for checkout sessions, webhook verification and subscriptions.

``StripeGateway`` carries its own API key and passes it on every call, so
nothing here mutates the global ``stripe.api_key``.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import stripe

from coaching.errors import ExternalServiceError, InvalidInput
from coaching.timeutils import from_timestamp

logger = logging.getLogger(__name__)


def field(obj, key, default=None):
    """Read a key from a dict or StripeObject, tolerating absence."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, IndexError, TypeError, AttributeError):
        return default
    return default if value is None else value


@dataclass(frozen=True)
class ProcessorSubscription:
    """The parts of a Stripe subscription the reconciler cares about."""
    id: str
    customer_id: Optional[str]
    status: str
    cancel_at_period_end: bool
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    metadata: dict

    @classmethod
    def from_stripe(cls, obj) -> "ProcessorSubscription":
        # Newer API versions moved the period bounds onto the subscription items
        first_item = field(field(field(obj, "items"), "data", []), 0)
        start = field(obj, "current_period_start") or field(first_item, "current_period_start")
        end = field(obj, "current_period_end") or field(first_item, "current_period_end")

        customer = field(obj, "customer")
        if customer is not None and not isinstance(customer, str):
            customer = field(customer, "id")

        metadata = field(obj, "metadata", {})
        return cls(
            id=field(obj, "id"),
            customer_id=customer,
            status=field(obj, "status", ""),
            cancel_at_period_end=bool(field(obj, "cancel_at_period_end", False)),
            current_period_start=from_timestamp(start),
            current_period_end=from_timestamp(end),
            metadata=dict(metadata) if metadata else {},
        )


class StripeGateway:
    """Thin wrapper over the Stripe SDK calls the application uses."""

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        frontend_url: str = "http://localhost:3000",
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")

    def _require_key(self) -> str:
        if not self.secret_key:
            raise ExternalServiceError("Stripe is not configured")
        return self.secret_key

    def create_checkout_session(
        self,
        price_id: str,
        email: str,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Create a subscription-mode Checkout session and return its URL."""
        api_key = self._require_key()

        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        try:
            session = stripe.checkout.Session.create(
                api_key=api_key,
                mode="subscription",
                line_items=[{
                    "price": price_id,
                    "quantity": 1,
                }],
                customer_email=email,
                custom_fields=[{
                    "key": "full_name",
                    "label": {"type": "custom", "custom": "Full name"},
                    "type": "text",
                    "optional": False,
                }],
                success_url=f"{self.frontend_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.frontend_url}/checkout/cancel",
                metadata=metadata,
                subscription_data={"metadata": {"planId": metadata.get("planId", "")}},
                **options,
            )
        except stripe.StripeError as e:
            logger.error(f"Checkout session creation failed: {e}")
            raise ExternalServiceError(e.user_message or str(e)) from e

        return session.url

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """Verify the webhook signature and return the event as plain data."""
        if not self.webhook_secret:
            raise ExternalServiceError("Stripe webhook secret is not configured")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise InvalidInput("Invalid signature") from e

        return json.loads(payload)

    def retrieve_subscription(self, subscription_id: str) -> Optional[ProcessorSubscription]:
        """Fetch a subscription. Returns None when Stripe no longer knows it."""
        api_key = self._require_key()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=api_key)
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                return None
            raise ExternalServiceError(str(e)) from e
        except stripe.StripeError as e:
            raise ExternalServiceError(str(e)) from e
        return ProcessorSubscription.from_stripe(subscription)

    def set_cancel_at_period_end(self, subscription_id: str, value: bool) -> ProcessorSubscription:
        api_key = self._require_key()
        try:
            subscription = stripe.Subscription.modify(
                subscription_id,
                api_key=api_key,
                cancel_at_period_end=value,
            )
        except stripe.StripeError as e:
            raise ExternalServiceError(str(e)) from e
        return ProcessorSubscription.from_stripe(subscription)

    def cancel_subscription(self, subscription_id: str) -> ProcessorSubscription:
        api_key = self._require_key()
        try:
            subscription = stripe.Subscription.cancel(subscription_id, api_key=api_key)
        except stripe.StripeError as e:
            raise ExternalServiceError(str(e)) from e
        return ProcessorSubscription.from_stripe(subscription)
