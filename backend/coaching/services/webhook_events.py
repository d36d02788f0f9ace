"""
Typed Stripe webhook events.

Raw event payloads are turned into one of a closed set of dataclasses; any
event type the application does not act on becomes ``UnhandledEvent``.
"""
from dataclasses import dataclass
from typing import Optional, Union

from coaching.services.stripe_service import ProcessorSubscription, field

DEFAULT_DOCUMENT_VERSION = "v1.0"
UNKNOWN_PLAN = "unknown-plan"
METADATA_VALUE_LIMIT = 500


@dataclass(frozen=True)
class ConsentMetadata:
    tos_accepted: bool
    privacy_accepted: bool
    marketing_opt_in: bool
    tos_version: str
    privacy_version: str
    ip_address: Optional[str]
    user_agent: Optional[str]

    @classmethod
    def from_metadata(cls, metadata) -> Optional["ConsentMetadata"]:
        """Consent is only recorded when the ToS flag is explicitly ``"true"``."""
        if field(metadata, "tosAccepted") != "true":
            return None
        return cls(
            tos_accepted=True,
            privacy_accepted=field(metadata, "privacyAccepted") == "true",
            marketing_opt_in=field(metadata, "marketingOptIn") == "true",
            tos_version=field(metadata, "tosVersion") or DEFAULT_DOCUMENT_VERSION,
            privacy_version=field(metadata, "privacyVersion") or DEFAULT_DOCUMENT_VERSION,
            ip_address=field(metadata, "ipAddress") or None,
            user_agent=field(metadata, "userAgent") or None,
        )


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: str
    customer_email: Optional[str]
    customer_name: Optional[str]
    customer_id: Optional[str]
    payment_intent_id: Optional[str]
    plan_id: str
    amount_total: Optional[int]
    currency: Optional[str]
    consent: Optional[ConsentMetadata]


@dataclass(frozen=True)
class SubscriptionEvent:
    event_id: str
    action: str  # created, updated, deleted
    subscription: ProcessorSubscription


@dataclass(frozen=True)
class PaymentSucceeded:
    event_id: str
    payment_intent_id: str


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


WebhookEvent = Union[CheckoutCompleted, SubscriptionEvent, PaymentSucceeded, UnhandledEvent]

SUBSCRIPTION_ACTIONS = {
    "customer.subscription.created": "created",
    "customer.subscription.updated": "updated",
    "customer.subscription.deleted": "deleted",
}


def _customer_name(session) -> Optional[str]:
    for custom_field in field(session, "custom_fields", []):
        if field(custom_field, "key") == "full_name":
            value = field(field(custom_field, "text"), "value")
            if value:
                return value
    return field(field(session, "customer_details"), "name")


def _customer_id(value) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return field(value, "id")


def parse_checkout_session(event_id: str, session) -> CheckoutCompleted:
    metadata = field(session, "metadata", {})
    customer_email = field(session, "customer_email") or field(field(session, "customer_details"), "email")
    return CheckoutCompleted(
        event_id=event_id,
        session_id=field(session, "id"),
        customer_email=customer_email,
        customer_name=_customer_name(session),
        customer_id=_customer_id(field(session, "customer")),
        payment_intent_id=_customer_id(field(session, "payment_intent")),
        plan_id=field(metadata, "planId") or UNKNOWN_PLAN,
        amount_total=field(session, "amount_total"),
        currency=field(session, "currency"),
        consent=ConsentMetadata.from_metadata(metadata),
    )


def parse_event(event) -> WebhookEvent:
    """Map a verified event payload onto a typed event."""
    event_id = field(event, "id", "")
    event_type = field(event, "type", "")
    obj = field(field(event, "data"), "object", {})

    if event_type == "checkout.session.completed":
        return parse_checkout_session(event_id, obj)

    if event_type in SUBSCRIPTION_ACTIONS:
        return SubscriptionEvent(
            event_id=event_id,
            action=SUBSCRIPTION_ACTIONS[event_type],
            subscription=ProcessorSubscription.from_stripe(obj),
        )

    if event_type == "payment_intent.succeeded":
        return PaymentSucceeded(event_id=event_id, payment_intent_id=field(obj, "id"))

    return UnhandledEvent(event_id=event_id, event_type=event_type)
