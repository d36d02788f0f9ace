"""
Stripe webhook handler.

Verifies the event, records the ledger writes it implies, and then sends
notifications. Ledger failures propagate (Stripe retries the delivery);
notification failures are logged and swallowed.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from coaching.services.email_service import EmailDispatcher
from coaching.services.ledger import CheckoutResult, record_checkout
from coaching.services.stripe_service import StripeGateway
from coaching.services.subscription_service import SubscriptionReconciler
from coaching.services.webhook_events import (
    CheckoutCompleted,
    PaymentSucceeded,
    SubscriptionEvent,
    UnhandledEvent,
    WebhookEvent,
    parse_event,
)

logger = logging.getLogger(__name__)


class WebhookHandler:

    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        dispatcher: EmailDispatcher,
        reconciler: SubscriptionReconciler,
    ):
        self.db = db
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.reconciler = reconciler

    def handle(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify, parse and process one webhook delivery."""
        raw_event = self.gateway.construct_event(payload, signature)
        event = parse_event(raw_event)
        logger.info(f"Stripe webhook received: {raw_event.get('type')} ({event.event_id})")
        self.dispatch(event)
        return event

    def dispatch(self, event: WebhookEvent) -> None:
        if isinstance(event, CheckoutCompleted):
            self.handle_checkout_completed(event)

        elif isinstance(event, SubscriptionEvent):
            self.handle_subscription_event(event)

        elif isinstance(event, PaymentSucceeded):
            # checkout.session.completed carries everything needed
            logger.info(f"Payment succeeded: {event.payment_intent_id}")

        elif isinstance(event, UnhandledEvent):
            logger.info(f"Unhandled event type: {event.event_type}")

    def handle_checkout_completed(self, event: CheckoutCompleted) -> Optional[CheckoutResult]:
        if not event.customer_email:
            logger.warning(f"No customer email on checkout session {event.session_id}, skipping")
            return None

        result = record_checkout(self.db, event)
        if result.created:
            self._notify_checkout(result)
        return result

    def handle_subscription_event(self, event: SubscriptionEvent) -> None:
        remote = event.subscription
        if event.action == "created":
            self.reconciler.handle_subscription_created(remote)
        elif event.action == "updated":
            self.reconciler.handle_subscription_updated(remote.id)
        elif event.action == "deleted":
            self.reconciler.handle_subscription_deleted(remote.id)

    def _notify_checkout(self, result: CheckoutResult) -> None:
        """Best-effort emails after the ledger commit."""
        order = result.order
        recipient = result.user.email
        try:
            confirmation = self.dispatcher.send_order_confirmation(
                recipient, order.id, order.plan_id, order.amount, order.currency
            )
            if not confirmation.success:
                logger.error(f"Order confirmation email failed for order {order.id}: {confirmation.error_message}")

            if result.is_new_user and result.activation_token:
                activation = self.dispatcher.send_account_activation(
                    recipient, result.user.id, result.activation_token, order_id=order.id
                )
                if not activation.success:
                    logger.error(f"Activation email failed for user {result.user.id}: {activation.error_message}")

            admin_notice = self.dispatcher.send_admin_order_notification(
                order.id, recipient, order.plan_id, order.amount, order.currency
            )
            if not admin_notice.success:
                logger.error(f"Admin order notification failed for order {order.id}: {admin_notice.error_message}")
        except Exception as e:
            logger.exception(f"Notification dispatch failed for order {order.id}: {e}")
