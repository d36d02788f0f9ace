"""
Subscription reconciler.

Keeps local Subscription rows consistent with Stripe. User actions (cancel,
reactivate) and Stripe webhooks both end up here; every read-modify-write
locks the subscription row first.
"""
import logging
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coaching.errors import AlreadyCancelled, NotFound
from coaching.models import (
    LIVE_STATUSES,
    Order,
    OrderStatus,
    PlanDuration,
    PlanType,
    Subscription,
    SubscriptionStatus,
    User,
)
from coaching.services.stripe_service import ProcessorSubscription, StripeGateway
from coaching.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

# Stripe status -> local status; anything else collapses to CANCELLED
STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    "unpaid": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.CANCELLED,
}

# CANCELLED is terminal; only reactivate() may leave it
ALLOWED_TRANSITIONS = {
    SubscriptionStatus.INCOMPLETE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.CANCELLED,
    },
    SubscriptionStatus.TRIALING: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELLED,
    },
    SubscriptionStatus.ACTIVE: {
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELLED,
    },
    SubscriptionStatus.PAST_DUE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
    },
    SubscriptionStatus.CANCELLED: set(),
}


def map_processor_status(status: Optional[str]) -> SubscriptionStatus:
    return STATUS_MAP.get((status or "").lower(), SubscriptionStatus.CANCELLED)


def map_plan_type(plan_id: str) -> PlanType:
    """``woman-premium-6w`` -> WOMAN_PREMIUM. Italian slugs (donna/uomo) too."""
    normalized = plan_id.lower()
    premium = "premium" in normalized

    # "woman" contains "man", so it must be checked first
    if "woman" in normalized or "donna" in normalized:
        return PlanType.WOMAN_PREMIUM if premium else PlanType.WOMAN_STARTER
    if "man" in normalized or "uomo" in normalized:
        return PlanType.MAN_PREMIUM if premium else PlanType.MAN_STARTER

    logger.warning(f"Unknown plan id format: {plan_id}, defaulting to WOMAN_STARTER")
    return PlanType.WOMAN_STARTER


def map_plan_duration(plan_id: str) -> PlanDuration:
    normalized = plan_id.lower()
    if "36" in normalized:
        return PlanDuration.WEEKS_36
    if "18" in normalized:
        return PlanDuration.WEEKS_18
    return PlanDuration.WEEKS_6


class SubscriptionReconciler:
    """Subscription lifecycle operations backed by a Stripe gateway."""

    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway

    # ============== Queries ==============

    def _live_query(self, user_id: str):
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.status.in_(LIVE_STATUSES))
            .order_by(Subscription.created_at.desc())
        )

    def get_active(self, user_id: str) -> Optional[Subscription]:
        """Newest subscription that still grants access, if any."""
        return self._live_query(user_id).first()

    def get_by_stripe_id(self, stripe_subscription_id: str, lock: bool = False) -> Optional[Subscription]:
        query = self.db.query(Subscription).filter(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    # ============== State changes ==============

    def _transition(self, subscription: Subscription, new_status: SubscriptionStatus) -> bool:
        current = subscription.status
        if new_status == current:
            return True
        if new_status not in ALLOWED_TRANSITIONS[current]:
            logger.warning(
                f"Ignoring transition {current.value} -> {new_status.value} "
                f"for subscription {subscription.id}"
            )
            return False
        subscription.status = new_status
        logger.info(f"Subscription {subscription.id}: {current.value} -> {new_status.value}")
        return True

    def _apply(self, subscription: Subscription, remote: ProcessorSubscription) -> None:
        """Copy Stripe's view onto the local row."""
        status = map_processor_status(remote.status)
        period_end = as_utc(remote.current_period_end)
        if remote.cancel_at_period_end and period_end is not None and period_end <= utcnow():
            status = SubscriptionStatus.CANCELLED

        self._transition(subscription, status)
        subscription.cancel_at_period_end = remote.cancel_at_period_end
        subscription.current_period_start = remote.current_period_start
        subscription.current_period_end = remote.current_period_end

    def cancel(self, user_id: str, immediate: bool = False) -> Subscription:
        """
        Cancel the user's live subscription.

        Immediate cancellation ends it now. Otherwise only the
        cancel-at-period-end flag is set and the status changes later, when
        Stripe reports the end of the period.
        """
        subscription = self._live_query(user_id).with_for_update().first()
        if subscription is None:
            raise NotFound("No active subscription found")

        if immediate:
            self.gateway.cancel_subscription(subscription.stripe_subscription_id)
            self._transition(subscription, SubscriptionStatus.CANCELLED)
            subscription.cancel_at_period_end = False
        else:
            self.gateway.set_cancel_at_period_end(subscription.stripe_subscription_id, True)
            subscription.cancel_at_period_end = True

        self.db.commit()
        self.db.refresh(subscription)
        logger.info(f"Subscription {subscription.id} cancelled (immediate={immediate})")
        return subscription

    def reactivate(self, user_id: str) -> Subscription:
        """Undo a scheduled or local cancellation while Stripe still has the subscription."""
        subscription = (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                or_(
                    and_(
                        Subscription.status == SubscriptionStatus.ACTIVE,
                        Subscription.cancel_at_period_end.is_(True),
                    ),
                    Subscription.status == SubscriptionStatus.CANCELLED,
                ),
            )
            .order_by(Subscription.created_at.desc())
            .with_for_update()
            .first()
        )
        if subscription is None:
            raise NotFound("No subscription found to reactivate")

        remote = self.gateway.retrieve_subscription(subscription.stripe_subscription_id)
        if remote is None or remote.status == "canceled":
            self.db.rollback()
            raise AlreadyCancelled()

        self.gateway.set_cancel_at_period_end(subscription.stripe_subscription_id, False)

        # Explicit exit from CANCELLED, outside the normal transition table
        subscription.cancel_at_period_end = False
        subscription.status = SubscriptionStatus.ACTIVE
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(f"Subscription {subscription.id} reactivated")
        return subscription

    def sync_from_processor(self, subscription_id: str) -> Subscription:
        """Refresh a local subscription from Stripe's authoritative state."""
        subscription = (
            self.db.query(Subscription)
            .filter(Subscription.id == subscription_id)
            .with_for_update()
            .first()
        )
        if subscription is None:
            raise NotFound("Subscription not found")

        remote = self.gateway.retrieve_subscription(subscription.stripe_subscription_id)
        if remote is None:
            logger.warning(f"Subscription {subscription.id} no longer exists in Stripe")
            self._transition(subscription, SubscriptionStatus.CANCELLED)
            subscription.cancel_at_period_end = False
        else:
            self._apply(subscription, remote)

        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    # ============== Webhook entry points ==============

    def handle_subscription_created(self, remote: ProcessorSubscription) -> Subscription:
        """
        Create the local row for a new Stripe subscription.

        The plan comes from the owner's most recent completed order. An
        unknown customer raises NotFound so Stripe redelivers the event once
        the checkout has been recorded.
        """
        existing = self.get_by_stripe_id(remote.id, lock=True)
        if existing is not None:
            self._apply(existing, remote)
            self.db.commit()
            return existing

        user = self.db.query(User).filter(User.stripe_customer_id == remote.customer_id).first()
        if user is None:
            raise NotFound(f"No user found for Stripe customer {remote.customer_id}")

        order = (
            self.db.query(Order)
            .filter(Order.user_id == user.id, Order.status == OrderStatus.COMPLETED)
            .order_by(Order.created_at.desc())
            .first()
        )
        if order is None:
            raise NotFound(f"No completed order found for user {user.id}")

        subscription = Subscription(
            user_id=user.id,
            stripe_subscription_id=remote.id,
            plan_type=map_plan_type(order.plan_id),
            duration=map_plan_duration(order.plan_id),
            status=map_processor_status(remote.status),
            cancel_at_period_end=remote.cancel_at_period_end,
            current_period_start=remote.current_period_start,
            current_period_end=remote.current_period_end,
        )
        self.db.add(subscription)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same event created it first
            self.db.rollback()
            existing = self.get_by_stripe_id(remote.id, lock=True)
            if existing is None:
                raise
            self._apply(existing, remote)
            self.db.commit()
            return existing

        self.db.refresh(subscription)
        logger.info(f"Subscription {subscription.id} created for user {user.id}")
        return subscription

    def handle_subscription_updated(self, stripe_subscription_id: str) -> Optional[Subscription]:
        subscription = self.get_by_stripe_id(stripe_subscription_id)
        if subscription is None:
            logger.warning(f"Subscription not found for Stripe id {stripe_subscription_id}")
            return None
        return self.sync_from_processor(subscription.id)

    def handle_subscription_deleted(self, stripe_subscription_id: str) -> Optional[Subscription]:
        subscription = self.get_by_stripe_id(stripe_subscription_id, lock=True)
        if subscription is None:
            logger.warning(f"Subscription not found for Stripe id {stripe_subscription_id}")
            return None

        self._transition(subscription, SubscriptionStatus.CANCELLED)
        subscription.cancel_at_period_end = False
        self.db.commit()
        self.db.refresh(subscription)
        return subscription
