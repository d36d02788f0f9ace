"""
Order ledger.

Turns a completed checkout into User, Order, Consent and (for new users)
ActivationToken rows, written as one transaction. The Stripe session id is
the idempotency key: replays of the same session return the stored order.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coaching.models import Consent, Order, OrderStatus, SignUpStatus, User, UserRole
from coaching.services.security import normalize_email
from coaching.services.tokens import issue_activation_token
from coaching.services.webhook_events import CheckoutCompleted

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    user: Optional[User]
    is_new_user: bool
    created: bool  # False when the session had already been recorded
    activation_token: Optional[str] = None  # plaintext, in memory only


def get_order_by_session(db: Session, session_id: str) -> Optional[Order]:
    return db.query(Order).filter(Order.stripe_session_id == session_id).first()


def _replay(order: Order) -> CheckoutResult:
    logger.info(f"Checkout session {order.stripe_session_id} already recorded as order {order.id}")
    return CheckoutResult(order=order, user=order.user, is_new_user=False, created=False)


def _link_customer(db: Session, user: User, customer_id: Optional[str]) -> None:
    """Point the user at the Stripe customer, unless another user already owns it."""
    if not customer_id or user.stripe_customer_id == customer_id:
        return

    owner = (
        db.query(User)
        .filter(User.stripe_customer_id == customer_id, User.id != user.id)
        .first()
    )
    if owner is not None:
        logger.warning(f"Stripe customer {customer_id} already linked to user {owner.id}, not relinking")
        return

    user.stripe_customer_id = customer_id


def _write_checkout(db: Session, checkout: CheckoutCompleted) -> CheckoutResult:
    email = normalize_email(checkout.customer_email)

    user = db.query(User).filter(User.email == email).first()
    is_new_user = user is None

    if is_new_user:
        user = User(
            email=email,
            name=checkout.customer_name,
            role=UserRole.CLIENT,
            email_verified=False,
        )
        db.add(user)
        db.flush()
        logger.info(f"Created user {user.id} from guest checkout")

    _link_customer(db, user, checkout.customer_id)

    order = Order(
        user_id=user.id,
        plan_id=checkout.plan_id,
        amount=checkout.amount_total,
        currency=checkout.currency,
        status=OrderStatus.COMPLETED,
        sign_up_status=SignUpStatus.PENDING,
        stripe_session_id=checkout.session_id,
        stripe_payment_intent_id=checkout.payment_intent_id,
    )
    db.add(order)
    db.flush()

    if checkout.consent is not None:
        consent = checkout.consent
        db.add(Consent(
            order_id=order.id,
            tos_accepted=consent.tos_accepted,
            privacy_accepted=consent.privacy_accepted,
            marketing_opt_in=consent.marketing_opt_in,
            tos_version=consent.tos_version,
            privacy_version=consent.privacy_version,
            ip_address=consent.ip_address,
            user_agent=consent.user_agent,
        ))
    else:
        logger.info(f"No consent metadata on session {checkout.session_id}")

    activation_token = issue_activation_token(db, user.id, commit=False) if is_new_user else None

    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.id} recorded for user {user.id} (session {checkout.session_id})")

    return CheckoutResult(
        order=order,
        user=user,
        is_new_user=is_new_user,
        created=True,
        activation_token=activation_token,
    )


def record_checkout(db: Session, checkout: CheckoutCompleted) -> CheckoutResult:
    """Record a completed checkout once per Stripe session."""
    existing = get_order_by_session(db, checkout.session_id)
    if existing is not None:
        return _replay(existing)

    try:
        return _write_checkout(db, checkout)
    except IntegrityError:
        db.rollback()

    # A concurrent delivery won: either the same session (replay) or a
    # user with the same email created in between (retry once)
    existing = get_order_by_session(db, checkout.session_id)
    if existing is not None:
        return _replay(existing)
    return _write_checkout(db, checkout)
