"""
Subscription router: read, cancel, reactivate and sync the caller's subscription.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from coaching.database import get_db
from coaching.dependencies import get_reconciler
from coaching.errors import NotFound
from coaching.models import Subscription, User, UserRole
from coaching.routers.auth import require_auth
from coaching.schemas import (
    SubscriptionActionResponse,
    SubscriptionCancel,
    SubscriptionInfo,
)
from coaching.schemas import Subscription as SubscriptionSchema
from coaching.services.subscription_service import SubscriptionReconciler

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.get("", response_model=SubscriptionInfo)
def get_subscription(
    current_user: User = Depends(require_auth),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    """Current user's live subscription, if any."""
    subscription = reconciler.get_active(current_user.id)
    return SubscriptionInfo(
        subscription=SubscriptionSchema.model_validate(subscription) if subscription else None,
        has_subscription=subscription is not None,
    )


@router.post("/cancel", response_model=SubscriptionActionResponse)
def cancel_subscription(
    data: SubscriptionCancel = SubscriptionCancel(),
    current_user: User = Depends(require_auth),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    subscription = reconciler.cancel(current_user.id, immediate=data.cancel_immediately)
    message = (
        "Subscription cancelled"
        if data.cancel_immediately
        else "Subscription will be cancelled at the end of the current period"
    )
    return SubscriptionActionResponse(
        message=message,
        subscription=SubscriptionSchema.model_validate(subscription),
    )


@router.post("/reactivate", response_model=SubscriptionActionResponse)
def reactivate_subscription(
    current_user: User = Depends(require_auth),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    subscription = reconciler.reactivate(current_user.id)
    return SubscriptionActionResponse(
        message="Subscription reactivated",
        subscription=SubscriptionSchema.model_validate(subscription),
    )


@router.get("/sync/{subscription_id}", response_model=SubscriptionSchema)
def sync_subscription(
    subscription_id: str,
    current_user: User = Depends(require_auth),
    db: Session = Depends(get_db),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    """Refresh a subscription from Stripe. Owners and admins only."""
    subscription = db.query(Subscription).filter(Subscription.id == subscription_id).first()

    # Someone else's subscription looks the same as a missing one
    if subscription is None or (
        subscription.user_id != current_user.id and current_user.role != UserRole.ADMIN
    ):
        raise NotFound("Subscription not found")

    return reconciler.sync_from_processor(subscription.id)
