"""Subscription API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.api.deps import get_db, get_stripe_adapter, require_admin
from studio_billing.models.subscription import SubscriptionStatus
from studio_billing.schemas.payment import PaymentRecord
from studio_billing.schemas.subscription import (
    CancelRequest,
    CancelResult,
    Subscription,
    SubscriptionCreate,
    SubscriptionCreated,
    SubscriptionList,
)
from studio_billing.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.post("", response_model=SubscriptionCreated, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    subscription_data: SubscriptionCreate,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    current_user: dict = Depends(require_admin),
) -> SubscriptionCreated:
    """
    Create a subscription to a catalog plan.

    - **client_id**, **client_email**, **client_name**: Client being subscribed
    - **plan_type**: retainer or saas
    - **plan_tier**: Tier within the plan type (e.g. standard, priority, growth)

    The subscription starts in pending_payment and becomes active once the
    client completes the returned Stripe checkout.
    """
    service = SubscriptionService(db, stripe_adapter)
    subscription = await service.create_subscription(subscription_data)
    await db.commit()
    return SubscriptionCreated(subscription_id=subscription.id, checkout_url=subscription.checkout_url)


@router.get("/{subscription_id}", response_model=Subscription)
async def get_subscription(
    subscription_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> Subscription:
    """Get subscription by ID."""
    service = SubscriptionService(db)
    return await service.get_subscription(subscription_id)


@router.get("", response_model=SubscriptionList)
async def list_subscriptions(
    client_id: UUID | None = Query(None, description="Filter by client ID"),
    status_filter: SubscriptionStatus | None = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(100, ge=1, le=1000, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> SubscriptionList:
    """
    List subscriptions with pagination, newest first.

    - **client_id**: Filter by client (optional)
    - **status**: Filter by status (optional)
    """
    service = SubscriptionService(db)
    subscriptions, total = await service.list_subscriptions(page, page_size, status_filter, client_id)

    return SubscriptionList(items=subscriptions, total=total, page=page, page_size=page_size)


@router.get("/{subscription_id}/payments", response_model=list[PaymentRecord])
async def list_subscription_payments(
    subscription_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> list[PaymentRecord]:
    """List reconciled payments of a subscription, oldest first."""
    service = SubscriptionService(db)
    return await service.list_payments(subscription_id)


@router.post("/{record_id}/cancel", response_model=CancelResult)
async def cancel_subscription(
    record_id: UUID,
    cancel_request: CancelRequest,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    current_user: dict = Depends(require_admin),
) -> CancelResult:
    """
    Cancel a subscription or a payment plan.

    - **stripe_subscription_id**: Optional, must match the stored subscription
    - **cancel_immediately**: Cancel now (default) or at the end of the current period

    The id may be a subscription id or a payment plan id.
    """
    service = SubscriptionService(db, stripe_adapter)
    result = await service.cancel(record_id, cancel_request)
    await db.commit()
    return result
