"""Payment plan API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.api.deps import get_db, get_stripe_adapter, require_admin
from studio_billing.models.subscription import SubscriptionStatus
from studio_billing.schemas.payment import PaymentRecord
from studio_billing.schemas.subscription import (
    PaymentPlan,
    PaymentPlanCreate,
    PaymentPlanCreated,
    PaymentPlanList,
)
from studio_billing.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/payment-plans", tags=["Payment Plans"])


@router.post("", response_model=PaymentPlanCreated, status_code=status.HTTP_201_CREATED)
async def create_payment_plan(
    plan_data: PaymentPlanCreate,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    current_user: dict = Depends(require_admin),
) -> PaymentPlanCreated:
    """
    Create a payment plan that splits a project total into monthly installments.

    - **total_amount**: Project total in dollars
    - **number_of_payments**: Number of monthly installments (1-60)
    - **start_date**: Optional first charge date, must be in the future

    The monthly amount is the total divided by the number of payments,
    rounded to cents.
    """
    service = SubscriptionService(db, stripe_adapter)
    plan, monthly_amount = await service.create_payment_plan(plan_data)
    await db.commit()
    return PaymentPlanCreated(payment_plan_id=plan.id, checkout_url=plan.checkout_url, monthly_amount=monthly_amount)


@router.get("/{plan_id}", response_model=PaymentPlan)
async def get_payment_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> PaymentPlan:
    """Get payment plan by ID, including installments completed and remaining."""
    service = SubscriptionService(db)
    return await service.get_payment_plan(plan_id)


@router.get("", response_model=PaymentPlanList)
async def list_payment_plans(
    client_id: UUID | None = Query(None, description="Filter by client ID"),
    status_filter: SubscriptionStatus | None = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(100, ge=1, le=1000, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> PaymentPlanList:
    """List payment plans with pagination, newest first."""
    service = SubscriptionService(db)
    plans, total = await service.list_payment_plans(page, page_size, status_filter, client_id)

    return PaymentPlanList(items=plans, total=total, page=page, page_size=page_size)


@router.get("/{plan_id}/payments", response_model=list[PaymentRecord])
async def list_plan_payments(
    plan_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> list[PaymentRecord]:
    """List installments collected for a payment plan, oldest first."""
    service = SubscriptionService(db)
    return await service.list_payments(plan_id)
