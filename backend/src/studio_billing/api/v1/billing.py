"""Billing dashboard endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.api.deps import get_db, require_admin
from studio_billing.schemas.subscription import BillingSummary
from studio_billing.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.get("/summary", response_model=BillingSummary)
async def get_billing_summary(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> BillingSummary:
    """
    Dashboard counters.

    Counts active subscriptions and payment plans, records in payment_failed
    or pending_payment, and monthly recurring revenue in cents.
    """
    service = SubscriptionService(db)
    return await service.billing_summary()
