"""Stripe webhook endpoint."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.api.deps import get_db, get_notification_service, get_stripe_adapter
from studio_billing.integrations.notification_service import NotificationService
from studio_billing.services.webhook_service import WebhookService

router = APIRouter(tags=["Webhooks"])


@router.post("/webhook")
async def handle_stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    notification_service: NotificationService = Depends(get_notification_service),
) -> dict:
    """
    Handle incoming Stripe webhook events.

    Verifies the Stripe-Signature header and applies:
    - checkout.session.completed: Activate a subscription/plan or mark an invoice paid
    - invoice.paid: Record a recurring payment, completing payment plans
    - invoice.payment_failed: Flag the subscription/plan and notify the client
    - customer.subscription.deleted: Mark the subscription/plan cancelled
    - customer.subscription.updated: Mirror period end and cancel-at-period-end

    Returns 400 only for an invalid signature or body; every authenticated
    delivery is acknowledged with 200 and its outcome.
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    service = WebhookService(db, stripe_adapter, notification_service)
    return await service.process(body, signature)
