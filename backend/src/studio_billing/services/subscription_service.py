"""Subscription and payment plan service for business logic."""
from datetime import date, datetime, time, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.config import PLAN_TYPE_LABELS, Settings, settings
from studio_billing.exceptions import (
    BillingValidationError,
    InvalidStateError,
    RecordNotFoundError,
)
from studio_billing.metrics import subscriptions_cancelled_total, subscriptions_created_total
from studio_billing.models.payment import PaymentRecord
from studio_billing.models.payment_plan import PaymentPlan
from studio_billing.models.subscription import RecurringBillingRecord, Subscription, SubscriptionStatus
from studio_billing.schemas.subscription import (
    BillingSummary,
    CancelRequest,
    CancelResult,
    PaymentPlanCreate,
    SubscriptionCreate,
)
from studio_billing.services.client_service import ClientService
from studio_billing.services.transitions import apply_transition
from studio_billing.utils.money import split_installments, to_cents

logger = structlog.get_logger(__name__)

TERMINAL_STATUSES = (SubscriptionStatus.COMPLETED, SubscriptionStatus.CANCELLED)


def record_type_of(record: RecurringBillingRecord) -> str:
    """Metadata and metrics label for a recurring record."""
    return "payment_plan" if isinstance(record, PaymentPlan) else "subscription"


class SubscriptionService:
    """Service layer for subscription and payment plan operations."""

    def __init__(self, db: AsyncSession, gateway: StripeAdapter | None = None, config: Settings = settings):
        """Initialize subscription service with database session and gateway adapter."""
        self.db = db
        self.gateway = gateway
        self.config = config

    async def create_subscription(self, subscription_data: SubscriptionCreate) -> Subscription:
        """
        Create a pending subscription to a catalog plan and its checkout session.

        Gateway calls happen before anything is written, so a gateway failure
        leaves no local record behind.

        Args:
            subscription_data: Subscription creation data

        Returns:
            Created subscription in PENDING_PAYMENT status

        Raises:
            BillingValidationError: If the plan type/tier is not in the catalog
            PaymentGatewayError: If a gateway call fails
        """
        price = self.config.catalog_price(subscription_data.plan_type, subscription_data.plan_tier)
        if not price:
            raise BillingValidationError(
                f"Unknown plan {subscription_data.plan_type}/{subscription_data.plan_tier}",
                details={"plan_type": subscription_data.plan_type, "plan_tier": subscription_data.plan_tier},
            )

        record_id = uuid4()
        metadata = {
            "recordId": str(record_id),
            "recordType": "subscription",
            "clientId": str(subscription_data.client_id),
            "planType": subscription_data.plan_type,
            "planTier": subscription_data.plan_tier,
        }

        customer_id = await self.gateway.find_or_create_customer(
            email=subscription_data.client_email,
            name=subscription_data.client_name,
            metadata={"clientId": str(subscription_data.client_id)},
        )
        session = await self.gateway.create_subscription_checkout(
            customer_id=customer_id,
            price_id=price.price_id,
            metadata=metadata,
        )

        subscription = Subscription(
            id=record_id,
            client_id=subscription_data.client_id,
            client_email=subscription_data.client_email,
            client_name=subscription_data.client_name,
            status=SubscriptionStatus.PENDING_PAYMENT,
            price_id=price.price_id,
            stripe_customer_id=customer_id,
            stripe_checkout_session_id=session["id"],
            checkout_url=session["url"],
            cancel_at_period_end=False,
            plan_type=subscription_data.plan_type,
            plan_tier=subscription_data.plan_tier,
            plan_name=f"{PLAN_TYPE_LABELS.get(subscription_data.plan_type, subscription_data.plan_type)} - {price.name}",
            amount_cents=to_cents(price.amount),
        )
        self.db.add(subscription)
        await self.db.flush()
        await ClientService(self.db).remember_customer_id(subscription_data.client_id, customer_id)

        subscriptions_created_total.labels(record_type="subscription").inc()
        logger.info(
            "subscription_created",
            subscription_id=str(record_id),
            plan_type=subscription_data.plan_type,
            plan_tier=subscription_data.plan_tier,
            checkout_session_id=session["id"],
        )
        return subscription

    async def create_payment_plan(
        self, plan_data: PaymentPlanCreate, today: date | None = None
    ) -> tuple[PaymentPlan, Decimal]:
        """
        Create a pending payment plan, its monthly price and its checkout session.

        The monthly amount is the total divided by the number of payments,
        rounded half up to cents; the collected sum may differ from the total
        by the rounding remainder. With a start date the first charge is
        deferred to midnight UTC of that day.

        Args:
            plan_data: Payment plan creation data
            today: Reference date for start date validation (defaults to UTC today)

        Returns:
            Tuple of (created payment plan, monthly amount in dollars)

        Raises:
            BillingValidationError: If the start date is not in the future
            PaymentGatewayError: If a gateway call fails
        """
        today = today or datetime.now(timezone.utc).date()
        if plan_data.start_date is not None and plan_data.start_date <= today:
            raise BillingValidationError(
                "Start date must be in the future",
                details={"start_date": plan_data.start_date.isoformat()},
            )

        monthly_amount = split_installments(plan_data.total_amount, plan_data.number_of_payments)
        monthly_cents = to_cents(monthly_amount)

        record_id = uuid4()
        metadata = {
            "recordId": str(record_id),
            "recordType": "payment_plan",
            "clientId": str(plan_data.client_id),
            "numberOfPayments": str(plan_data.number_of_payments),
        }

        billing_starts_at = None
        trial_end = None
        if plan_data.start_date is not None:
            start = datetime.combine(plan_data.start_date, time.min, tzinfo=timezone.utc)
            trial_end = int(start.timestamp())
            billing_starts_at = start.replace(tzinfo=None)

        customer_id = await self.gateway.find_or_create_customer(
            email=plan_data.client_email,
            name=plan_data.client_name,
            metadata={"clientId": str(plan_data.client_id)},
        )
        price_id = await self.gateway.create_recurring_price(
            product_name=f"{plan_data.project_name} - Payment Plan",
            unit_amount=monthly_cents,
            description=plan_data.description
            or f"{plan_data.number_of_payments} monthly payments of ${monthly_amount:,.2f}",
            metadata=metadata,
        )
        session = await self.gateway.create_subscription_checkout(
            customer_id=customer_id,
            price_id=price_id,
            metadata=metadata,
            trial_end=trial_end,
        )

        plan = PaymentPlan(
            id=record_id,
            client_id=plan_data.client_id,
            client_email=plan_data.client_email,
            client_name=plan_data.client_name,
            status=SubscriptionStatus.PENDING_PAYMENT,
            price_id=price_id,
            stripe_customer_id=customer_id,
            stripe_checkout_session_id=session["id"],
            checkout_url=session["url"],
            cancel_at_period_end=False,
            project_name=plan_data.project_name,
            description=plan_data.description,
            total_amount_cents=to_cents(plan_data.total_amount),
            number_of_payments=plan_data.number_of_payments,
            payments_completed=0,
            monthly_amount_cents=monthly_cents,
            billing_starts_at=billing_starts_at,
        )
        self.db.add(plan)
        await self.db.flush()
        await ClientService(self.db).remember_customer_id(plan_data.client_id, customer_id)

        subscriptions_created_total.labels(record_type="payment_plan").inc()
        logger.info(
            "payment_plan_created",
            payment_plan_id=str(record_id),
            number_of_payments=plan_data.number_of_payments,
            monthly_amount_cents=monthly_cents,
            checkout_session_id=session["id"],
        )
        return plan, monthly_amount

    async def cancel(self, record_id: UUID, cancel_request: CancelRequest) -> CancelResult:
        """
        Cancel a subscription or payment plan.

        The record is looked up in both tables. A record still waiting for
        its first checkout has its checkout session expired instead of a
        gateway subscription cancelled.

        Args:
            record_id: Subscription or payment plan UUID
            cancel_request: Cancellation options

        Returns:
            New status and whether cancellation is deferred to period end

        Raises:
            RecordNotFoundError: If neither a subscription nor a plan has this id
            InvalidStateError: If the record is already completed or cancelled
            BillingValidationError: If the given gateway id does not match the record
            PaymentGatewayError: If the gateway call fails (nothing is changed locally)
        """
        record = await self.find_record(record_id)
        if not record:
            raise RecordNotFoundError(f"Subscription {record_id} not found", details={"record_id": str(record_id)})

        if record.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel a {record.status.value} {record_type_of(record).replace('_', ' ')}",
                details={"record_id": str(record_id), "status": record.status.value},
            )

        requested_id = cancel_request.stripe_subscription_id
        if requested_id and record.stripe_subscription_id and requested_id != record.stripe_subscription_id:
            raise BillingValidationError(
                "Stripe subscription id does not match this record",
                details={"record_id": str(record_id)},
            )
        gateway_subscription_id = record.stripe_subscription_id or requested_id

        now = datetime.utcnow()
        if gateway_subscription_id:
            await self.gateway.cancel_subscription(
                gateway_subscription_id, at_period_end=not cancel_request.cancel_immediately
            )
        elif record.status == SubscriptionStatus.PENDING_PAYMENT:
            await self.gateway.expire_checkout_session(record.stripe_checkout_session_id)
        else:
            raise InvalidStateError(
                "Record has no Stripe subscription to cancel",
                details={"record_id": str(record_id), "status": record.status.value},
            )

        if cancel_request.cancel_immediately or not gateway_subscription_id:
            values = {"status": SubscriptionStatus.CANCELLED, "cancelled_at": now, "cancel_at_period_end": False}
        else:
            values = {"status": SubscriptionStatus.CANCELLING, "cancel_at_period_end": True}
        if gateway_subscription_id and not record.stripe_subscription_id:
            values["stripe_subscription_id"] = gateway_subscription_id

        model = type(record)
        changed = await apply_transition(self.db, model, record_id, model.status.notin_(TERMINAL_STATUSES), **values)
        if not changed:
            # A webhook moved the record to a terminal status in the meantime
            await self.db.refresh(record)
            return CancelResult(status=record.status, cancel_at_period_end=record.cancel_at_period_end)

        subscriptions_cancelled_total.labels(record_type=record_type_of(record), source="admin").inc()
        logger.info(
            "subscription_cancel_requested",
            record_id=str(record_id),
            record_type=record_type_of(record),
            status=values["status"].value,
            stripe_subscription_id=gateway_subscription_id,
        )
        return CancelResult(status=values["status"], cancel_at_period_end=values["cancel_at_period_end"])

    async def find_record(self, record_id: UUID) -> Subscription | PaymentPlan | None:
        """Find a subscription or payment plan by id."""
        subscription = await self.db.get(Subscription, record_id)
        if subscription:
            return subscription
        return await self.db.get(PaymentPlan, record_id)

    async def get_subscription(self, subscription_id: UUID) -> Subscription:
        """
        Get subscription by ID.

        Raises:
            RecordNotFoundError: If the subscription does not exist
        """
        subscription = await self.db.get(Subscription, subscription_id, populate_existing=True)
        if not subscription:
            raise RecordNotFoundError(
                f"Subscription {subscription_id} not found", details={"subscription_id": str(subscription_id)}
            )
        return subscription

    async def get_payment_plan(self, plan_id: UUID) -> PaymentPlan:
        """
        Get payment plan by ID.

        Raises:
            RecordNotFoundError: If the payment plan does not exist
        """
        plan = await self.db.get(PaymentPlan, plan_id, populate_existing=True)
        if not plan:
            raise RecordNotFoundError(f"Payment plan {plan_id} not found", details={"payment_plan_id": str(plan_id)})
        return plan

    async def list_subscriptions(
        self,
        page: int = 1,
        page_size: int = 100,
        status: SubscriptionStatus | None = None,
        client_id: UUID | None = None,
    ) -> tuple[list[Subscription], int]:
        """List subscriptions, newest first, with optional status and client filters."""
        return await self._list(Subscription, page, page_size, status, client_id)

    async def list_payment_plans(
        self,
        page: int = 1,
        page_size: int = 100,
        status: SubscriptionStatus | None = None,
        client_id: UUID | None = None,
    ) -> tuple[list[PaymentPlan], int]:
        """List payment plans, newest first, with optional status and client filters."""
        return await self._list(PaymentPlan, page, page_size, status, client_id)

    async def _list(self, model, page, page_size, status, client_id):
        query = select(model)
        if status:
            query = query.where(model.status == status)
        if client_id:
            query = query.where(model.client_id == client_id)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar_one()

        offset = (page - 1) * page_size
        result = await self.db.execute(query.order_by(model.created_at.desc()).offset(offset).limit(page_size))
        return list(result.scalars().all()), total

    async def list_payments(self, parent_id: UUID) -> list[PaymentRecord]:
        """
        List reconciled payments of a subscription or payment plan, oldest first.

        Raises:
            RecordNotFoundError: If neither a subscription nor a plan has this id
        """
        if not await self.find_record(parent_id):
            raise RecordNotFoundError(f"Subscription {parent_id} not found", details={"record_id": str(parent_id)})

        result = await self.db.execute(
            select(PaymentRecord).where(PaymentRecord.parent_id == parent_id).order_by(PaymentRecord.paid_at)
        )
        return list(result.scalars().all())

    async def billing_summary(self) -> BillingSummary:
        """
        Compute dashboard counters across subscriptions and payment plans.

        Monthly recurring revenue counts active subscriptions and active
        payment plans at their monthly amount.
        """
        counts: dict[tuple[str, SubscriptionStatus], int] = {}
        for label, model in (("subscription", Subscription), ("payment_plan", PaymentPlan)):
            result = await self.db.execute(select(model.status, func.count()).group_by(model.status))
            for status, count in result.all():
                counts[(label, status)] = count

        sub_mrr = await self.db.execute(
            select(func.coalesce(func.sum(Subscription.amount_cents), 0)).where(
                Subscription.status == SubscriptionStatus.ACTIVE
            )
        )
        plan_mrr = await self.db.execute(
            select(func.coalesce(func.sum(PaymentPlan.monthly_amount_cents), 0)).where(
                PaymentPlan.status == SubscriptionStatus.ACTIVE
            )
        )

        def total(status: SubscriptionStatus) -> int:
            return counts.get(("subscription", status), 0) + counts.get(("payment_plan", status), 0)

        return BillingSummary(
            active_subscriptions=counts.get(("subscription", SubscriptionStatus.ACTIVE), 0),
            active_payment_plans=counts.get(("payment_plan", SubscriptionStatus.ACTIVE), 0),
            payment_failed=total(SubscriptionStatus.PAYMENT_FAILED),
            pending_payment=total(SubscriptionStatus.PENDING_PAYMENT),
            monthly_recurring_revenue_cents=int(sub_mrr.scalar_one()) + int(plan_mrr.scalar_one()),
        )
