"""Reconciliation of gateway events into local billing state.

Each handler is idempotent: status changes are conditional updates, and a
gateway invoice is counted at most once thanks to the unique
``payments.gateway_invoice_id``. Handlers never commit; the webhook
dispatcher commits once per event and then runs the post-commit actions
(gateway cancellations, emails) the handlers queued.
"""
import enum
from datetime import datetime
from typing import Awaitable, Callable
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.exceptions import PaymentGatewayError
from studio_billing.integrations.notification_service import NotificationService
from studio_billing.metrics import (
    payment_amount_total,
    payment_plans_completed_total,
    payments_reconciled_total,
    subscriptions_cancelled_total,
)
from studio_billing.models.payment import PaymentRecord, PaymentRecordType
from studio_billing.models.payment_plan import PaymentPlan
from studio_billing.models.subscription import Subscription, SubscriptionStatus
from studio_billing.schemas.gateway_event import (
    CheckoutSessionCompletedEvent,
    CheckoutSessionObject,
    GatewayInvoiceObject,
    GatewaySubscriptionObject,
    InvoicePaidEvent,
    InvoicePaymentFailedEvent,
    SubscriptionDeletedEvent,
    SubscriptionUpdatedEvent,
    from_unix,
)
from studio_billing.services.invoice_service import InvoiceService
from studio_billing.services.subscription_service import TERMINAL_STATUSES, record_type_of
from studio_billing.services.transitions import apply_transition
from studio_billing.utils.money import from_cents

logger = structlog.get_logger(__name__)

RecurringRecord = Subscription | PaymentPlan

RECOVERABLE_STATUSES = (SubscriptionStatus.PENDING_PAYMENT, SubscriptionStatus.PAYMENT_FAILED)


class Outcome(str, enum.Enum):
    """Result of handling one webhook event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    INVALID = "invalid"
    FAILED = "failed"


class ReconciliationService:
    """Applies validated gateway events to subscriptions, payment plans and invoices."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripeAdapter,
        notifications: NotificationService | None = None,
    ):
        """
        Initialize reconciliation service.

        Args:
            db: Database session (not committed here)
            gateway: Gateway adapter used for post-completion cancellation
            notifications: Email notifications for failed payments
        """
        self.db = db
        self.gateway = gateway
        self.notifications = notifications
        self._post_commit: list[Callable[[], Awaitable[None]]] = []

    async def handle(self, event) -> Outcome:
        """Route a validated event to its handler."""
        if isinstance(event, CheckoutSessionCompletedEvent):
            return await self.handle_checkout_completed(event.data.object)
        if isinstance(event, InvoicePaidEvent):
            return await self.handle_invoice_paid(event.data.object)
        if isinstance(event, InvoicePaymentFailedEvent):
            return await self.handle_payment_failed(event.data.object)
        if isinstance(event, SubscriptionDeletedEvent):
            return await self.handle_subscription_deleted(event.data.object)
        if isinstance(event, SubscriptionUpdatedEvent):
            return await self.handle_subscription_updated(event.data.object)
        return Outcome.IGNORED

    async def run_post_commit(self) -> None:
        """Run side effects queued by handlers, once the state change is committed."""
        actions, self._post_commit = self._post_commit, []
        for action in actions:
            await action()

    async def handle_checkout_completed(self, session: CheckoutSessionObject) -> Outcome:
        """
        Handle checkout.session.completed.

        A payment-link checkout tagged with an invoice marks the invoice paid.
        A subscription-mode checkout activates the pending record created
        with that session and stores the gateway subscription id.
        """
        outcomes = []
        if session.invoice_id or (session.payment_link and not session.is_subscription):
            outcomes.append(Outcome(await InvoiceService(self.db, self.gateway).mark_paid_from_checkout(session)))
        if session.is_subscription:
            outcomes.append(await self._activate_from_checkout(session))

        if not outcomes:
            logger.info("checkout_session_skipped", session_id=session.id, mode=session.mode)
            return Outcome.SKIPPED
        if Outcome.APPLIED in outcomes:
            return Outcome.APPLIED
        return outcomes[0]

    async def _activate_from_checkout(self, session: CheckoutSessionObject) -> Outcome:
        record = await self._find_by_checkout_session(session.id)
        if not record:
            logger.warning("subscription_not_found_for_checkout", session_id=session.id)
            return Outcome.NOT_FOUND

        model = type(record)
        ids = {}
        if session.subscription and not record.stripe_subscription_id:
            ids["stripe_subscription_id"] = session.subscription
        if session.customer and not record.stripe_customer_id:
            ids["stripe_customer_id"] = session.customer

        activated = await apply_transition(
            self.db,
            model,
            record.id,
            model.status == SubscriptionStatus.PENDING_PAYMENT,
            status=SubscriptionStatus.ACTIVE,
            **ids,
        )
        if not activated and ids:
            await apply_transition(self.db, model, record.id, **ids)

        if not activated and not ids:
            logger.info("checkout_already_reconciled", record_id=str(record.id), status=record.status.value)
            return Outcome.DUPLICATE

        logger.info(
            "subscription_activated" if activated else "subscription_ids_recorded",
            record_id=str(record.id),
            record_type=record_type_of(record),
            stripe_subscription_id=session.subscription,
        )
        return Outcome.APPLIED

    async def handle_invoice_paid(self, invoice: GatewayInvoiceObject) -> Outcome:
        """
        Handle invoice.paid for subscription invoices.

        Appends one payment record per gateway invoice. For a payment plan the
        completed-installment counter is incremented with a guarded update
        and the plan completes when it reaches the number of payments; the
        gateway subscription is then cancelled after commit.
        """
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.info("invoice_without_subscription_skipped", invoice_id=invoice.id)
            return Outcome.SKIPPED

        record = await self._find_by_gateway_subscription(subscription_id, invoice.subscription_metadata)
        if not record:
            logger.warning("subscription_not_found_for_invoice", invoice_id=invoice.id, subscription_id=subscription_id)
            return Outcome.NOT_FOUND

        if invoice.amount_paid <= 0:
            logger.info("zero_amount_invoice_skipped", invoice_id=invoice.id, record_id=str(record.id))
            return Outcome.SKIPPED

        is_plan = isinstance(record, PaymentPlan)
        if is_plan and record.status == SubscriptionStatus.COMPLETED:
            logger.warning("payment_plan_already_completed", invoice_id=invoice.id, payment_plan_id=str(record.id))
            return Outcome.SKIPPED

        if await self._payment_exists(invoice.id):
            logger.info("invoice_already_reconciled", invoice_id=invoice.id, record_id=str(record.id))
            return Outcome.DUPLICATE

        paid_at = invoice.paid_at or datetime.utcnow()
        self.db.add(
            PaymentRecord(
                type=PaymentRecordType.PAYMENT_PLAN if is_plan else PaymentRecordType.SUBSCRIPTION,
                parent_id=record.id,
                client_id=record.client_id,
                amount_cents=invoice.amount_paid,
                gateway_invoice_id=invoice.id,
                gateway_subscription_id=subscription_id,
                paid_at=paid_at,
            )
        )
        try:
            await self.db.flush()
        except IntegrityError:
            # Same invoice reconciled by a concurrent delivery
            await self.db.rollback()
            logger.info("invoice_reconciled_concurrently", invoice_id=invoice.id)
            return Outcome.DUPLICATE

        if is_plan:
            outcome = await self._record_installment(record, invoice, paid_at)
        else:
            outcome = await self._record_subscription_payment(record, invoice, paid_at)

        if outcome == Outcome.APPLIED:
            label = record_type_of(record)
            payments_reconciled_total.labels(record_type=label).inc()
            payment_amount_total.labels(record_type=label).inc(invoice.amount_paid)
        return outcome

    async def _record_subscription_payment(
        self, subscription: Subscription, invoice: GatewayInvoiceObject, paid_at: datetime
    ) -> Outcome:
        await apply_transition(
            self.db,
            Subscription,
            subscription.id,
            last_payment_at=paid_at,
            last_payment_amount_cents=invoice.amount_paid,
        )
        recovered = await self._recover(Subscription, subscription.id)
        logger.info(
            "subscription_payment_recorded",
            subscription_id=str(subscription.id),
            invoice_id=invoice.id,
            amount_cents=invoice.amount_paid,
            reactivated=recovered,
        )
        return Outcome.APPLIED

    async def _record_installment(self, plan: PaymentPlan, invoice: GatewayInvoiceObject, paid_at: datetime) -> Outcome:
        plan_id = plan.id
        counted = await apply_transition(
            self.db,
            PaymentPlan,
            plan_id,
            PaymentPlan.status != SubscriptionStatus.COMPLETED,
            PaymentPlan.payments_completed < PaymentPlan.number_of_payments,
            payments_completed=PaymentPlan.payments_completed + 1,
            last_payment_at=paid_at,
            last_payment_amount_cents=invoice.amount_paid,
        )
        if not counted:
            # Completed by a concurrent delivery; drop the payment record
            await self.db.rollback()
            logger.warning("payment_plan_already_completed", invoice_id=invoice.id, payment_plan_id=str(plan_id))
            return Outcome.SKIPPED

        result = await self.db.execute(
            select(PaymentPlan.payments_completed, PaymentPlan.number_of_payments).where(PaymentPlan.id == plan_id)
        )
        payments_completed, number_of_payments = result.one()

        if payments_completed >= number_of_payments:
            completed = await apply_transition(
                self.db,
                PaymentPlan,
                plan_id,
                PaymentPlan.status != SubscriptionStatus.COMPLETED,
                status=SubscriptionStatus.COMPLETED,
                completed_at=paid_at,
                cancel_at_period_end=False,
                failure_reason=None,
            )
            if completed:
                payment_plans_completed_total.inc()
                logger.info(
                    "payment_plan_completed",
                    payment_plan_id=str(plan_id),
                    payments_completed=payments_completed,
                )
                self._post_commit.append(lambda: self._cancel_completed_plan(plan_id, invoice.subscription_id))
        else:
            await self._recover(PaymentPlan, plan_id)

        logger.info(
            "payment_plan_installment_recorded",
            payment_plan_id=str(plan_id),
            invoice_id=invoice.id,
            payments_completed=payments_completed,
            number_of_payments=number_of_payments,
        )
        return Outcome.APPLIED

    async def _recover(self, model: type[RecurringRecord], record_id: UUID) -> bool:
        """
        Move a pending or failed record back into service after a payment.

        A record whose deferred cancellation is still pending returns to
        CANCELLING rather than ACTIVE.
        """
        deferred = await apply_transition(
            self.db,
            model,
            record_id,
            model.status.in_(RECOVERABLE_STATUSES),
            model.cancel_at_period_end.is_(True),
            status=SubscriptionStatus.CANCELLING,
            failure_reason=None,
        )
        if deferred:
            return True
        return await apply_transition(
            self.db,
            model,
            record_id,
            model.status.in_(RECOVERABLE_STATUSES),
            status=SubscriptionStatus.ACTIVE,
            failure_reason=None,
        )

    async def _cancel_completed_plan(self, plan_id: UUID, subscription_id: str) -> None:
        try:
            await self.gateway.cancel_subscription(subscription_id)
        except PaymentGatewayError as e:
            logger.error(
                "completed_plan_cancel_failed",
                payment_plan_id=str(plan_id),
                subscription_id=subscription_id,
                error=e.message,
            )

    async def handle_payment_failed(self, invoice: GatewayInvoiceObject) -> Outcome:
        """
        Handle invoice.payment_failed.

        Moves the record to PAYMENT_FAILED unless it is completed or
        cancelled, and emails the client and admin after commit.
        """
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.info("invoice_without_subscription_skipped", invoice_id=invoice.id)
            return Outcome.SKIPPED

        record = await self._find_by_gateway_subscription(subscription_id, invoice.subscription_metadata)
        if not record:
            logger.warning("subscription_not_found_for_invoice", invoice_id=invoice.id, subscription_id=subscription_id)
            return Outcome.NOT_FOUND

        model = type(record)
        reason = invoice.failure_reason
        failed = await apply_transition(
            self.db,
            model,
            record.id,
            model.status.notin_(TERMINAL_STATUSES),
            status=SubscriptionStatus.PAYMENT_FAILED,
            failure_reason=reason,
            failed_at=datetime.utcnow(),
        )
        if not failed:
            logger.info("payment_failure_ignored", record_id=str(record.id), status=record.status.value)
            return Outcome.SKIPPED

        logger.warning(
            "subscription_payment_failed",
            record_id=str(record.id),
            record_type=record_type_of(record),
            invoice_id=invoice.id,
            attempt_count=invoice.attempt_count,
            reason=reason,
        )
        if self.notifications:
            description = record.project_name if isinstance(record, PaymentPlan) else record.plan_name
            notifications = self.notifications
            self._post_commit.append(
                lambda: notifications.send_payment_failed_notice(
                    client_email=record.client_email,
                    client_name=record.client_name,
                    description=description,
                    amount=from_cents(invoice.amount_due or None),
                    reason=reason,
                )
            )
        return Outcome.APPLIED

    async def handle_subscription_deleted(self, subscription: GatewaySubscriptionObject) -> Outcome:
        """
        Handle customer.subscription.deleted.

        Marks the record CANCELLED unless it is already completed or cancelled;
        a completed payment plan keeps its COMPLETED status.
        """
        record = await self._find_by_gateway_subscription(subscription.id, subscription.metadata)
        if not record:
            logger.warning("subscription_not_found_for_deletion", subscription_id=subscription.id)
            return Outcome.NOT_FOUND

        model = type(record)
        cancelled = await apply_transition(
            self.db,
            model,
            record.id,
            model.status.notin_(TERMINAL_STATUSES),
            status=SubscriptionStatus.CANCELLED,
            cancelled_at=from_unix(subscription.canceled_at) or datetime.utcnow(),
            cancel_at_period_end=False,
            gateway_status=subscription.status,
        )
        if not cancelled:
            logger.info("subscription_deletion_ignored", record_id=str(record.id), status=record.status.value)
            return Outcome.SKIPPED

        subscriptions_cancelled_total.labels(record_type=record_type_of(record), source="webhook").inc()
        logger.info("subscription_cancelled", record_id=str(record.id), record_type=record_type_of(record))
        return Outcome.APPLIED

    async def handle_subscription_updated(self, subscription: GatewaySubscriptionObject) -> Outcome:
        """Handle customer.subscription.updated by mirroring gateway-side fields."""
        record = await self._find_by_gateway_subscription(subscription.id, subscription.metadata)
        if not record:
            logger.warning("subscription_not_found_for_update", subscription_id=subscription.id)
            return Outcome.NOT_FOUND

        values = {
            "gateway_status": subscription.status,
            "cancel_at_period_end": subscription.cancel_at_period_end,
        }
        period_end = subscription.period_end
        if period_end is not None:
            values["current_period_end"] = period_end

        await apply_transition(self.db, type(record), record.id, **values)
        logger.info(
            "subscription_synced",
            record_id=str(record.id),
            gateway_status=subscription.status,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )
        return Outcome.APPLIED

    async def _payment_exists(self, gateway_invoice_id: str) -> bool:
        result = await self.db.execute(
            select(PaymentRecord.id).where(PaymentRecord.gateway_invoice_id == gateway_invoice_id)
        )
        return result.first() is not None

    async def _find_by_checkout_session(self, session_id: str) -> RecurringRecord | None:
        for model in (Subscription, PaymentPlan):
            result = await self.db.execute(select(model).where(model.stripe_checkout_session_id == session_id))
            record = result.scalar_one_or_none()
            if record:
                return record
        return None

    async def _find_by_gateway_subscription(
        self, subscription_id: str, metadata: dict[str, str]
    ) -> RecurringRecord | None:
        """
        Find the record for a gateway subscription.

        Falls back to the record id carried in the subscription metadata when
        the event arrives before checkout.session.completed has stored the
        gateway subscription id; the id is stored on the record in that case.
        """
        for model in (Subscription, PaymentPlan):
            result = await self.db.execute(select(model).where(model.stripe_subscription_id == subscription_id))
            record = result.scalar_one_or_none()
            if record:
                return record

        model = {"subscription": Subscription, "payment_plan": PaymentPlan}.get(metadata.get("recordType", ""))
        if model is None or not metadata.get("recordId"):
            return None
        try:
            record_id = UUID(metadata["recordId"])
        except ValueError:
            return None

        record = await self.db.get(model, record_id)
        if not record:
            return None
        if record.stripe_subscription_id and record.stripe_subscription_id != subscription_id:
            logger.warning(
                "subscription_metadata_mismatch",
                record_id=str(record_id),
                stored_subscription_id=record.stripe_subscription_id,
                event_subscription_id=subscription_id,
            )
            return None

        await apply_transition(
            self.db, model, record_id, model.stripe_subscription_id.is_(None), stripe_subscription_id=subscription_id
        )
        logger.info("subscription_id_recorded_from_metadata", record_id=str(record_id), subscription_id=subscription_id)
        return record
