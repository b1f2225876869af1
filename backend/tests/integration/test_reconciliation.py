"""Integration tests for reconciling gateway events into subscriptions, plans and invoices."""
import json
from datetime import datetime
from uuid import UUID

import httpx
import pytest
from fastapi.encoders import jsonable_encoder
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.config import Settings
from studio_billing.integrations.notification_service import NotificationService
from studio_billing.models.invoice import Invoice, InvoiceStatus
from studio_billing.models.payment import PaymentRecord, PaymentRecordType
from studio_billing.models.payment_plan import PaymentPlan
from studio_billing.models.subscription import Subscription, SubscriptionStatus
from utils.factories import GatewayEventFactory, InvoiceFactory


async def activate(post_event, record, subscription_id: str) -> str:
    """Complete the record's checkout and return the webhook outcome."""
    response = await post_event(
        GatewayEventFactory.checkout_completed(
            record.stripe_checkout_session_id,
            subscription=subscription_id,
            customer=record.stripe_customer_id,
        )
    )
    assert response.status_code == 200
    return response.json()["outcome"]


async def pay(post_event, subscription_id: str, amount: int, **kwargs) -> str:
    response = await post_event(GatewayEventFactory.invoice_paid(subscription_id, amount, **kwargs))
    assert response.status_code == 200
    return response.json()["outcome"]


async def payments_for(db_session: AsyncSession, parent_id) -> list[PaymentRecord]:
    result = await db_session.execute(
        select(PaymentRecord).where(PaymentRecord.parent_id == parent_id).order_by(PaymentRecord.paid_at)
    )
    return list(result.scalars().all())


class TestPaymentPlanLifecycle:
    """A $900 plan over 3 payments, from checkout to completion."""

    @pytest.mark.asyncio
    async def test_plan_completes_after_last_installment(self, post_event, db_session, pending_plan, reload, stripe_adapter):
        """Each installment is counted once and the third completes the plan."""
        assert pending_plan.monthly_amount_cents == 30000

        assert await activate(post_event, pending_plan, "sub_plan_full") == "applied"
        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.status == SubscriptionStatus.ACTIVE
        assert plan.stripe_subscription_id == "sub_plan_full"

        for expected in (1, 2):
            assert await pay(post_event, "sub_plan_full", 30000) == "applied"
            plan = await reload(PaymentPlan, pending_plan.id)
            assert plan.payments_completed == expected
            assert plan.status == SubscriptionStatus.ACTIVE
        assert stripe_adapter.called("cancel_subscription") == []

        assert await pay(post_event, "sub_plan_full", 30000) == "applied"

        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.status == SubscriptionStatus.COMPLETED
        assert plan.payments_completed == 3
        assert plan.payments_remaining == 0
        assert plan.completed_at is not None
        assert plan.last_payment_amount_cents == 30000

        payments = await payments_for(db_session, pending_plan.id)
        assert len(payments) == 3
        assert {payment.type for payment in payments} == {PaymentRecordType.PAYMENT_PLAN}
        assert sum(payment.amount_cents for payment in payments) == 90000

        assert stripe_adapter.called("cancel_subscription") == [
            {"subscription_id": "sub_plan_full", "at_period_end": False}
        ]

    @pytest.mark.asyncio
    async def test_redelivered_invoice_is_counted_once(self, post_event, db_session, pending_plan, reload):
        """The same gateway invoice under three event ids counts one installment."""
        await activate(post_event, pending_plan, "sub_plan_redelivered")

        outcomes = [await pay(post_event, "sub_plan_redelivered", 30000, invoice_id="in_same") for _ in range(3)]

        assert outcomes == ["applied", "duplicate", "duplicate"]
        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.payments_completed == 1
        assert len(await payments_for(db_session, pending_plan.id)) == 1

    @pytest.mark.asyncio
    async def test_invoice_after_completion_is_skipped(self, post_event, db_session, pending_plan, reload):
        """A completed plan never counts more installments than it has."""
        await activate(post_event, pending_plan, "sub_plan_extra")
        for _ in range(3):
            await pay(post_event, "sub_plan_extra", 30000)

        assert await pay(post_event, "sub_plan_extra", 30000) == "skipped"

        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.payments_completed == 3
        assert plan.status == SubscriptionStatus.COMPLETED
        assert len(await payments_for(db_session, pending_plan.id)) == 3

    @pytest.mark.asyncio
    async def test_deletion_after_completion_keeps_completed(self, post_event, pending_plan, reload):
        """The gateway's own deletion event does not turn a completed plan into a cancelled one."""
        await activate(post_event, pending_plan, "sub_plan_deleted")
        for _ in range(3):
            await pay(post_event, "sub_plan_deleted", 30000)

        response = await post_event(GatewayEventFactory.subscription_deleted("sub_plan_deleted"))

        assert response.json()["outcome"] == "skipped"
        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.status == SubscriptionStatus.COMPLETED
        assert plan.cancelled_at is None

    @pytest.mark.asyncio
    async def test_completion_survives_gateway_cancel_failure(self, post_event, pending_plan, reload, stripe_adapter):
        """The plan stays completed when cancelling its gateway subscription fails."""
        await activate(post_event, pending_plan, "sub_plan_outage")
        await pay(post_event, "sub_plan_outage", 30000)
        await pay(post_event, "sub_plan_outage", 30000)
        stripe_adapter.fail_on.add("cancel_subscription")

        assert await pay(post_event, "sub_plan_outage", 30000) == "applied"

        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.status == SubscriptionStatus.COMPLETED
        assert len(stripe_adapter.called("cancel_subscription")) == 1

    @pytest.mark.asyncio
    async def test_invoice_before_checkout_event_is_counted_once(self, post_event, db_session, pending_plan, reload):
        """
        invoice.paid may arrive before checkout.session.completed.

        The plan is found through the record id in the subscription metadata
        and the late checkout event does not count the payment again.
        """
        metadata = {"recordId": str(pending_plan.id), "recordType": "payment_plan"}

        assert await pay(post_event, "sub_plan_race", 30000, metadata=metadata) == "applied"

        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.stripe_subscription_id == "sub_plan_race"
        assert plan.status == SubscriptionStatus.ACTIVE
        assert plan.payments_completed == 1

        assert await activate(post_event, pending_plan, "sub_plan_race") == "duplicate"

        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.status == SubscriptionStatus.ACTIVE
        assert plan.payments_completed == 1
        assert len(await payments_for(db_session, pending_plan.id)) == 1

    @pytest.mark.asyncio
    async def test_zero_amount_invoice_is_skipped(self, post_event, db_session, pending_plan, reload):
        """Trial and proration invoices for nothing do not count as installments."""
        await activate(post_event, pending_plan, "sub_plan_trial")

        assert await pay(post_event, "sub_plan_trial", 0) == "skipped"

        plan = await reload(PaymentPlan, pending_plan.id)
        assert plan.payments_completed == 0
        assert await payments_for(db_session, pending_plan.id) == []


class TestSubscriptionEvents:
    """Webhook handling for open-ended subscriptions."""

    @pytest.mark.asyncio
    async def test_checkout_activates_subscription(self, post_event, pending_subscription, reload):
        assert await activate(post_event, pending_subscription, "sub_retainer") == "applied"

        subscription = await reload(Subscription, pending_subscription.id)
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.stripe_subscription_id == "sub_retainer"

        # Redelivered under a new event id
        assert await activate(post_event, pending_subscription, "sub_retainer") == "duplicate"

    @pytest.mark.asyncio
    async def test_legacy_invoice_shape_records_payment(self, post_event, db_session, pending_subscription, reload):
        """Invoices carrying the subscription at the top level are reconciled too."""
        await activate(post_event, pending_subscription, "sub_legacy")

        assert await pay(post_event, "sub_legacy", 14900, invoice_id="in_legacy", legacy=True) == "applied"

        subscription = await reload(Subscription, pending_subscription.id)
        assert subscription.last_payment_amount_cents == 14900
        assert subscription.last_payment_at is not None

        payments = await payments_for(db_session, pending_subscription.id)
        assert len(payments) == 1
        assert payments[0].type == PaymentRecordType.SUBSCRIPTION
        assert payments[0].gateway_invoice_id == "in_legacy"
        assert payments[0].gateway_subscription_id == "sub_legacy"

    @pytest.mark.asyncio
    async def test_payment_failure_then_recovery(self, post_event, pending_subscription, reload):
        """A failed charge flags the subscription and the next paid invoice restores it."""
        await activate(post_event, pending_subscription, "sub_flaky")

        failed = await post_event(GatewayEventFactory.invoice_payment_failed("sub_flaky", 14900))

        assert failed.json()["outcome"] == "applied"
        subscription = await reload(Subscription, pending_subscription.id)
        assert subscription.status == SubscriptionStatus.PAYMENT_FAILED
        assert subscription.failure_reason == "Your card was declined."
        assert subscription.failed_at is not None

        assert await pay(post_event, "sub_flaky", 14900) == "applied"

        subscription = await reload(Subscription, pending_subscription.id)
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.failure_reason is None

    @pytest.mark.asyncio
    async def test_payment_failure_on_cancelled_subscription_is_skipped(self, post_event, pending_subscription, reload):
        await activate(post_event, pending_subscription, "sub_gone")
        await post_event(GatewayEventFactory.subscription_deleted("sub_gone"))

        response = await post_event(GatewayEventFactory.invoice_payment_failed("sub_gone", 14900))

        assert response.json()["outcome"] == "skipped"
        subscription = await reload(Subscription, pending_subscription.id)
        assert subscription.status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_deletion_cancels_active_subscription(self, post_event, pending_subscription, reload):
        await activate(post_event, pending_subscription, "sub_deleted")

        response = await post_event(GatewayEventFactory.subscription_deleted("sub_deleted"))

        assert response.json()["outcome"] == "applied"
        subscription = await reload(Subscription, pending_subscription.id)
        assert subscription.status == SubscriptionStatus.CANCELLED
        assert subscription.cancelled_at is not None
        assert subscription.gateway_status == "canceled"

    @pytest.mark.asyncio
    async def test_update_mirrors_gateway_fields(self, post_event, pending_subscription, reload):
        """Period end is read from the subscription item on newer API versions."""
        await activate(post_event, pending_subscription, "sub_synced")

        response = await post_event(
            GatewayEventFactory.subscription_updated(
                "sub_synced", status="past_due", cancel_at_period_end=True, current_period_end=1767225600
            )
        )

        assert response.json()["outcome"] == "applied"
        subscription = await reload(Subscription, pending_subscription.id)
        assert subscription.gateway_status == "past_due"
        assert subscription.cancel_at_period_end is True
        assert subscription.current_period_end == datetime(2026, 1, 1)
        assert subscription.status == SubscriptionStatus.ACTIVE


class TestInvoiceCheckout:
    """Payment-link checkouts marking one-time invoices paid."""

    @staticmethod
    async def sent_invoice(async_client: AsyncClient, admin_headers) -> dict:
        created = await async_client.post(
            "/v1/invoices", json=jsonable_encoder(InvoiceFactory.create()), headers=admin_headers
        )
        assert created.status_code == 201
        sent = await async_client.post(f"/v1/invoices/{created.json()['id']}/send", headers=admin_headers)
        assert sent.status_code == 200
        return sent.json()

    @pytest.mark.asyncio
    async def test_invoice_is_paid_once(self, async_client, admin_headers, post_event, reload):
        """paid_at is written by the first checkout event and never moves."""
        invoice = await self.sent_invoice(async_client, admin_headers)
        event_data = {
            "mode": "payment",
            "metadata": {"invoiceId": invoice["id"]},
            "payment_link": invoice["payment_link_id"],
            "payment_intent": "pi_invoice",
            "amount_total": 100000,
        }

        first = await post_event(GatewayEventFactory.checkout_completed("cs_invoice_1", **event_data))

        assert first.json()["outcome"] == "applied"
        paid = await reload(Invoice, UUID(invoice["id"]))
        assert paid.status == InvoiceStatus.PAID
        assert paid.stripe_payment_intent_id == "pi_invoice"
        paid_at = paid.paid_at
        assert paid_at is not None

        second = await post_event(GatewayEventFactory.checkout_completed("cs_invoice_1", **event_data))

        assert second.json()["outcome"] == "duplicate"
        paid = await reload(Invoice, UUID(invoice["id"]))
        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_at == paid_at

    @pytest.mark.asyncio
    async def test_invoice_found_by_payment_link(self, async_client, admin_headers, post_event, reload):
        """Checkouts without invoice metadata are matched on the payment link id."""
        invoice = await self.sent_invoice(async_client, admin_headers)

        response = await post_event(
            GatewayEventFactory.checkout_completed(
                "cs_invoice_link", mode="payment", payment_link=invoice["payment_link_id"]
            )
        )

        assert response.json()["outcome"] == "applied"
        assert (await reload(Invoice, UUID(invoice["id"]))).status == InvoiceStatus.PAID

    @pytest.mark.asyncio
    async def test_unknown_invoice_is_not_found(self, post_event):
        response = await post_event(
            GatewayEventFactory.checkout_completed("cs_stranger", mode="payment", payment_link="plink_stranger")
        )

        assert response.json()["outcome"] == "not_found"


class TestPaymentFailedNotice:
    """Email sent when a recurring charge fails."""

    @staticmethod
    def service(handler) -> NotificationService:
        config = Settings(
            email_api_key="re_test_key",
            email_api_url="https://email.test/emails",
            email_from="Billing <billing@studio.test>",
            admin_notification_email="admin@studio.test",
        )
        return NotificationService(config, transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_notice_goes_to_client_and_admin(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "email_123"})

        result = await self.service(handler).send_payment_failed_notice(
            client_email="client@example.com",
            client_name="Ada",
            description="Acme Website Redesign",
            amount=None,
            reason="Your card was declined.",
        )

        assert result["status"] == "sent"
        assert result["message_id"] == "email_123"
        assert len(requests) == 1
        assert requests[0].headers["Authorization"] == "Bearer re_test_key"
        body = json.loads(requests[0].content)
        assert body["to"] == ["client@example.com", "admin@studio.test"]
        assert body["subject"] == "Payment failed: Acme Website Redesign"
        assert "Your card was declined." in body["html"]

    @pytest.mark.asyncio
    async def test_provider_error_is_reported_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"message": "unavailable"})

        result = await self.service(handler).send_payment_failed_notice(
            client_email="client@example.com",
            client_name=None,
            description="Maintenance Retainer - Standard ($149/mo)",
            amount=None,
            reason="Insufficient funds",
        )

        assert result["status"] == "failed"

    @pytest.mark.asyncio
    async def test_failed_charge_webhook_sends_notice(self, post_event, pending_subscription, notification_service, monkeypatch):
        """The notice is sent after the failure is committed."""
        sent = []

        async def capture(**kwargs):
            sent.append(kwargs)
            return {"status": "logged"}

        monkeypatch.setattr(notification_service, "send_payment_failed_notice", capture)
        await activate(post_event, pending_subscription, "sub_notice")

        await post_event(GatewayEventFactory.invoice_payment_failed("sub_notice", 14900))

        assert len(sent) == 1
        assert sent[0]["client_email"] == pending_subscription.client_email
        assert sent[0]["description"] == "Maintenance Retainer - Standard ($149/mo)"
        assert str(sent[0]["amount"]) == "149.00"
        assert sent[0]["reason"] == "Your card was declined."
