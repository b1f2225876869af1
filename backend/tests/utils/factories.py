"""Test data factories using Faker for generating realistic test data."""
import time
from decimal import Decimal
from typing import Any
from uuid import uuid4

from faker import Faker

fake = Faker()


class ClientFactory:
    """Factory for creating client request data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create client test data.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Client data
        """
        data = {
            "name": fake.name(),
            "email": fake.unique.email(),
            "company": fake.company(),
            "phone": fake.phone_number(),
        }
        if overrides:
            data.update(overrides)
        return data


class SubscriptionFactory:
    """Factory for creating subscription request data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "client_id": uuid4(),
            "client_email": fake.unique.email(),
            "client_name": fake.name(),
            "plan_type": "retainer",
            "plan_tier": "standard",
        }
        if overrides:
            data.update(overrides)
        return data


class PaymentPlanFactory:
    """Factory for creating payment plan request data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "client_id": uuid4(),
            "client_email": fake.unique.email(),
            "client_name": fake.name(),
            "project_name": f"{fake.word().title()} Website Redesign",
            "total_amount": Decimal("900.00"),
            "number_of_payments": 3,
            "description": None,
        }
        if overrides:
            data.update(overrides)
        return data


class InvoiceFactory:
    """Factory for creating invoice request data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "client_id": uuid4(),
            "client_email": fake.unique.email(),
            "client_name": fake.name(),
            "line_items": [
                {"description": "Design work", "quantity": Decimal("10"), "unit_price": Decimal("85.00")},
                {"description": "Hosting setup", "quantity": Decimal("1"), "unit_price": Decimal("150.00")},
            ],
            "due_in_days": 14,
            "notes": fake.sentence(),
        }
        if overrides:
            data.update(overrides)
        return data


class GatewayEventFactory:
    """Factory for Stripe webhook event payloads."""

    @staticmethod
    def _event(event_type: str, obj: dict[str, Any], event_id: str | None = None) -> dict[str, Any]:
        return {
            "id": event_id or f"evt_{uuid4().hex[:24]}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "livemode": False,
            "data": {"object": obj},
        }

    @classmethod
    def checkout_completed(
        cls,
        session_id: str,
        mode: str = "subscription",
        subscription: str | None = None,
        customer: str | None = None,
        metadata: dict[str, str] | None = None,
        payment_link: str | None = None,
        payment_intent: str | None = None,
        amount_total: int | None = None,
        event_id: str | None = None,
    ) -> dict[str, Any]:
        return cls._event(
            "checkout.session.completed",
            {
                "id": session_id,
                "object": "checkout.session",
                "mode": mode,
                "status": "complete",
                "payment_status": "paid",
                "customer": customer,
                "subscription": subscription,
                "payment_link": payment_link,
                "payment_intent": payment_intent,
                "amount_total": amount_total,
                "metadata": metadata or {},
            },
            event_id,
        )

    @staticmethod
    def _invoice(
        invoice_id: str,
        subscription: str | None,
        amount: int,
        metadata: dict[str, str] | None,
        legacy: bool,
    ) -> dict[str, Any]:
        obj: dict[str, Any] = {
            "id": invoice_id,
            "object": "invoice",
            "customer": f"cus_{uuid4().hex[:14]}",
            "amount_paid": amount,
            "amount_due": amount,
            "attempt_count": 1,
            "billing_reason": "subscription_cycle",
            "status_transitions": {"paid_at": int(time.time())},
        }
        if legacy:
            obj["subscription"] = subscription
            obj["subscription_details"] = {"metadata": metadata or {}}
        else:
            obj["parent"] = {
                "type": "subscription_details",
                "subscription_details": {"subscription": subscription, "metadata": metadata or {}},
            }
        return obj

    @classmethod
    def invoice_paid(
        cls,
        subscription: str | None,
        amount: int,
        invoice_id: str | None = None,
        metadata: dict[str, str] | None = None,
        legacy: bool = False,
        event_id: str | None = None,
    ) -> dict[str, Any]:
        invoice = cls._invoice(invoice_id or f"in_{uuid4().hex[:24]}", subscription, amount, metadata, legacy)
        return cls._event("invoice.paid", invoice, event_id)

    @classmethod
    def invoice_payment_failed(
        cls,
        subscription: str,
        amount: int,
        invoice_id: str | None = None,
        event_id: str | None = None,
    ) -> dict[str, Any]:
        invoice = cls._invoice(invoice_id or f"in_{uuid4().hex[:24]}", subscription, 0, None, False)
        invoice["amount_due"] = amount
        invoice["status_transitions"] = {"paid_at": None}
        invoice["last_finalization_error"] = {"message": "Your card was declined."}
        return cls._event("invoice.payment_failed", invoice, event_id)

    @classmethod
    def subscription_deleted(cls, subscription: str, event_id: str | None = None) -> dict[str, Any]:
        return cls._event(
            "customer.subscription.deleted",
            {
                "id": subscription,
                "object": "subscription",
                "status": "canceled",
                "cancel_at_period_end": False,
                "canceled_at": int(time.time()),
                "metadata": {},
            },
            event_id,
        )

    @classmethod
    def subscription_updated(
        cls,
        subscription: str,
        status: str = "active",
        cancel_at_period_end: bool = False,
        current_period_end: int | None = None,
        event_id: str | None = None,
    ) -> dict[str, Any]:
        # Newer API versions report the period end on the subscription item only
        return cls._event(
            "customer.subscription.updated",
            {
                "id": subscription,
                "object": "subscription",
                "status": status,
                "cancel_at_period_end": cancel_at_period_end,
                "items": {"object": "list", "data": [{"current_period_end": current_period_end}]},
                "metadata": {},
            },
            event_id,
        )
