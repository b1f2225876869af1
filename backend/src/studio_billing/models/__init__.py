"""SQLAlchemy ORM models for the billing service."""
# Import all models here to ensure they are registered with the metadata

from studio_billing.models.base import Base
from studio_billing.models.client import Client
from studio_billing.models.invoice import Invoice, InvoiceStatus
from studio_billing.models.subscription import Subscription, SubscriptionStatus, RecurringBillingRecord
from studio_billing.models.payment_plan import PaymentPlan
from studio_billing.models.payment import PaymentRecord, PaymentRecordType
from studio_billing.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "Base",
    "Client",
    "Invoice",
    "InvoiceStatus",
    "RecurringBillingRecord",
    "Subscription",
    "SubscriptionStatus",
    "PaymentPlan",
    "PaymentRecord",
    "PaymentRecordType",
    "ProcessedWebhookEvent",
]
