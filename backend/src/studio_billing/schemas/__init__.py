"""Pydantic schemas for API requests, responses and gateway events."""
from studio_billing.schemas.client import ClientCreate, Client, ClientList
from studio_billing.schemas.invoice import (
    InvoiceLineItemIn,
    InvoiceLineItem,
    InvoiceCreate,
    InvoiceUpdate,
    Invoice,
    InvoiceList,
)
from studio_billing.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionCreated,
    Subscription,
    SubscriptionList,
    PaymentPlanCreate,
    PaymentPlanCreated,
    PaymentPlan,
    PaymentPlanList,
    CancelRequest,
    CancelResult,
    BillingSummary,
)
from studio_billing.schemas.payment import PaymentRecord
from studio_billing.schemas.error import ErrorCode, ErrorDetail, ErrorResponse, REMEDIATION_HINTS

__all__ = [
    "ClientCreate",
    "Client",
    "ClientList",
    "InvoiceLineItemIn",
    "InvoiceLineItem",
    "InvoiceCreate",
    "InvoiceUpdate",
    "Invoice",
    "InvoiceList",
    "SubscriptionCreate",
    "SubscriptionCreated",
    "Subscription",
    "SubscriptionList",
    "PaymentPlanCreate",
    "PaymentPlanCreated",
    "PaymentPlan",
    "PaymentPlanList",
    "CancelRequest",
    "CancelResult",
    "BillingSummary",
    "PaymentRecord",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "REMEDIATION_HINTS",
]
