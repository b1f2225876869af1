"""Pydantic models for the Stripe webhook events this service reconciles.

Events are validated at the dispatcher boundary into one model per event
type (a discriminated union on ``type``); handlers never touch raw dicts.
Only the fields the handlers read are declared, everything else is ignored.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def from_unix(timestamp: int | None) -> datetime | None:
    """Convert a gateway unix timestamp to a naive UTC datetime."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


class GatewayObject(BaseModel):
    """Base for gateway payload objects."""

    model_config = ConfigDict(extra="ignore")


class EventEnvelope(GatewayObject):
    """Outer shape shared by every event, parsed before type dispatch."""

    id: str
    type: str
    created: int | None = None
    data: dict[str, Any]


# Checkout sessions


class CheckoutSessionObject(GatewayObject):
    id: str
    mode: str | None = None  # payment, subscription, setup
    status: str | None = None
    payment_status: str | None = None
    customer: str | None = None
    subscription: str | None = None
    payment_intent: str | None = None
    payment_link: str | None = None
    amount_total: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def invoice_id(self) -> str | None:
        """Local invoice id tagged on the payment link, if any."""
        return self.metadata.get("invoiceId")

    @property
    def is_subscription(self) -> bool:
        return self.mode == "subscription"


class CheckoutSessionData(GatewayObject):
    object: CheckoutSessionObject


# Invoices


class SubscriptionDetails(GatewayObject):
    subscription: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class InvoiceParent(GatewayObject):
    type: str | None = None
    subscription_details: SubscriptionDetails | None = None


class StatusTransitions(GatewayObject):
    paid_at: int | None = None


class FinalizationError(GatewayObject):
    message: str | None = None


class GatewayInvoiceObject(GatewayObject):
    id: str
    customer: str | None = None
    amount_paid: int = 0
    amount_due: int = 0
    attempt_count: int = 0
    billing_reason: str | None = None
    # Older API versions carry the subscription at the top level,
    # newer ones under parent.subscription_details.
    subscription: str | None = None
    subscription_details: SubscriptionDetails | None = None
    parent: InvoiceParent | None = None
    status_transitions: StatusTransitions | None = None
    last_finalization_error: FinalizationError | None = None

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details.subscription
        return None

    @property
    def subscription_metadata(self) -> dict[str, str]:
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details.metadata
        if self.subscription_details:
            return self.subscription_details.metadata
        return {}

    @property
    def paid_at(self) -> datetime | None:
        if self.status_transitions:
            return from_unix(self.status_transitions.paid_at)
        return None

    @property
    def failure_reason(self) -> str:
        if self.last_finalization_error and self.last_finalization_error.message:
            return self.last_finalization_error.message
        return f"Payment attempt {self.attempt_count or 1} failed"


class GatewayInvoiceData(GatewayObject):
    object: GatewayInvoiceObject


# Subscriptions


class SubscriptionItem(GatewayObject):
    current_period_end: int | None = None


class SubscriptionItemList(GatewayObject):
    data: list[SubscriptionItem] = Field(default_factory=list)


class GatewaySubscriptionObject(GatewayObject):
    id: str
    status: str | None = None
    cancel_at_period_end: bool = False
    current_period_end: int | None = None
    canceled_at: int | None = None
    items: SubscriptionItemList | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def period_end(self) -> datetime | None:
        """Current period end, read from the item when the API version moved it there."""
        if self.current_period_end is not None:
            return from_unix(self.current_period_end)
        if self.items and self.items.data:
            return from_unix(self.items.data[0].current_period_end)
        return None


class GatewaySubscriptionData(GatewayObject):
    object: GatewaySubscriptionObject


# Events


class _Event(GatewayObject):
    id: str
    created: int | None = None


class CheckoutSessionCompletedEvent(_Event):
    type: Literal["checkout.session.completed"]
    data: CheckoutSessionData


class InvoicePaidEvent(_Event):
    type: Literal["invoice.paid"]
    data: GatewayInvoiceData


class InvoicePaymentFailedEvent(_Event):
    type: Literal["invoice.payment_failed"]
    data: GatewayInvoiceData


class SubscriptionDeletedEvent(_Event):
    type: Literal["customer.subscription.deleted"]
    data: GatewaySubscriptionData


class SubscriptionUpdatedEvent(_Event):
    type: Literal["customer.subscription.updated"]
    data: GatewaySubscriptionData


GatewayEvent = Annotated[
    Union[
        CheckoutSessionCompletedEvent,
        InvoicePaidEvent,
        InvoicePaymentFailedEvent,
        SubscriptionDeletedEvent,
        SubscriptionUpdatedEvent,
    ],
    Field(discriminator="type"),
]

gateway_event_adapter: TypeAdapter[GatewayEvent] = TypeAdapter(GatewayEvent)

HANDLED_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "invoice.paid",
        "invoice.payment_failed",
        "customer.subscription.deleted",
        "customer.subscription.updated",
    }
)
