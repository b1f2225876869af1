"""Pydantic schemas for Subscription and PaymentPlan models."""
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, ConfigDict

from studio_billing.models.subscription import SubscriptionStatus


class SubscriptionCreate(BaseModel):
    """Schema for creating a subscription to a catalog plan."""

    client_id: UUID = Field(..., description="Client being subscribed")
    client_email: EmailStr = Field(..., description="Client billing email")
    client_name: str = Field(..., min_length=1, description="Client name")
    plan_type: str = Field(..., min_length=1, description="Plan type (retainer, saas)")
    plan_tier: str = Field(..., min_length=1, description="Plan tier within the type")


class SubscriptionCreated(BaseModel):
    """Result of createSubscription."""

    subscription_id: UUID
    checkout_url: str


class PaymentPlanCreate(BaseModel):
    """Schema for creating a payment plan."""

    client_id: UUID = Field(..., description="Client paying the plan")
    client_email: EmailStr = Field(..., description="Client billing email")
    client_name: str = Field(..., min_length=1, description="Client name")
    project_name: str = Field(..., min_length=1, max_length=255, description="Project being paid off")
    total_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, description="Plan total in dollars")
    number_of_payments: int = Field(..., ge=1, le=60, description="Number of monthly installments")
    description: str | None = Field(default=None, description="Description shown at checkout")
    start_date: date | None = Field(default=None, description="First charge date (must be in the future)")


class PaymentPlanCreated(BaseModel):
    """Result of createPaymentPlan."""

    payment_plan_id: UUID
    checkout_url: str
    monthly_amount: Decimal


class CancelRequest(BaseModel):
    """Schema for cancelling a subscription or payment plan."""

    stripe_subscription_id: str | None = Field(
        default=None, description="Gateway subscription id, checked against the stored one"
    )
    cancel_immediately: bool = Field(default=True, description="Cancel now instead of at period end")


class CancelResult(BaseModel):
    """Result of cancelSubscription."""

    status: SubscriptionStatus
    cancel_at_period_end: bool


class RecurringRecord(BaseModel):
    """Fields shared by subscription and payment plan responses."""

    id: UUID
    client_id: UUID
    client_email: str
    client_name: str | None
    status: SubscriptionStatus
    price_id: str
    stripe_customer_id: str | None
    stripe_checkout_session_id: str
    stripe_subscription_id: str | None
    checkout_url: str | None
    gateway_status: str | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    last_payment_at: datetime | None
    last_payment_amount_cents: int | None
    failure_reason: str | None
    failed_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Subscription(RecurringRecord):
    """Schema for returning subscription data."""

    plan_type: str
    plan_tier: str
    plan_name: str
    amount_cents: int


class PaymentPlan(RecurringRecord):
    """Schema for returning payment plan data."""

    project_name: str
    description: str | None
    total_amount_cents: int
    number_of_payments: int
    payments_completed: int
    payments_remaining: int
    monthly_amount_cents: int
    billing_starts_at: datetime | None
    completed_at: datetime | None


class SubscriptionList(BaseModel):
    """Schema for paginated subscription list."""

    items: list[Subscription]
    total: int
    page: int
    page_size: int


class PaymentPlanList(BaseModel):
    """Schema for paginated payment plan list."""

    items: list[PaymentPlan]
    total: int
    page: int
    page_size: int


class BillingSummary(BaseModel):
    """Dashboard counters across subscriptions and payment plans."""

    active_subscriptions: int
    active_payment_plans: int
    payment_failed: int
    pending_payment: int
    monthly_recurring_revenue_cents: int
