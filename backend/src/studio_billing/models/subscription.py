"""Subscription model for fixed-price recurring billing."""
from sqlalchemy import Column, Integer, Boolean, Enum as SQLEnum, DateTime, String, Text, Uuid
import enum

from studio_billing.models.base import Base


class SubscriptionStatus(enum.Enum):
    """
    Lifecycle status shared by subscriptions and payment plans.

    COMPLETED is reached only by payment plans and is terminal.
    """

    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    PAYMENT_FAILED = "payment_failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RecurringBillingRecord(Base):
    """
    Columns common to subscriptions and payment plans.

    Records are created in PENDING_PAYMENT keyed by the checkout session id;
    webhooks later find them by checkout session id or gateway subscription id.
    """

    __abstract__ = True

    client_id = Column(Uuid, nullable=False, index=True)
    client_email = Column(String, nullable=False)
    client_name = Column(String, nullable=True)
    status = Column(
        SQLEnum(SubscriptionStatus, name="subscriptionstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SubscriptionStatus.PENDING_PAYMENT,
        index=True,
    )
    price_id = Column(String, nullable=False)

    stripe_customer_id = Column(String, nullable=True)
    stripe_checkout_session_id = Column(String, nullable=False, unique=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, unique=True, index=True)
    checkout_url = Column(String, nullable=True)

    # Mirrored from customer.subscription.updated
    gateway_status = Column(String, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)

    last_payment_at = Column(DateTime, nullable=True)
    last_payment_amount_cents = Column(Integer, nullable=True)
    failure_reason = Column(Text, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)


class Subscription(RecurringBillingRecord):
    """Open-ended monthly subscription to a catalog price."""

    __tablename__ = "subscriptions"

    plan_type = Column(String, nullable=False)  # retainer, saas
    plan_tier = Column(String, nullable=False)  # standard, priority, starter, ...
    plan_name = Column(String, nullable=False)
    amount_cents = Column(Integer, nullable=False)  # Monthly amount

    def __repr__(self) -> str:
        """String representation."""
        return f"<Subscription(id={self.id}, plan={self.plan_type}/{self.plan_tier}, status={self.status.value})>"
