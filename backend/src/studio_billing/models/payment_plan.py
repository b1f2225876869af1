"""Payment plan model for fixed-installment recurring billing."""
from sqlalchemy import Column, Integer, DateTime, String, Text

from studio_billing.models.subscription import RecurringBillingRecord


class PaymentPlan(RecurringBillingRecord):
    """
    A project total split into a fixed number of monthly installments.

    payments_completed only ever grows, by one per reconciled gateway
    invoice; at number_of_payments the plan is COMPLETED and the gateway
    subscription is cancelled.
    """

    __tablename__ = "payment_plans"

    project_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    total_amount_cents = Column(Integer, nullable=False)
    number_of_payments = Column(Integer, nullable=False)
    payments_completed = Column(Integer, nullable=False, default=0)
    monthly_amount_cents = Column(Integer, nullable=False)
    billing_starts_at = Column(DateTime, nullable=True)  # None: first charge at checkout
    completed_at = Column(DateTime, nullable=True)

    @property
    def payments_remaining(self) -> int:
        """Installments still to be collected."""
        return max(self.number_of_payments - (self.payments_completed or 0), 0)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<PaymentPlan(id={self.id}, status={self.status.value}, "
            f"payments={self.payments_completed}/{self.number_of_payments})>"
        )
