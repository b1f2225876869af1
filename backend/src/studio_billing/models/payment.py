"""Payment record model: append-only ledger of reconciled recurring payments."""
from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, Uuid
import enum

from studio_billing.models.base import Base


class PaymentRecordType(enum.Enum):
    """Kind of record a payment was collected for."""

    SUBSCRIPTION = "subscription"
    PAYMENT_PLAN = "payment_plan"


class PaymentRecord(Base):
    """
    One successfully reconciled gateway invoice.

    Never updated or deleted. The unique gateway_invoice_id is the
    dedup guard against redelivered invoice.paid events.
    """

    __tablename__ = "payments"

    type = Column(
        SQLEnum(PaymentRecordType, name="paymentrecordtype", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    parent_id = Column(Uuid, nullable=False, index=True)
    client_id = Column(Uuid, nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    gateway_invoice_id = Column(String, nullable=False, unique=True, index=True)
    gateway_subscription_id = Column(String, nullable=True, index=True)
    paid_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        return f"<PaymentRecord(id={self.id}, parent_id={self.parent_id}, gateway_invoice_id={self.gateway_invoice_id})>"
