"""Invoice model for one-time client invoices."""
from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, Text, Uuid, JSON, UniqueConstraint
import enum

from studio_billing.models.base import Base


class InvoiceStatus(enum.Enum):
    """Invoice lifecycle status: draft -> pending -> paid."""

    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"


class Invoice(Base):
    """
    One-time invoice paid through a gateway payment link.

    The invoice number is assigned once, when the draft is sent, and is
    sequential within the calendar year. Immutable after PAID status.
    """

    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("invoice_year", "invoice_sequence", name="uq_invoices_year_sequence"),)

    client_id = Column(Uuid, nullable=False, index=True)
    client_email = Column(String, nullable=True)
    client_name = Column(String, nullable=True)
    status = Column(
        SQLEnum(InvoiceStatus, name="invoicestatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=InvoiceStatus.DRAFT,
        index=True,
    )
    line_items = Column(JSON, nullable=False, default=list)  # [{description, quantity, unit_price}]
    subtotal_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    due_in_days = Column(Integer, nullable=False, default=0)

    # Assigned on send
    invoice_year = Column(Integer, nullable=True)
    invoice_sequence = Column(Integer, nullable=True)
    invoice_number = Column(String, nullable=True, unique=True, index=True)  # 2025-001, 2025-002, ...
    due_date = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    payment_link_id = Column(String, nullable=True, index=True)
    payment_link = Column(String, nullable=True)

    # Set by the checkout webhook
    stripe_payment_intent_id = Column(String, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Invoice(id={self.id}, number={self.invoice_number}, status={self.status.value}, total_cents={self.total_cents})>"
