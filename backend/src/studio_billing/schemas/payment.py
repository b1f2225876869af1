"""Pydantic schemas for PaymentRecord model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from studio_billing.models.payment import PaymentRecordType


class PaymentRecord(BaseModel):
    """Schema for returning a payment ledger entry."""

    id: UUID
    type: PaymentRecordType
    parent_id: UUID
    client_id: UUID
    amount_cents: int
    gateway_invoice_id: str
    gateway_subscription_id: str | None
    paid_at: datetime

    model_config = ConfigDict(from_attributes=True)
