"""Pydantic schemas for Invoice model."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, ConfigDict

from studio_billing.models.invoice import InvoiceStatus


class InvoiceLineItemIn(BaseModel):
    """Schema for an invoice line item as entered by the admin."""

    description: str = Field(..., min_length=1, description="Line item description")
    quantity: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, description="Quantity (hours, units)")
    unit_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2, description="Unit price in dollars")


class InvoiceLineItem(BaseModel):
    """Schema for a stored invoice line item."""

    description: str
    quantity: Decimal
    unit_price_cents: int
    total_cents: int


class InvoiceCreate(BaseModel):
    """Schema for creating a draft invoice."""

    client_id: UUID = Field(..., description="Client being invoiced")
    client_email: EmailStr | None = Field(default=None, description="Client email (required to send)")
    client_name: str | None = Field(default=None, description="Client name")
    line_items: list[InvoiceLineItemIn] = Field(..., min_length=1, description="At least one line item")
    due_in_days: int = Field(default=14, ge=0, le=365, description="Days between sending and due date")
    notes: str | None = Field(default=None, description="Notes shown on the invoice")


class InvoiceUpdate(BaseModel):
    """Schema for updating a draft invoice. All fields are optional."""

    client_email: EmailStr | None = None
    client_name: str | None = None
    line_items: list[InvoiceLineItemIn] | None = Field(default=None, min_length=1)
    due_in_days: int | None = Field(default=None, ge=0, le=365)
    notes: str | None = None


class Invoice(BaseModel):
    """Schema for returning invoice data."""

    id: UUID
    client_id: UUID
    client_email: str | None
    client_name: str | None
    status: InvoiceStatus
    line_items: list[InvoiceLineItem]
    subtotal_cents: int
    total_cents: int
    notes: str | None
    due_in_days: int
    invoice_number: str | None
    due_date: datetime | None
    sent_at: datetime | None
    payment_link_id: str | None
    payment_link: str | None
    stripe_payment_intent_id: str | None
    paid_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceList(BaseModel):
    """Schema for paginated invoice list."""

    items: list[Invoice]
    total: int
    page: int
    page_size: int
