"""Pydantic schemas for Client model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, ConfigDict


class ClientCreate(BaseModel):
    """Schema for creating a client."""

    name: str = Field(..., min_length=1, max_length=255, description="Client or contact name")
    email: EmailStr = Field(..., description="Billing email address")
    company: str | None = Field(default=None, max_length=255, description="Company name")
    phone: str | None = Field(default=None, max_length=50, description="Phone number")
    notes: str | None = Field(default=None, description="Internal notes")


class Client(ClientCreate):
    """Schema for returning client data."""

    id: UUID
    stripe_customer_id: str | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClientList(BaseModel):
    """Schema for client list."""

    items: list[Client]
    total: int
