"""Error response body shared by every non-2xx API response."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """One machine-readable problem with the request."""

    code: str = Field(..., description="Error code from ErrorCode")
    message: str = Field(..., description="Human-readable message")
    field: str | None = Field(default=None, description="Offending request field (422 only)")
    value: Any | None = Field(default=None, description="Offending value (422 only)")
    context: dict[str, Any] | None = Field(default=None, description="Ids and statuses involved in a domain error")


class ErrorResponse(BaseModel):
    """
    Body of every error response.

    ``request_id`` matches the X-Request-ID header and the ``request_id``
    key in the service logs.
    """

    error: str = Field(..., description="Error class, e.g. NotFound, InvalidState, PaymentGatewayError")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] = Field(default_factory=list)
    remediation: str | None = Field(default=None, description="What the caller can do about it")
    request_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ErrorCode:
    """Codes carried in ErrorDetail.code."""

    # 422 request validation
    INVALID_EMAIL = "invalid_email"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_DATE = "invalid_date"
    INVALID_UUID = "invalid_uuid"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    VALIDATION_ERROR = "validation_error"

    # 400 / 404 / 409 domain errors
    UNKNOWN_PLAN = "unknown_plan"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    RECORD_NOT_FOUND = "record_not_found"
    INVOICE_NUMBER_CONFLICT = "invoice_number_conflict"
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"

    # 5xx
    STRIPE_API_ERROR = "stripe_api_error"
    DATABASE_ERROR = "database_error"
    INTERNAL_ERROR = "internal_error"


REMEDIATION_HINTS = {
    ErrorCode.INVALID_EMAIL: "Provide a valid email address, e.g. client@example.com",
    ErrorCode.INVALID_AMOUNT: "Provide a positive amount in dollars with at most two decimal places",
    ErrorCode.UNKNOWN_PLAN: "Choose a plan type and tier from the configured subscription catalog",
    ErrorCode.INVALID_STATE_TRANSITION: "Fetch the record to check its current status before retrying",
    ErrorCode.INVOICE_NUMBER_CONFLICT: "Another invoice was sent at the same moment; send this one again",
    ErrorCode.WEBHOOK_SIGNATURE_INVALID: "Check that the endpoint's signing secret matches STRIPE_WEBHOOK_SECRET",
    ErrorCode.STRIPE_API_ERROR: "Stripe is unavailable or rejected the request; nothing was changed, retry later",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable, retry in a few moments",
}
