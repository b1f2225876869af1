"""Domain exceptions raised by services and mapped to HTTP responses in main."""
from typing import Any


class BillingError(Exception):
    """Base exception for all billing errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, details={self.details})"


class RecordNotFoundError(BillingError):
    """Referenced client, invoice, subscription or payment plan does not exist."""


class InvalidStateError(BillingError):
    """Requested transition is not allowed from the record's current status."""


class BillingValidationError(BillingError):
    """Request is well-formed but semantically invalid (unknown plan, past start date)."""


class InvoiceNumberConflictError(BillingError):
    """Another send claimed the same invoice number concurrently."""


class PaymentGatewayError(BillingError):
    """A payment gateway call failed after the client's own retries."""


class WebhookVerificationError(BillingError):
    """Webhook signature header missing or invalid, or body unreadable."""
