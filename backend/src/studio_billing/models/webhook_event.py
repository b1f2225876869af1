"""Processed webhook event model for event-level deduplication."""
from sqlalchemy import Column, String, DateTime

from studio_billing.models.base import Base


class ProcessedWebhookEvent(Base):
    """
    A gateway event id that has already been applied.

    Written in the same transaction as the handler's state change, so a
    redelivered event is acknowledged without being applied twice.
    """

    __tablename__ = "processed_webhook_events"

    event_id = Column(String, nullable=False, unique=True, index=True)
    event_type = Column(String, nullable=False, index=True)
    outcome = Column(String, nullable=False)
    processed_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        return f"<ProcessedWebhookEvent(event_id={self.event_id}, event_type={self.event_type}, outcome={self.outcome})>"
