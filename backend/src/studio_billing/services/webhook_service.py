"""Webhook dispatcher: verifies, deduplicates and routes gateway events."""
from datetime import datetime

import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.exceptions import WebhookVerificationError
from studio_billing.integrations.notification_service import NotificationService
from studio_billing.metrics import webhook_events_total, webhook_handler_failures_total
from studio_billing.models.webhook_event import ProcessedWebhookEvent
from studio_billing.schemas.gateway_event import HANDLED_EVENT_TYPES, EventEnvelope, gateway_event_adapter
from studio_billing.services.reconciliation_service import Outcome, ReconciliationService

logger = structlog.get_logger(__name__)


class WebhookService:
    """
    Entry point for gateway webhook deliveries.

    Only a bad signature or an unreadable body is reported back as an error.
    Once the delivery is authenticated, every outcome (including a handler
    exception) is acknowledged so the gateway does not keep retrying.
    Each event is applied in its own transaction together with its
    processed-event marker.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripeAdapter,
        notifications: NotificationService | None = None,
    ):
        """Initialize webhook service with database session, gateway and notifications."""
        self.db = db
        self.gateway = gateway
        self.notifications = notifications

    async def process(self, payload: bytes, signature: str | None) -> dict:
        """
        Verify and apply one webhook delivery.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            Acknowledgement with event id, type and outcome

        Raises:
            WebhookVerificationError: If the signature or the body is invalid
        """
        try:
            self.gateway.verify_webhook_signature(payload, signature)
        except WebhookVerificationError as e:
            logger.error("stripe_webhook_verification_failed", error=e.message)
            raise

        try:
            envelope = EventEnvelope.model_validate_json(payload)
        except ValidationError as e:
            logger.error("stripe_webhook_malformed_payload", error=str(e))
            raise WebhookVerificationError("Malformed webhook payload", original_error=e) from e

        log = logger.bind(event_id=envelope.id, event_type=envelope.type)
        log.info("stripe_webhook_received")

        if envelope.type not in HANDLED_EVENT_TYPES:
            log.info("stripe_webhook_unhandled_event")
            return self._acknowledge(envelope, Outcome.IGNORED)

        try:
            duplicate = await self._already_processed(envelope.id)
        except SQLAlchemyError:
            return await self._fail(envelope, log)
        if duplicate:
            log.info("stripe_webhook_duplicate_event")
            return self._acknowledge(envelope, Outcome.DUPLICATE)

        try:
            event = gateway_event_adapter.validate_json(payload)
        except ValidationError as e:
            log.error("stripe_webhook_invalid_event", error=str(e))
            return self._acknowledge(envelope, Outcome.INVALID)

        reconciler = ReconciliationService(self.db, self.gateway, self.notifications)
        try:
            outcome = await reconciler.handle(event)
            self.db.add(
                ProcessedWebhookEvent(
                    event_id=envelope.id,
                    event_type=envelope.type,
                    outcome=outcome.value,
                    processed_at=datetime.utcnow(),
                )
            )
            await self.db.commit()
        except IntegrityError:
            return await self._resolve_conflict(envelope, log)
        except Exception:
            return await self._fail(envelope, log)

        await reconciler.run_post_commit()
        log.info("stripe_webhook_processed", outcome=outcome.value)
        return self._acknowledge(envelope, outcome)

    async def _already_processed(self, event_id: str) -> bool:
        result = await self.db.execute(
            select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.event_id == event_id)
        )
        return result.first() is not None

    async def _resolve_conflict(self, envelope: EventEnvelope, log) -> dict:
        """
        Classify a unique violation raised at commit.

        It is a duplicate only when a concurrent delivery has since written
        this event's marker; any other violated constraint is a failure.
        """
        try:
            await self.db.rollback()
            duplicate = await self._already_processed(envelope.id)
        except SQLAlchemyError:
            return await self._fail(envelope, log)

        if not duplicate:
            return await self._fail(envelope, log)
        log.info("stripe_webhook_duplicate_event")
        return self._acknowledge(envelope, Outcome.DUPLICATE)

    async def _fail(self, envelope: EventEnvelope, log) -> dict:
        """Roll back the event and acknowledge it as failed so the gateway retry can reapply it."""
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            log.exception("stripe_webhook_rollback_failed")
        webhook_handler_failures_total.labels(event_type=envelope.type).inc()
        log.exception("stripe_webhook_handler_failed")
        return self._acknowledge(envelope, Outcome.FAILED)

    @staticmethod
    def _acknowledge(envelope: EventEnvelope, outcome: Outcome) -> dict:
        webhook_events_total.labels(event_type=envelope.type, outcome=outcome.value).inc()
        return {"received": True, "event_id": envelope.id, "event_type": envelope.type, "outcome": outcome.value}
