"""Notification service integration for billing emails."""
from decimal import Decimal

import httpx
import structlog

from studio_billing.config import Settings, settings

logger = structlog.get_logger(__name__)


class NotificationService:
    """
    Service for sending billing emails through an HTTP email API.

    Without an API key configured, emails are logged and not sent. Delivery
    failures are logged and reported in the return value, never raised:
    billing state changes must not depend on email delivery.
    """

    def __init__(self, config: Settings = settings, transport: httpx.AsyncBaseTransport | None = None):
        """
        Initialize notification service.

        Args:
            config: Application settings with email provider details
            transport: Optional httpx transport (tests inject a mock transport)
        """
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        transport = self._transport or httpx.AsyncHTTPTransport(retries=self.config.email_max_retries)
        return httpx.AsyncClient(
            transport=transport,
            timeout=self.config.email_timeout_seconds,
            headers={"Authorization": f"Bearer {self.config.email_api_key}"},
        )

    async def send_email(self, to: list[str], subject: str, html: str) -> dict:
        """
        Send an email.

        Args:
            to: Recipient email addresses
            subject: Email subject
            html: HTML body

        Returns:
            Dictionary with send status
        """
        recipients = [address for address in to if address]
        if not recipients:
            return {"status": "skipped", "reason": "no_recipients"}

        if not self.config.email_api_key:
            logger.info("email_notification_logged_only", to=recipients, subject=subject)
            return {"status": "logged", "to": recipients, "subject": subject}

        payload = {"from": self.config.email_from, "to": recipients, "subject": subject, "html": html}
        try:
            async with self._client() as client:
                response = await client.post(self.config.email_api_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("email_notification_failed", to=recipients, subject=subject, error=str(e))
            return {"status": "failed", "to": recipients, "error": str(e)}

        message_id = response.json().get("id") if response.content else None
        logger.info("email_notification_sent", to=recipients, subject=subject, message_id=message_id)
        return {"status": "sent", "to": recipients, "subject": subject, "message_id": message_id}

    async def send_payment_failed_notice(
        self,
        client_email: str,
        client_name: str | None,
        description: str,
        amount: Decimal | None,
        reason: str,
    ) -> dict:
        """
        Tell the client (and the admin inbox) that a recurring charge failed.

        Args:
            client_email: Client email address
            client_name: Client display name
            description: What the charge was for (plan or project name)
            amount: Amount that failed, in dollars, if known
            reason: Failure reason reported by the gateway

        Returns:
            Dictionary with send status
        """
        amount_line = f"<p><strong>Amount:</strong> ${amount:,.2f}</p>" if amount is not None else ""
        html = (
            f"<p>Hi {client_name or 'there'},</p>"
            f"<p>We were unable to collect your payment for <strong>{description}</strong>.</p>"
            f"{amount_line}"
            f"<p><strong>Reason:</strong> {reason}</p>"
            "<p>Please update your payment method; the charge will be retried automatically.</p>"
        )
        return await self.send_email(
            to=[client_email, self.config.admin_notification_email],
            subject=f"Payment failed: {description}",
            html=html,
        )
