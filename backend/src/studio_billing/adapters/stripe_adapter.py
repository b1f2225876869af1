"""Stripe payment gateway adapter."""
import asyncio
from functools import partial
from typing import Any, Callable

import stripe
import structlog

from studio_billing.config import Settings, settings
from studio_billing.exceptions import PaymentGatewayError, WebhookVerificationError
from studio_billing.metrics import gateway_errors_total

logger = structlog.get_logger(__name__)


class StripeAdapter:
    """Adapter for Stripe payment gateway integration."""

    def __init__(self, config: Settings = settings):
        """Initialize Stripe adapter with API key, retry and timeout policy."""
        self.config = config
        stripe.api_key = config.stripe_secret_key
        stripe.max_network_retries = config.stripe_max_network_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=config.stripe_timeout_seconds)

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run a blocking Stripe call in the default executor.

        Args:
            operation: Short name used in logs and metrics
            func: Stripe library function
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            The Stripe object returned by func

        Raises:
            PaymentGatewayError: If Stripe rejects the call or is unreachable
        """
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(func, *args, **kwargs))
        except stripe.StripeError as e:
            gateway_errors_total.labels(operation=operation).inc()
            logger.error(
                "stripe_call_failed",
                operation=operation,
                stripe_code=getattr(e, "code", None),
                error=str(e),
            )
            raise PaymentGatewayError(
                f"Stripe {operation} failed: {e.user_message or e}",
                details={"operation": operation, "stripe_code": getattr(e, "code", None)},
                original_error=e,
            ) from e

    async def find_or_create_customer(self, email: str, name: str | None, metadata: dict[str, str] | None = None) -> str:
        """
        Resolve a Stripe customer by email, creating one only if none exists.

        Args:
            email: Customer email
            name: Customer name
            metadata: Additional metadata for a newly created customer

        Returns:
            Stripe customer ID
        """
        existing = await self._call("customer_search", stripe.Customer.list, email=email, limit=1)
        if existing.data:
            customer_id = existing.data[0].id
            logger.info("stripe_customer_reused", customer_id=customer_id, email=email)
            return customer_id

        params: dict[str, Any] = {"email": email, "metadata": metadata or {}}
        if name:
            params["name"] = name

        customer = await self._call("customer_create", stripe.Customer.create, **params)
        logger.info("stripe_customer_created", customer_id=customer.id, email=email)
        return customer.id

    async def create_recurring_price(
        self,
        product_name: str,
        unit_amount: int,
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """
        Create a product and a monthly recurring price for it.

        Args:
            product_name: Product display name
            unit_amount: Monthly amount in cents
            description: Optional product description
            metadata: Additional metadata

        Returns:
            Stripe price ID
        """
        product_params: dict[str, Any] = {"name": product_name, "metadata": metadata or {}}
        if description:
            product_params["description"] = description

        product = await self._call("product_create", stripe.Product.create, **product_params)
        price = await self._call(
            "price_create",
            stripe.Price.create,
            product=product.id,
            unit_amount=unit_amount,
            currency=self.config.currency,
            recurring={"interval": "month"},
            metadata=metadata or {},
        )
        return price.id

    async def create_subscription_checkout(
        self,
        customer_id: str,
        price_id: str,
        metadata: dict[str, str],
        trial_end: int | None = None,
    ) -> dict[str, str]:
        """
        Create a hosted checkout session that starts a subscription.

        The metadata is copied onto the subscription so that later invoice
        events can be traced back to the local record.

        Args:
            customer_id: Stripe customer ID
            price_id: Recurring price ID
            metadata: Local record identifiers
            trial_end: Unix timestamp of the first charge, if deferred

        Returns:
            Checkout session id and url
        """
        subscription_data: dict[str, Any] = {"metadata": metadata}
        if trial_end is not None:
            subscription_data["trial_end"] = trial_end

        session = await self._call(
            "checkout_session_create",
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=self.config.checkout_success_url,
            cancel_url=self.config.checkout_cancel_url,
            metadata=metadata,
            subscription_data=subscription_data,
        )
        return {"id": session.id, "url": session.url}

    async def expire_checkout_session(self, session_id: str) -> None:
        """
        Expire an open checkout session so it can no longer be paid.

        Args:
            session_id: Stripe checkout session ID
        """
        await self._call("checkout_session_expire", stripe.checkout.Session.expire, session_id)

    async def create_invoice_payment_link(
        self,
        invoice_id: str,
        invoice_number: str,
        amount: int,
        description: str | None = None,
    ) -> dict[str, str]:
        """
        Create a one-time payment link for an invoice total.

        Args:
            invoice_id: Local invoice ID, tagged on the link and payment intent
            invoice_number: Human invoice number used as the product name
            amount: Invoice total in cents
            description: Optional product description

        Returns:
            Payment link id and url
        """
        metadata = {"invoiceId": invoice_id, "invoiceNumber": invoice_number}
        product_data: dict[str, Any] = {"name": f"Invoice {invoice_number}"}
        if description:
            product_data["description"] = description

        price = await self._call(
            "price_create",
            stripe.Price.create,
            unit_amount=amount,
            currency=self.config.currency,
            product_data=product_data,
            metadata=metadata,
        )
        link = await self._call(
            "payment_link_create",
            stripe.PaymentLink.create,
            line_items=[{"price": price.id, "quantity": 1}],
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            after_completion={"type": "redirect", "redirect": {"url": self.config.invoice_paid_redirect_url}},
        )
        return {"id": link.id, "url": link.url}

    async def deactivate_payment_link(self, payment_link_id: str) -> None:
        """
        Deactivate a payment link so it no longer accepts payments.

        Args:
            payment_link_id: Stripe payment link ID
        """
        await self._call("payment_link_deactivate", stripe.PaymentLink.modify, payment_link_id, active=False)
        logger.info("stripe_payment_link_deactivated", payment_link_id=payment_link_id)

    async def cancel_subscription(self, subscription_id: str, at_period_end: bool = False) -> dict[str, Any]:
        """
        Cancel a subscription immediately or at the end of the current period.

        Args:
            subscription_id: Stripe subscription ID
            at_period_end: Flag cancel_at_period_end instead of cancelling now

        Returns:
            Subscription status details
        """
        if at_period_end:
            subscription = await self._call(
                "subscription_cancel",
                stripe.Subscription.modify,
                subscription_id,
                cancel_at_period_end=True,
            )
        else:
            subscription = await self._call("subscription_cancel", stripe.Subscription.cancel, subscription_id)

        logger.info(
            "stripe_subscription_cancelled",
            subscription_id=subscription_id,
            at_period_end=at_period_end,
            status=subscription.status,
        )
        return {
            "id": subscription.id,
            "status": subscription.status,
            "cancel_at_period_end": bool(subscription.cancel_at_period_end),
        }

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> None:
        """
        Verify a webhook signature header against the shared secret.

        Args:
            payload: Raw request body
            signature: Value of the Stripe-Signature header

        Raises:
            WebhookVerificationError: If the header is missing or does not match
        """
        if not signature:
            raise WebhookVerificationError("Missing Stripe signature")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.config.stripe_webhook_secret,
                self.config.stripe_webhook_tolerance_seconds,
            )
        except UnicodeDecodeError as e:
            raise WebhookVerificationError("Invalid payload encoding", original_error=e) from e
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Invalid signature: {e}", original_error=e) from e
