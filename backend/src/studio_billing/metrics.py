"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Gateway webhook events received",
    labelnames=["event_type", "outcome"],  # outcome: applied, duplicate, not_found, ignored, failed, ...
)

webhook_handler_failures_total = Counter(
    "webhook_handler_failures_total",
    "Webhook handlers that raised and were acknowledged anyway",
    labelnames=["event_type"],
)

# Payment metrics
payments_reconciled_total = Counter(
    "payments_reconciled_total",
    "Recurring payments recorded from invoice.paid events",
    labelnames=["record_type"],  # subscription, payment_plan
)

payment_amount_total = Counter(
    "payment_amount_total",
    "Total reconciled payment amount in cents",
    labelnames=["record_type"],
)

payment_plans_completed_total = Counter(
    "payment_plans_completed_total",
    "Payment plans that collected their final installment",
)

# Subscription metrics
subscriptions_created_total = Counter(
    "subscriptions_created_total",
    "Subscriptions and payment plans created by admins",
    labelnames=["record_type"],
)

subscriptions_cancelled_total = Counter(
    "subscriptions_cancelled_total",
    "Subscriptions and payment plans cancelled",
    labelnames=["record_type", "source"],  # source: admin, webhook
)

# Invoice metrics
invoices_sent_total = Counter(
    "invoices_sent_total",
    "Invoices sent to clients",
)

invoices_paid_total = Counter(
    "invoices_paid_total",
    "Invoices marked paid by the checkout webhook",
)

# Gateway metrics
gateway_errors_total = Counter(
    "gateway_errors_total",
    "Failed payment gateway calls",
    labelnames=["operation"],
)
