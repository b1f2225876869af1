"""Initial schema: clients, invoices, subscriptions, payment plans, payments, processed webhook events

Revision ID: 4c7e2a91b0d3
Revises: 
Create Date: 2026-03-02 09:15:41.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4c7e2a91b0d3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SUBSCRIPTION_STATUSES = ('pending_payment', 'active', 'payment_failed', 'cancelling', 'cancelled', 'completed')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def _recurring_columns() -> list[sa.Column]:
    """Columns shared by subscriptions and payment_plans."""
    return [
        sa.Column('client_id', sa.UUID(), nullable=False),
        sa.Column('client_email', sa.String(), nullable=False),
        sa.Column('client_name', sa.String(), nullable=True),
        sa.Column(
            'status',
            postgresql.ENUM(*SUBSCRIPTION_STATUSES, name='subscriptionstatus', create_type=False),
            nullable=False,
        ),
        sa.Column('price_id', sa.String(), nullable=False),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('stripe_checkout_session_id', sa.String(), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(), nullable=True),
        sa.Column('checkout_url', sa.String(), nullable=True),
        sa.Column('gateway_status', sa.String(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('last_payment_at', sa.DateTime(), nullable=True),
        sa.Column('last_payment_amount_cents', sa.Integer(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
    ]


def _recurring_indexes(table: str) -> None:
    op.create_index(op.f(f'ix_{table}_id'), table, ['id'])
    op.create_index(op.f(f'ix_{table}_created_at'), table, ['created_at'])
    op.create_index(op.f(f'ix_{table}_client_id'), table, ['client_id'])
    op.create_index(op.f(f'ix_{table}_status'), table, ['status'])
    op.create_index(op.f(f'ix_{table}_stripe_checkout_session_id'), table, ['stripe_checkout_session_id'], unique=True)
    op.create_index(op.f(f'ix_{table}_stripe_subscription_id'), table, ['stripe_subscription_id'], unique=True)


def upgrade() -> None:
    """Create all tables for the billing service."""
    # Create enums
    op.execute("CREATE TYPE invoicestatus AS ENUM ('draft', 'pending', 'paid')")
    op.execute(
        "CREATE TYPE subscriptionstatus AS ENUM "
        "('pending_payment', 'active', 'payment_failed', 'cancelling', 'cancelled', 'completed')"
    )
    op.execute("CREATE TYPE paymentrecordtype AS ENUM ('subscription', 'payment_plan')")

    # 1. Clients
    op.create_table(
        'clients',
        *_timestamps(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('company', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_clients_id'), 'clients', ['id'])
    op.create_index(op.f('ix_clients_created_at'), 'clients', ['created_at'])
    op.create_index(op.f('ix_clients_email'), 'clients', ['email'], unique=True)
    op.create_index(op.f('ix_clients_stripe_customer_id'), 'clients', ['stripe_customer_id'])

    # 2. Invoices (number unique per year/sequence)
    op.create_table(
        'invoices',
        *_timestamps(),
        sa.Column('client_id', sa.UUID(), nullable=False),
        sa.Column('client_email', sa.String(), nullable=True),
        sa.Column('client_name', sa.String(), nullable=True),
        sa.Column(
            'status',
            postgresql.ENUM('draft', 'pending', 'paid', name='invoicestatus', create_type=False),
            nullable=False,
            server_default='draft',
        ),
        sa.Column('line_items', sa.JSON(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('due_in_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('invoice_year', sa.Integer(), nullable=True),
        sa.Column('invoice_sequence', sa.Integer(), nullable=True),
        sa.Column('invoice_number', sa.String(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('payment_link_id', sa.String(), nullable=True),
        sa.Column('payment_link', sa.String(), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_year', 'invoice_sequence', name='uq_invoices_year_sequence')
    )
    op.create_index(op.f('ix_invoices_id'), 'invoices', ['id'])
    op.create_index(op.f('ix_invoices_created_at'), 'invoices', ['created_at'])
    op.create_index(op.f('ix_invoices_client_id'), 'invoices', ['client_id'])
    op.create_index(op.f('ix_invoices_status'), 'invoices', ['status'])
    op.create_index(op.f('ix_invoices_invoice_number'), 'invoices', ['invoice_number'], unique=True)
    op.create_index(op.f('ix_invoices_payment_link_id'), 'invoices', ['payment_link_id'])

    # 3. Subscriptions
    op.create_table(
        'subscriptions',
        *_timestamps(),
        *_recurring_columns(),
        sa.Column('plan_type', sa.String(), nullable=False),
        sa.Column('plan_tier', sa.String(), nullable=False),
        sa.Column('plan_name', sa.String(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    _recurring_indexes('subscriptions')

    # 4. Payment plans
    op.create_table(
        'payment_plans',
        *_timestamps(),
        *_recurring_columns(),
        sa.Column('project_name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('number_of_payments', sa.Integer(), nullable=False),
        sa.Column('payments_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_amount_cents', sa.Integer(), nullable=False),
        sa.Column('billing_starts_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('payments_completed <= number_of_payments', name='ck_payment_plans_completed_bound')
    )
    _recurring_indexes('payment_plans')

    # 5. Payments (append-only ledger, one row per gateway invoice)
    op.create_table(
        'payments',
        *_timestamps(),
        sa.Column(
            'type',
            postgresql.ENUM('subscription', 'payment_plan', name='paymentrecordtype', create_type=False),
            nullable=False,
        ),
        sa.Column('parent_id', sa.UUID(), nullable=False),
        sa.Column('client_id', sa.UUID(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('gateway_invoice_id', sa.String(), nullable=False),
        sa.Column('gateway_subscription_id', sa.String(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_id'), 'payments', ['id'])
    op.create_index(op.f('ix_payments_created_at'), 'payments', ['created_at'])
    op.create_index(op.f('ix_payments_parent_id'), 'payments', ['parent_id'])
    op.create_index(op.f('ix_payments_client_id'), 'payments', ['client_id'])
    op.create_index(op.f('ix_payments_gateway_invoice_id'), 'payments', ['gateway_invoice_id'], unique=True)
    op.create_index(op.f('ix_payments_gateway_subscription_id'), 'payments', ['gateway_subscription_id'])

    # 6. Processed webhook events
    op.create_table(
        'processed_webhook_events',
        *_timestamps(),
        sa.Column('event_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('outcome', sa.String(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_processed_webhook_events_id'), 'processed_webhook_events', ['id'])
    op.create_index(op.f('ix_processed_webhook_events_created_at'), 'processed_webhook_events', ['created_at'])
    op.create_index(op.f('ix_processed_webhook_events_event_id'), 'processed_webhook_events', ['event_id'], unique=True)
    op.create_index(op.f('ix_processed_webhook_events_event_type'), 'processed_webhook_events', ['event_type'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('processed_webhook_events')
    op.drop_table('payments')
    op.drop_table('payment_plans')
    op.drop_table('subscriptions')
    op.drop_table('invoices')
    op.drop_table('clients')

    # Drop enums
    op.execute("DROP TYPE IF EXISTS paymentrecordtype")
    op.execute("DROP TYPE IF EXISTS subscriptionstatus")
    op.execute("DROP TYPE IF EXISTS invoicestatus")
