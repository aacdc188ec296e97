"""Create billing tables

Revision ID: 0001_billing_tables
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_billing_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create accounts, subscriptions, payments and processed_webhook_events."""

    op.create_table(
        'accounts',
        sa.Column('account_id', sa.String(255), primary_key=True),

        # Access flag, derived from subscriptions
        sa.Column('has_active_access', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('subscription_status', sa.String(32)),
        sa.Column('subscription_tier', sa.String(32), server_default='free', nullable=False),
        sa.Column('access_updated_at', sa.DateTime(timezone=True)),

        # One-time donations
        sa.Column('has_donated', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('last_donation_amount', sa.Integer()),
        sa.Column('last_donation_at', sa.DateTime(timezone=True)),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    op.create_table(
        'subscriptions',
        sa.Column('account_id', sa.String(255), primary_key=True),

        # Processor references
        sa.Column('external_customer_id', sa.String(255)),
        sa.Column('external_subscription_id', sa.String(255)),
        sa.Column('external_price_id', sa.String(255)),

        # Subscription details
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('tier', sa.String(32), server_default='free', nullable=False),

        # Billing period dates
        sa.Column('start_date', sa.DateTime(timezone=True)),
        sa.Column('current_period_end', sa.DateTime(timezone=True)),
        sa.Column('cancel_at_period_end', sa.Boolean(), server_default=sa.false(), nullable=False),

        # Processor timestamp of the last applied event
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_subscriptions_external_customer_id', 'subscriptions', ['external_customer_id'])
    op.create_index('ix_subscriptions_external_subscription_id', 'subscriptions', ['external_subscription_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])

    op.create_table(
        'payments',
        sa.Column('invoice_id', sa.String(255), primary_key=True),
        sa.Column('account_id', sa.String(255), nullable=False),
        sa.Column('external_subscription_id', sa.String(255)),
        sa.Column('external_customer_id', sa.String(255)),
        sa.Column('amount', sa.Integer(), server_default='0', nullable=False),
        sa.Column('currency', sa.String(8)),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('succeeded', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('billing_reason', sa.String(64)),
        sa.Column('failure_reason', sa.String()),
        sa.Column('next_payment_attempt', sa.DateTime(timezone=True)),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_payments_account_id', 'payments', ['account_id'])
    op.create_index('ix_payments_occurred_at', 'payments', ['occurred_at'])

    op.create_table(
        'processed_webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column(
            'processed_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
    )
    # Index for cleanup queries (delete events older than X days)
    op.create_index(
        'ix_processed_webhook_events_processed_at',
        'processed_webhook_events',
        ['processed_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_processed_webhook_events_processed_at', table_name='processed_webhook_events')
    op.drop_table('processed_webhook_events')
    op.drop_index('ix_payments_occurred_at', table_name='payments')
    op.drop_index('ix_payments_account_id', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_subscriptions_status', table_name='subscriptions')
    op.drop_index('ix_subscriptions_external_subscription_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_external_customer_id', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('accounts')
