"""Billing tables

Revision ID: 0001_billing_tables
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_billing_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        'id',
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text('gen_random_uuid()'),
    )


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create tenant, catalog, subscription, charge and audit tables."""

    op.create_table(
        'companies',
        _uuid_pk(),
        sa.Column('name', sa.String(), server_default='', nullable=False),
        sa.Column('plan', sa.String()),
        sa.Column('maxemployees', sa.Integer),
        sa.Column('current_subscription_id', postgresql.UUID(as_uuid=True)),
        sa.Column('plan_features', postgresql.JSONB),
    )

    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String()),
        sa.Column('is_admin', sa.Boolean, server_default='false', nullable=False),
    )

    op.create_table(
        'companies_users',
        _uuid_pk(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('role', sa.String(), server_default='member', nullable=False),
        sa.UniqueConstraint('company_id', 'user_id', name='uq_companies_users_company_user'),
    )

    op.create_table(
        'plans',
        _uuid_pk(),
        sa.Column('slug', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String()),
        sa.Column('price_cents', sa.Integer, server_default='0', nullable=False),
        sa.Column('currency', sa.String(), server_default='BRL', nullable=False),
        sa.Column('interval_months', sa.Integer, server_default='1', nullable=False),
        sa.Column('trial_days', sa.Integer, server_default='0', nullable=False),
        sa.Column('max_employees', sa.Integer),

        # Created lazily at the gateway on first checkout
        sa.Column('efi_plan_id', sa.BigInteger),

        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('is_public', sa.Boolean, server_default='false', nullable=False),
        sa.Column('features_json', postgresql.JSONB),
        *_timestamps(),
    )

    op.create_table(
        'subscriptions',
        _uuid_pk(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True)),
        sa.Column('status', sa.String(), server_default='waiting', nullable=False, index=True),

        # Efí IDs
        sa.Column('efi_subscription_id', sa.BigInteger, unique=True, index=True),
        sa.Column('last_charge_id', sa.BigInteger),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True)),
        sa.Column('canceled_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'transactions',
        _uuid_pk(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), index=True),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True)),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True)),
        sa.Column('efi_subscription_id', sa.BigInteger),
        sa.Column('efi_charge_id', sa.BigInteger, unique=True, index=True),
        sa.Column('method', sa.String(), server_default='credit_card', nullable=False),
        sa.Column('status', sa.String(), server_default='waiting', nullable=False),
        sa.Column('amount_cents', sa.Integer, server_default='0', nullable=False),
        sa.Column('currency', sa.String(), server_default='BRL', nullable=False),
        sa.Column('response_json', postgresql.JSONB),
        *_timestamps(),
    )

    op.create_table(
        'payment_event_logs',
        _uuid_pk(),
        sa.Column('provider', sa.String(), server_default='efi', nullable=False),
        sa.Column('event_type', sa.String(), nullable=False, index=True),
        sa.Column('body', postgresql.JSONB),
        sa.Column('headers', postgresql.JSONB),
        sa.Column('ip', sa.String(), server_default='', nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'processed_webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'ix_processed_webhook_events_processed_at',
        'processed_webhook_events',
        ['processed_at'],
    )


def downgrade() -> None:
    """Drop billing tables."""
    op.drop_index('ix_processed_webhook_events_processed_at', table_name='processed_webhook_events')
    op.drop_table('processed_webhook_events')
    op.drop_table('payment_event_logs')
    op.drop_table('transactions')
    op.drop_table('subscriptions')
    op.drop_table('plans')
    op.drop_table('companies_users')
    op.drop_table('users')
    op.drop_table('companies')
