# alembic/versions/001_initial_schema.py
"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create tenants table
    op.create_table(
        'tenants',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('default_currency', sa.String(3), server_default=sa.text("'USD'"), nullable=False),
        sa.Column('settings', sa.JSON),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )

    # Create proxies table
    op.create_table(
        'proxies',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('label', sa.String(100)),
        sa.Column('ip_address', sa.String(45), nullable=False),
        sa.Column('port', sa.Integer, nullable=False),
        sa.Column('username', sa.String(100)),
        sa.Column('password', sa.String(100)),
        sa.Column('location', sa.String(100)),
        sa.Column('isp', sa.String(100)),
        sa.Column('dongle_id', sa.String(100)),
        sa.Column('status', sa.String(20), server_default=sa.text("'available'"), nullable=False),
        sa.Column('last_health_check', sa.DateTime),
        sa.Column('deleted_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.CheckConstraint(
            "status IN ('available', 'allocated', 'maintenance', 'disabled')",
            name='proxies_status_check',
        ),
        sa.CheckConstraint('port > 0 AND port < 65536', name='proxies_port_range'),
    )
    op.create_index('ix_proxies_status', 'proxies', ['status'])
    op.create_index('ix_proxies_deleted_at', 'proxies', ['deleted_at'])
    op.create_index(
        'uq_proxies_ip_port_live', 'proxies', ['ip_address', 'port'],
        unique=True, postgresql_where=sa.text('deleted_at IS NULL'),
    )

    # Create subscriptions table
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(100), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('payment_method', sa.String(20), server_default=sa.text("'external'"), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'active'"), nullable=False),
        sa.Column('amount_monthly', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default=sa.text("'USD'"), nullable=False),
        sa.Column('external_subscription_id', sa.String(255)),
        sa.Column('external_price_id', sa.String(255)),
        sa.Column('current_period_start', sa.DateTime),
        sa.Column('current_period_end', sa.DateTime),
        sa.Column('cancel_at', sa.DateTime),
        sa.Column('canceled_at', sa.DateTime),
        sa.Column('metadata', sa.JSON),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.CheckConstraint(
            "status IN ('active', 'incomplete', 'past_due', 'canceled', 'paused')",
            name='subscriptions_status_check',
        ),
        sa.CheckConstraint("payment_method IN ('wallet', 'external')", name='subscriptions_payment_method_check'),
        sa.CheckConstraint('amount_monthly > 0', name='subscriptions_amount_positive'),
    )
    op.create_index('ix_subscriptions_tenant_id', 'subscriptions', ['tenant_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])

    # Create allocations table
    op.create_table(
        'allocations',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(100), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('proxy_id', sa.Integer, sa.ForeignKey('proxies.id'), nullable=False),
        sa.Column('subscription_id', sa.Integer, sa.ForeignKey('subscriptions.id', ondelete='SET NULL')),
        sa.Column('starts_at', sa.DateTime, nullable=False),
        sa.Column('ends_at', sa.DateTime, nullable=False),
        sa.Column('price_monthly', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'active'"), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.CheckConstraint("status IN ('active', 'expired', 'cancelled')", name='allocations_status_check'),
        sa.CheckConstraint('price_monthly > 0', name='allocations_price_positive'),
    )
    op.create_index('ix_allocations_tenant_id', 'allocations', ['tenant_id'])
    op.create_index('ix_allocations_proxy_id', 'allocations', ['proxy_id'])
    op.create_index('ix_allocations_subscription_id', 'allocations', ['subscription_id'])
    op.create_index('ix_allocations_status_ends_at', 'allocations', ['status', 'ends_at'])
    # At most one active lease per proxy
    op.create_index(
        'uq_allocations_active_proxy', 'allocations', ['proxy_id'],
        unique=True, postgresql_where=sa.text("status = 'active'"),
    )

    # Create funds (wallet ledger) table
    op.create_table(
        'funds',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(100), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default=sa.text("'USD'"), nullable=False),
        sa.Column('entry_type', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('payment_provider', sa.String(50)),
        sa.Column('payment_reference', sa.String(255)),
        sa.Column('metadata', sa.JSON),
        sa.Column('deleted_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.CheckConstraint('amount > 0', name='funds_amount_positive'),
        sa.CheckConstraint("entry_type IN ('credit', 'debit')", name='funds_entry_type_check'),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded')",
            name='funds_status_check',
        ),
    )
    op.create_index('ix_funds_tenant_id', 'funds', ['tenant_id'])
    op.create_index('ix_funds_tenant_status', 'funds', ['tenant_id', 'status'])
    op.create_index('ix_funds_payment_reference', 'funds', ['payment_reference'])
    op.create_index('ix_funds_deleted_at', 'funds', ['deleted_at'])

    # Create billing (invoices) table
    op.create_table(
        'billing',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(100), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('subscription_id', sa.Integer, sa.ForeignKey('subscriptions.id', ondelete='SET NULL')),
        sa.Column('invoice_number', sa.String(100), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default=sa.text("'USD'"), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('payment_method', sa.String(20), server_default=sa.text("'external'"), nullable=False),
        sa.Column('payment_provider', sa.String(50)),
        sa.Column('payment_reference', sa.String(255)),
        sa.Column('due_date', sa.DateTime),
        sa.Column('paid_at', sa.DateTime),
        sa.Column('wallet_entry_id', sa.Integer, sa.ForeignKey('funds.id')),
        sa.Column('metadata', sa.JSON),
        sa.Column('deleted_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('tenant_id', 'invoice_number', name='billing_invoice_tenant_unique'),
        sa.CheckConstraint("status IN ('pending', 'paid', 'cancelled', 'failed')", name='billing_status_check'),
        sa.CheckConstraint("payment_method IN ('wallet', 'external')", name='billing_payment_method_check'),
        sa.CheckConstraint('amount > 0', name='billing_amount_positive'),
    )
    op.create_index('ix_billing_tenant_id', 'billing', ['tenant_id'])
    op.create_index('ix_billing_subscription_id', 'billing', ['subscription_id'])
    op.create_index('ix_billing_status', 'billing', ['status'])
    op.create_index('ix_billing_deleted_at', 'billing', ['deleted_at'])

    # Create proxy_usage_samples table
    op.create_table(
        'proxy_usage_samples',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('proxy_id', sa.Integer, sa.ForeignKey('proxies.id'), nullable=False),
        sa.Column('tenant_id', sa.String(100), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('allocation_id', sa.Integer, sa.ForeignKey('allocations.id', ondelete='SET NULL')),
        sa.Column('ts', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('bytes_in', sa.BigInteger, server_default=sa.text('0'), nullable=False),
        sa.Column('bytes_out', sa.BigInteger, server_default=sa.text('0'), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('bytes_in >= 0 AND bytes_out >= 0', name='usage_bytes_non_negative'),
    )
    op.create_index('ix_proxy_usage_samples_ts', 'proxy_usage_samples', ['ts'])
    op.create_index('ix_usage_tenant_ts', 'proxy_usage_samples', ['tenant_id', 'ts'])
    op.create_index('ix_usage_proxy_ts', 'proxy_usage_samples', ['proxy_id', 'ts'])
    op.create_index('ix_usage_allocation_ts', 'proxy_usage_samples', ['allocation_id', 'ts'])


def downgrade() -> None:
    op.drop_table('proxy_usage_samples')
    op.drop_table('billing')
    op.drop_table('funds')
    op.drop_table('allocations')
    op.drop_table('subscriptions')
    op.drop_table('proxies')
    op.drop_table('tenants')
