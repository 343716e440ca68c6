"""community billing schema

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('oauth_provider', sa.String(length=50), nullable=True),
        sa.Column('oauth_provider_id', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_superuser', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('razorpay_customer_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('razorpay_customer_id'),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_oauth_provider_id'), 'users', ['oauth_provider_id'], unique=False)

    # Communities with billing state
    op.create_table(
        'communities',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('admin_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='unpaid'),
        sa.Column('subscription_id', sa.String(length=255), nullable=True),
        sa.Column('subscription_status', sa.String(length=50), nullable=True),
        sa.Column('subscription_start_date', sa.DateTime(), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(), nullable=True),
        sa.Column('trial_end_date', sa.DateTime(), nullable=True),
        sa.Column('free_trial_activated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('admin_trial_activated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('admin_trial_has_used_trial', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('admin_trial_start_date', sa.DateTime(), nullable=True),
        sa.Column('admin_trial_end_date', sa.DateTime(), nullable=True),
        sa.Column('admin_trial_cancelled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('admin_trial_converted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('admin_trial_used_at', sa.DateTime(), nullable=True),
        sa.Column('admin_trial_cancelled_date', sa.DateTime(), nullable=True),
        sa.Column('suspended', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('suspended_at', sa.DateTime(), nullable=True),
        sa.Column('suspension_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['admin_id'], ['users.id'], ),
    )
    op.create_index(op.f('ix_communities_slug'), 'communities', ['slug'], unique=True)
    op.create_index(op.f('ix_communities_admin_id'), 'communities', ['admin_id'], unique=False)
    op.create_index(op.f('ix_communities_subscription_id'), 'communities', ['subscription_id'], unique=False)

    # Razorpay subscription records
    op.create_table(
        'community_subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('razorpay_subscription_id', sa.String(length=255), nullable=False),
        sa.Column('razorpay_plan_id', sa.String(length=255), nullable=False),
        sa.Column('razorpay_customer_id', sa.String(length=255), nullable=True),
        sa.Column('admin_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('community_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='created'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('total_count', sa.Integer(), nullable=False, server_default='120'),
        sa.Column('paid_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('remaining_count', sa.Integer(), nullable=True),
        sa.Column('auth_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount', sa.Integer(), nullable=False, server_default='240000'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('interval', sa.String(length=20), nullable=False, server_default='monthly'),
        sa.Column('interval_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('customer_notify', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notes', postgresql.JSONB(), nullable=True),
        sa.Column('current_start', sa.DateTime(), nullable=True),
        sa.Column('current_end', sa.DateTime(), nullable=True),
        sa.Column('charge_at', sa.DateTime(), nullable=True),
        sa.Column('start_at', sa.DateTime(), nullable=True),
        sa.Column('end_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('trial_end_date', sa.DateTime(), nullable=True),
        sa.Column('retry_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retry_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True),
        sa.Column('consecutive_failures', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_failure_at', sa.DateTime(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('last_webhook_at', sa.DateTime(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('suspended', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('suspended_at', sa.DateTime(), nullable=True),
        sa.Column('suspension_reason', sa.String(length=100), nullable=True),
        sa.Column('webhook_events', postgresql.JSONB(), nullable=True),
        sa.Column('notifications_sent', postgresql.JSONB(), nullable=True),
        sa.Column('trial_reminders', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['admin_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['community_id'], ['communities.id'], ),
    )
    op.create_index(
        op.f('ix_community_subscriptions_razorpay_subscription_id'),
        'community_subscriptions', ['razorpay_subscription_id'], unique=True,
    )
    op.create_index(
        op.f('ix_community_subscriptions_razorpay_customer_id'),
        'community_subscriptions', ['razorpay_customer_id'], unique=False,
    )
    op.create_index(op.f('ix_community_subscriptions_admin_id'), 'community_subscriptions', ['admin_id'], unique=False)
    op.create_index(op.f('ix_community_subscriptions_community_id'), 'community_subscriptions', ['community_id'], unique=False)
    op.create_index(op.f('ix_community_subscriptions_status'), 'community_subscriptions', ['status'], unique=False)

    # Payment audit trail
    op.create_table(
        'transactions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', sa.String(length=255), nullable=False),
        sa.Column('payment_id', sa.String(length=255), nullable=True),
        sa.Column('signature', sa.Text(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='created'),
        sa.Column('payment_type', sa.String(length=50), nullable=False, server_default='community_subscription'),
        sa.Column('payer_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('community_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['payer_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['community_id'], ['communities.id'], ),
    )
    op.create_index(op.f('ix_transactions_order_id'), 'transactions', ['order_id'], unique=True)
    op.create_index(op.f('ix_transactions_payment_id'), 'transactions', ['payment_id'], unique=False)
    op.create_index(op.f('ix_transactions_payer_id'), 'transactions', ['payer_id'], unique=False)
    op.create_index(op.f('ix_transactions_community_id'), 'transactions', ['community_id'], unique=False)

    # Trial history
    op.create_table(
        'trial_history',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('community_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('trial_type', sa.String(length=30), nullable=False, server_default='community'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('converted_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['community_id'], ['communities.id'], ),
    )
    op.create_index(op.f('ix_trial_history_user_id'), 'trial_history', ['user_id'], unique=False)
    op.create_index(op.f('ix_trial_history_community_id'), 'trial_history', ['community_id'], unique=False)

    # In-app notifications
    op.create_table(
        'notifications',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('community_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=10), nullable=False, server_default='normal'),
        sa.Column('data', postgresql.JSONB(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['community_id'], ['communities.id'], ),
    )
    op.create_index(op.f('ix_notifications_user_id'), 'notifications', ['user_id'], unique=False)
    op.create_index(op.f('ix_notifications_community_id'), 'notifications', ['community_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_notifications_community_id'), table_name='notifications')
    op.drop_index(op.f('ix_notifications_user_id'), table_name='notifications')
    op.drop_table('notifications')

    op.drop_index(op.f('ix_trial_history_community_id'), table_name='trial_history')
    op.drop_index(op.f('ix_trial_history_user_id'), table_name='trial_history')
    op.drop_table('trial_history')

    op.drop_index(op.f('ix_transactions_community_id'), table_name='transactions')
    op.drop_index(op.f('ix_transactions_payer_id'), table_name='transactions')
    op.drop_index(op.f('ix_transactions_payment_id'), table_name='transactions')
    op.drop_index(op.f('ix_transactions_order_id'), table_name='transactions')
    op.drop_table('transactions')

    op.drop_index(op.f('ix_community_subscriptions_status'), table_name='community_subscriptions')
    op.drop_index(op.f('ix_community_subscriptions_community_id'), table_name='community_subscriptions')
    op.drop_index(op.f('ix_community_subscriptions_admin_id'), table_name='community_subscriptions')
    op.drop_index(op.f('ix_community_subscriptions_razorpay_customer_id'), table_name='community_subscriptions')
    op.drop_index(op.f('ix_community_subscriptions_razorpay_subscription_id'), table_name='community_subscriptions')
    op.drop_table('community_subscriptions')

    op.drop_index(op.f('ix_communities_subscription_id'), table_name='communities')
    op.drop_index(op.f('ix_communities_admin_id'), table_name='communities')
    op.drop_index(op.f('ix_communities_slug'), table_name='communities')
    op.drop_table('communities')

    op.drop_index(op.f('ix_users_oauth_provider_id'), table_name='users')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
