"""Create entitlements tables

Revision ID: 0001_entitlements_core
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_entitlements_core'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


USER_OWNED_TABLES = ('user_subscriptions', 'horses', 'plan_changes')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'pricing_plans',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        # -1 = unlimited
        sa.Column('max_horses', sa.Integer, server_default='0', nullable=False),
        sa.Column('max_monthly_analyses', sa.Integer, server_default='0', nullable=False),
        sa.Column('monthly_price', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('annual_price', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('stripe_price_id', sa.String(255), index=True),
        *_timestamps(),
    )

    op.create_table(
        'coupons',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code', sa.String(64), nullable=False),
        sa.Column('discount_percent', sa.Integer, nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True)),
        sa.Column('max_redemptions', sa.Integer),
        *_timestamps(),
        sa.CheckConstraint(
            'discount_percent >= 1 AND discount_percent <= 100',
            name='ck_coupons_discount_percent_range',
        ),
        sa.CheckConstraint(
            'max_redemptions IS NULL OR max_redemptions >= 1',
            name='ck_coupons_max_redemptions_positive',
        ),
    )
    op.create_index('ix_coupons_code', 'coupons', ['code'], unique=True)

    op.create_table(
        'user_subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('plan_id', sa.Uuid(), sa.ForeignKey('pricing_plans.id'), nullable=False),
        sa.Column('coupon_id', sa.Uuid(), sa.ForeignKey('coupons.id'), index=True),
        sa.Column('stripe_subscription_id', sa.String(255), unique=True),
        sa.Column('billing_cycle', sa.String(20), server_default='monthly', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='false', nullable=False),
        sa.Column('is_trial', sa.Boolean, server_default='false', nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('deactivation_reason', sa.String(50)),
        sa.Column('coupon_redemption_slot', sa.Integer),
        *_timestamps(),
    )
    # At most one active subscription per user
    op.create_index(
        'uq_user_subscriptions_one_active',
        'user_subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )
    op.create_index(
        'uq_user_subscriptions_coupon_slot',
        'user_subscriptions',
        ['coupon_id', 'coupon_redemption_slot'],
        unique=True,
    )
    op.create_index(
        'uq_user_subscriptions_coupon_user',
        'user_subscriptions',
        ['coupon_id', 'user_id'],
        unique=True,
        postgresql_where=sa.text('coupon_redemption_slot IS NOT NULL'),
    )
    op.create_index(
        'ix_user_subscriptions_expiry',
        'user_subscriptions',
        ['is_active', 'ends_at'],
    )

    op.create_table(
        'horses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('name', sa.String(255), server_default='', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        sa.Column('disabled_at', sa.DateTime(timezone=True)),
        sa.Column('disabled_reason', sa.String(50)),
        *_timestamps(),
    )
    op.create_index('ix_horses_user_status', 'horses', ['user_id', 'status'])

    op.create_table(
        'plan_changes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('old_plan_id', sa.Uuid()),
        sa.Column('new_plan_id', sa.Uuid()),
        sa.Column('old_plan_name', sa.String(100)),
        sa.Column('new_plan_name', sa.String(100)),
        sa.Column('old_horse_limit', sa.Integer, server_default='0', nullable=False),
        sa.Column('new_horse_limit', sa.Integer, server_default='0', nullable=False),
        sa.Column('change_type', sa.String(20), nullable=False),
        sa.Column('trigger', sa.String(30), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(255)),
        sa.Column('horses_affected', sa.Integer, server_default='0', nullable=False),
        sa.Column('horses_disabled', sa.Integer, server_default='0', nullable=False),
        sa.Column('horses_reactivated', sa.Integer, server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

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
    op.create_index(
        'ix_processed_webhook_events_processed_at',
        'processed_webhook_events',
        ['processed_at'],
    )

    # Users may read their own rows; writes go through the service role
    for table in USER_OWNED_TABLES:
        op.execute(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY')
        op.execute(f"""
            CREATE POLICY "Users can view own {table}"
            ON {table} FOR SELECT
            TO authenticated
            USING (user_id = auth.uid())
        """)
        op.execute(f"""
            CREATE POLICY "Service role manages {table}"
            ON {table} FOR ALL
            TO service_role
            USING (true)
            WITH CHECK (true)
        """)


def downgrade() -> None:
    for table in USER_OWNED_TABLES:
        op.execute(f'DROP POLICY IF EXISTS "Users can view own {table}" ON {table}')
        op.execute(f'DROP POLICY IF EXISTS "Service role manages {table}" ON {table}')

    op.drop_index('ix_processed_webhook_events_processed_at', table_name='processed_webhook_events')
    op.drop_table('processed_webhook_events')
    op.drop_table('plan_changes')
    op.drop_index('ix_horses_user_status', table_name='horses')
    op.drop_table('horses')
    op.drop_index('ix_user_subscriptions_expiry', table_name='user_subscriptions')
    op.drop_index('uq_user_subscriptions_coupon_user', table_name='user_subscriptions')
    op.drop_index('uq_user_subscriptions_coupon_slot', table_name='user_subscriptions')
    op.drop_index('uq_user_subscriptions_one_active', table_name='user_subscriptions')
    op.drop_table('user_subscriptions')
    op.drop_index('ix_coupons_code', table_name='coupons')
    op.drop_table('coupons')
    op.drop_table('pricing_plans')
