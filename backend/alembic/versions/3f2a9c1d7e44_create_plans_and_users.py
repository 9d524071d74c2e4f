"""create plans and users

Revision ID: 3f2a9c1d7e44
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = '3f2a9c1d7e44'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'plans',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('stripe_price_id', sa.Text(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('currency', sa.Text(), server_default='usd', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_plans_kind', 'plans', ['kind'])
    op.create_index('ix_plans_stripe_price_id', 'plans', ['stripe_price_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('provider', sa.Text(), nullable=False),
        sa.Column('provider_id', sa.Text(), nullable=False),
        sa.Column('last_login_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('stripe_customer_id', sa.Text(), nullable=True),
        sa.Column('stripe_subscription_id', sa.Text(), nullable=True),
        sa.Column('subscription_status', sa.String(32), nullable=True),
        sa.Column('current_plan_id', sa.Text(), sa.ForeignKey('plans.id'), nullable=True),
        sa.Column('current_plan_kind', sa.String(32), nullable=True),
        sa.Column('subscription_expires_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('is_free_trial_eligible', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('has_used_free_trial', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'provider_id', name='uq_users_provider_identity'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_stripe_subscription_id', 'users', ['stripe_subscription_id'], unique=True)
    op.create_index('ix_users_current_plan_kind', 'users', ['current_plan_kind'])


def downgrade() -> None:
    op.drop_index('ix_users_current_plan_kind', table_name='users')
    op.drop_index('ix_users_stripe_subscription_id', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    op.drop_index('ix_plans_stripe_price_id', table_name='plans')
    op.drop_index('ix_plans_kind', table_name='plans')
    op.drop_table('plans')
