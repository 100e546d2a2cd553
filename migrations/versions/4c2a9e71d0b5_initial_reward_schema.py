"""initial reward schema

Revision ID: 4c2a9e71d0b5
Revises:
Create Date: 2026-10-19 09:12:44.118203

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e71d0b5'
down_revision = None
branch_labels = None
depends_on = None

AMOUNT = sa.Numeric(precision=18, scale=6)
RATE = sa.Numeric(precision=10, scale=6)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('wallet_address', sa.String(length=42), nullable=True),
        sa.Column('email', sa.String(length=120), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('referrer_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('wallet_address'),
        sa.UniqueConstraint('email'),
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_role'), ['role'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_referrer_id'), ['referrer_id'], unique=False)

    op.create_table(
        'permit_signatures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('owner_address', sa.String(length=42), nullable=False),
        sa.Column('spender_address', sa.String(length=42), nullable=False),
        sa.Column('token_address', sa.String(length=42), nullable=True),
        sa.Column('value', sa.String(length=80), nullable=False),
        sa.Column('nonce', sa.BigInteger(), nullable=False),
        sa.Column('deadline', sa.BigInteger(), nullable=False),
        sa.Column('v', sa.Integer(), nullable=True),
        sa.Column('r', sa.String(length=66), nullable=True),
        sa.Column('s', sa.String(length=66), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('executed_at', sa.DateTime(), nullable=True),
        sa.Column('tx_hash', sa.String(length=66), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('permit_signatures', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_permit_signatures_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_permit_signatures_owner_address'), ['owner_address'], unique=False)
        batch_op.create_index(batch_op.f('ix_permit_signatures_status'), ['status'], unique=False)

    op.create_table(
        'profit_tiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=40), nullable=False),
        sa.Column('min_amount', AMOUNT, nullable=False),
        sa.Column('max_amount', AMOUNT, nullable=False),
        sa.Column('rate', RATE, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('min_amount < max_amount', name='ck_tier_range'),
        sa.CheckConstraint('rate >= 0', name='ck_tier_rate'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'community_levels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('reward_pool', AMOUNT, nullable=False),
        sa.Column('daily_rate', RATE, nullable=False),
        sa.Column('unlock_volume_normal', AMOUNT, nullable=False),
        sa.Column('unlock_volume_influencer', AMOUNT, nullable=False),
        *_timestamps(),
        sa.CheckConstraint('level >= 1 AND level <= 6', name='ck_community_level_range'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('level'),
    )

    op.create_table(
        'referral_commission_rates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('rate', RATE, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('level >= 1 AND level <= 6', name='ck_commission_level_range'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('level'),
    )

    op.create_table(
        'reward_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('interval_seconds', sa.Integer(), nullable=False),
        sa.Column('min_withdrawal_usdc', AMOUNT, nullable=False),
        sa.Column('min_withdrawal_pol', AMOUNT, nullable=False),
        sa.Column('last_distribution_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'snapshot_rounds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('total_users', sa.Integer(), nullable=False),
        sa.Column('total_amount', AMOUNT, nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('distributed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('snapshot_rounds', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_snapshot_rounds_status'), ['status'], unique=False)

    op.create_table(
        'round_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('round_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('wallet_address', sa.String(length=42), nullable=False),
        sa.Column('balance', AMOUNT, nullable=False),
        sa.Column('tier_id', sa.Integer(), nullable=True),
        sa.Column('tier_name', sa.String(length=40), nullable=False),
        sa.Column('rate', RATE, nullable=False),
        sa.Column('profit', AMOUNT, nullable=False),
        sa.Column('credited', sa.Boolean(), nullable=False),
        sa.Column('credited_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['round_id'], ['snapshot_rounds.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['tier_id'], ['profit_tiers.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('round_id', 'user_id', name='uq_round_line_item_user'),
    )
    with op.batch_alter_table('round_line_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_round_line_items_user_id'), ['user_id'], unique=False)
        batch_op.create_index('idx_round_line_item_pending', ['round_id', 'credited'], unique=False)

    op.create_table(
        'referral_commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('round_id', sa.Integer(), nullable=False),
        sa.Column('beneficiary_id', sa.Integer(), nullable=False),
        sa.Column('source_user_id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('source_profit', AMOUNT, nullable=False),
        sa.Column('rate', RATE, nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('credited', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['round_id'], ['snapshot_rounds.id']),
        sa.ForeignKeyConstraint(['beneficiary_id'], ['users.id']),
        sa.ForeignKeyConstraint(['source_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('round_id', 'beneficiary_id', 'source_user_id', 'level', name='uq_referral_commission'),
    )
    with op.batch_alter_table('referral_commissions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_referral_commissions_round_id'), ['round_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_referral_commissions_beneficiary_id'), ['beneficiary_id'], unique=False)

    op.create_table(
        'ledger_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('asset', sa.String(length=10), nullable=False),
        sa.Column('lifetime_earned', AMOUNT, nullable=False),
        sa.Column('lifetime_commission', AMOUNT, nullable=False),
        sa.Column('available', AMOUNT, nullable=False),
        sa.Column('lifetime_withdrawn', AMOUNT, nullable=False),
        sa.Column('current_tier', sa.String(length=40), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('available >= 0', name='ck_ledger_available_non_negative'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'asset', name='uq_ledger_user_asset'),
    )

    op.create_table(
        'withdrawal_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('asset', sa.String(length=10), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('destination', sa.String(length=42), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('tx_hash', sa.String(length=66), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_withdrawal_amount_positive'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['resolved_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('withdrawal_requests', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_withdrawal_requests_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_withdrawal_requests_status'), ['status'], unique=False)

    op.create_table(
        'community_status',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('real_level', sa.Integer(), nullable=False),
        sa.Column('current_level', sa.Integer(), nullable=False),
        sa.Column('is_admin_override', sa.Boolean(), nullable=False),
        sa.Column('admin_set_level', sa.Integer(), nullable=True),
        sa.Column('is_influencer', sa.Boolean(), nullable=False),
        sa.Column('team_volume', AMOUNT, nullable=False),
        sa.Column('volume_refreshed_at', sa.DateTime(), nullable=True),
        sa.Column('total_community_earned', AMOUNT, nullable=False),
        sa.Column('last_daily_earning_date', sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table(
        'pool_claims',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'level', name='uq_pool_claim_user_level'),
    )

    op.create_table(
        'daily_earning_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('earning_date', sa.Date(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('credited', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'earning_date', name='uq_daily_earning_user_date'),
    )
    with op.batch_alter_table('daily_earning_records', schema=None) as batch_op:
        batch_op.create_index('idx_daily_earning_date', ['earning_date'], unique=False)

    op.create_table(
        'task_progress',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('total_task_bonus', AMOUNT, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table(
        'task_submissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('task_key', sa.String(length=64), nullable=False),
        sa.Column('reward', AMOUNT, nullable=False),
        sa.Column('proof', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('reviewer_id', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['reviewer_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'task_key', name='uq_task_submission_user_task'),
    )
    with op.batch_alter_table('task_submissions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_task_submissions_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_task_submissions_status'), ['status'], unique=False)


def downgrade():
    for table in (
        'task_submissions',
        'task_progress',
        'daily_earning_records',
        'pool_claims',
        'community_status',
        'withdrawal_requests',
        'ledger_balances',
        'referral_commissions',
        'round_line_items',
        'snapshot_rounds',
        'reward_settings',
        'referral_commission_rates',
        'community_levels',
        'profit_tiers',
        'permit_signatures',
        'users',
    ):
        op.drop_table(table)
