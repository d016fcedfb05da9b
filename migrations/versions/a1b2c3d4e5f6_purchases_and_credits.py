"""purchases_and_credits

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-17 09:00:00.000000

Purchases (one per checkout session) and the credits a completed purchase
issues. The unique provider_session_id is what makes fulfillment idempotent.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'purchases',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('provider_session_id', sa.String(255), nullable=False),
        sa.Column('tier', sa.String(16), nullable=True),
        sa.Column('credit_pack', sa.String(32), nullable=True),
        sa.Column('addons', sa.JSON(), nullable=False),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('job_post_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('featured_post_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('social_graphic_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('repost_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.UniqueConstraint('provider_session_id', name='uq_purchases_provider_session_id'),
    )
    op.create_index('ix_purchases_user_id', 'purchases', ['user_id'])
    op.create_index('ix_purchases_user_status', 'purchases', ['user_id', 'status'])

    op.create_table(
        'credits',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('purchase_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('is_used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('used_for_job_id', sa.String(64), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id']),
    )
    op.create_index('ix_credits_purchase_id', 'credits', ['purchase_id'])
    # Claim scan: user's unused credits of a type, soonest expiry first
    op.create_index('ix_credits_claim_scan', 'credits',
                    ['user_id', 'type', 'is_used', 'expires_at'])


def downgrade() -> None:
    op.drop_index('ix_credits_claim_scan', table_name='credits')
    op.drop_index('ix_credits_purchase_id', table_name='credits')
    op.drop_table('credits')
    op.drop_index('ix_purchases_user_status', table_name='purchases')
    op.drop_index('ix_purchases_user_id', table_name='purchases')
    op.drop_table('purchases')
