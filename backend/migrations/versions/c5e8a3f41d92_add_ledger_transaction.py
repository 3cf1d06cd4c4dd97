"""add ledger_transaction for deposits, withdrawals, escrow, refunds and payouts

Revision ID: c5e8a3f41d92
Revises: a1c4e9d27b10
Create Date: 2026-10-19 12:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c5e8a3f41d92'
down_revision = 'a1c4e9d27b10'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'ledger_transaction',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Numeric(18, 9), nullable=False),
        sa.Column('match_id', sa.Integer(), sa.ForeignKey('pvp_match.id'), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('reference', name='uq_ledger_transaction_reference'),
    )
    op.create_index('ix_ledger_transaction_player_id', 'ledger_transaction', ['player_id'])


def downgrade():
    op.drop_index('ix_ledger_transaction_player_id', table_name='ledger_transaction')
    op.drop_table('ledger_transaction')
