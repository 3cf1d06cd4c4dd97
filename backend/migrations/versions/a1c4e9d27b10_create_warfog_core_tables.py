"""create player, queue, pvp_match, game_state and platform_ledger tables

Revision ID: a1c4e9d27b10
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c4e9d27b10'
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(18, 9)


def upgrade():
    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False, server_default=''),
        sa.Column('wallet_address', sa.String(length=64), nullable=True),
        sa.Column('is_guest', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('rating', sa.Integer(), nullable=False, server_default='500'),
        sa.Column('wins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('losses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('longest_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('last_played_at', sa.Float(), nullable=True),
    )
    op.create_index('ix_player_wallet_address', 'player', ['wallet_address'], unique=True)

    op.create_table(
        'queue_entry',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False, unique=True),
        sa.Column('wager_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('joined_at', sa.Float(), nullable=False),
    )
    op.create_index('ix_queue_entry_wager_amount', 'queue_entry', ['wager_amount'])
    op.create_index('ix_queue_entry_joined_at', 'queue_entry', ['joined_at'])

    op.create_table(
        'pvp_match',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('player1_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('player2_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('wager_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('winner_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=True),
        sa.Column('end_reason', sa.String(length=32), nullable=True),
        sa.Column('forfeited_by_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=True),
        sa.Column('player1_rating_change', sa.Integer(), nullable=True),
        sa.Column('player2_rating_change', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('started_at', sa.Float(), nullable=True),
        sa.Column('ended_at', sa.Float(), nullable=True),
    )
    op.create_index('ix_pvp_match_status', 'pvp_match', ['status'])

    op.create_table(
        'game_state',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('match_id', sa.Integer(), sa.ForeignKey('pvp_match.id'), nullable=False, unique=True),
        sa.Column('current_turn', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('turn_phase', sa.String(length=16), nullable=False, server_default='planning'),
        sa.Column('player1_silos', sa.Text(), nullable=False),
        sa.Column('player2_silos', sa.Text(), nullable=False),
        sa.Column('player1_defenses', sa.Text(), nullable=True),
        sa.Column('player1_attacks', sa.Text(), nullable=True),
        sa.Column('player2_defenses', sa.Text(), nullable=True),
        sa.Column('player2_attacks', sa.Text(), nullable=True),
        sa.Column('player1_ready', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('player2_ready', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('turn_started_at', sa.Float(), nullable=True),
        sa.Column('turn_resolved_at', sa.Float(), nullable=True),
        sa.Column('last_turn_result', sa.Text(), nullable=True),
        sa.Column('turn_history', sa.Text(), nullable=True),
        sa.Column('player1_last_seen_at', sa.Float(), nullable=True),
        sa.Column('player2_last_seen_at', sa.Float(), nullable=True),
    )

    ledger = op.create_table(
        'platform_ledger',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('accumulated_fees', MONEY, nullable=False, server_default='0'),
        sa.Column('pending_payout', MONEY, nullable=False, server_default='0'),
        sa.Column('total_collected', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.Float(), nullable=False),
    )
    op.bulk_insert(ledger, [{'id': 1, 'accumulated_fees': 0, 'pending_payout': 0, 'total_collected': 0, 'updated_at': 0.0}])


def downgrade():
    op.drop_table('platform_ledger')
    op.drop_table('game_state')
    op.drop_index('ix_pvp_match_status', table_name='pvp_match')
    op.drop_table('pvp_match')
    op.drop_index('ix_queue_entry_joined_at', table_name='queue_entry')
    op.drop_index('ix_queue_entry_wager_amount', table_name='queue_entry')
    op.drop_table('queue_entry')
    op.drop_index('ix_player_wallet_address', table_name='player')
    op.drop_table('player')
