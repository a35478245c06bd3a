"""initial wallet ledger, rounds, nonces and event log

Revision ID: 0001
Revises:
Create Date: 2026-09-28 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'operators',
        sa.Column('operator_id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('hmac_secret', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'request_nonces',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('operator_id', sa.String(), nullable=False),
        sa.Column('nonce', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('operator_id', 'nonce', name='uq_operator_nonce'),
    )
    op.create_table(
        'wallet_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('operator_id', sa.String(), nullable=False),
        sa.Column('player_id', sa.String(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('balance_cents', sa.BigInteger(), nullable=False),
        sa.Column('initial_balance_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('operator_id', 'player_id', 'currency', name='uq_account_identity'),
        sa.CheckConstraint('balance_cents >= 0', name='ck_balance_non_negative'),
    )
    op.create_table(
        'wallet_transactions',
        sa.Column('tx_id', sa.String(), primary_key=True),
        sa.Column('operator_id', sa.String(), nullable=False),
        sa.Column('player_id', sa.String(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('client_txn_id', sa.String(), nullable=False),
        sa.Column('round_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            'operator_id', 'player_id', 'currency', 'type', 'client_txn_id',
            name='uq_wallet_tx_idempotency',
        ),
    )
    op.create_index('ix_wallet_transactions_round_id', 'wallet_transactions', ['round_id'])
    op.create_table(
        'rounds',
        sa.Column('round_id', sa.String(), primary_key=True),
        sa.Column('operator_id', sa.String(), nullable=False),
        sa.Column('player_id', sa.String(), nullable=False),
        sa.Column('game_id', sa.String(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('wager_cents', sa.BigInteger(), nullable=False),
        sa.Column('seed', sa.String(), nullable=False),
        sa.Column('outcome', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('bet_tx_id', sa.String(), nullable=True),
        sa.Column('win_tx_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('committed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rolled_back_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_rounds_player_id', 'rounds', ['player_id'])
    op.create_table(
        'round_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('operator_id', sa.String(), nullable=False),
        sa.Column('player_id', sa.String(), nullable=True),
        sa.Column('round_id', sa.String(), nullable=True),
        sa.Column('game_id', sa.String(), nullable=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_round_events_round_id', 'round_events', ['round_id'])
    op.create_table(
        'games',
        sa.Column('game_id', sa.String(), primary_key=True),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table('games')
    op.drop_index('ix_round_events_round_id', table_name='round_events')
    op.drop_table('round_events')
    op.drop_index('ix_rounds_player_id', table_name='rounds')
    op.drop_table('rounds')
    op.drop_index('ix_wallet_transactions_round_id', table_name='wallet_transactions')
    op.drop_table('wallet_transactions')
    op.drop_table('wallet_accounts')
    op.drop_table('request_nonces')
    op.drop_table('operators')
