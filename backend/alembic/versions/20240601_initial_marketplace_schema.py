"""initial_marketplace_schema

Revision ID: 001_initial_marketplace
Revises:
Create Date: 2024-06-01

Creates users, wallets, auctions, bids and the ledger transaction log.
The (bid_id, kind) unique constraint on ledger_transactions keeps each bid
held once and refunded at most once.

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = '001_initial_marketplace'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('user_id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_users_status', 'users', ['status'])

    op.create_table(
        'wallets',
        sa.Column('wallet_id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.user_id'), nullable=False, unique=True),
        sa.Column('balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('balance >= 0', name='chk_wallet_balance_non_negative'),
    )

    op.create_table(
        'auctions',
        sa.Column('auction_id', sa.Uuid(), primary_key=True),
        sa.Column('seller_id', sa.Uuid(), sa.ForeignKey('users.user_id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('condition', sa.String(20), nullable=False),
        sa.Column('media_kind', sa.String(10), nullable=True),
        sa.Column('media_refs', sa.JSON(), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('starting_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('current_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('winner_id', sa.Uuid(), sa.ForeignKey('users.user_id'), nullable=True),
        sa.Column('bid_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('starting_price > 0', name='chk_auction_starting_price_positive'),
        sa.CheckConstraint('current_price >= starting_price', name='chk_auction_price_floor'),
    )
    op.create_index('idx_auctions_status_end', 'auctions', ['status', 'end_time'])
    op.create_index('idx_auctions_seller_created', 'auctions', ['seller_id', 'created_at'])
    op.create_index('idx_auctions_category', 'auctions', ['category'])

    op.create_table(
        'bids',
        sa.Column('bid_id', sa.Uuid(), primary_key=True),
        sa.Column('auction_id', sa.Uuid(), sa.ForeignKey('auctions.auction_id'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.user_id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('hold_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('amount > 0', name='chk_bid_amount_positive'),
        sa.CheckConstraint('hold_amount >= 0', name='chk_bid_hold_non_negative'),
    )
    op.create_index('uq_bids_auction_sequence', 'bids', ['auction_id', 'sequence'], unique=True)
    op.create_index('idx_bids_auction_amount', 'bids', ['auction_id', 'amount'])
    op.create_index('idx_bids_user_created', 'bids', ['user_id', 'created_at'])

    op.create_table(
        'ledger_transactions',
        sa.Column('transaction_id', sa.Uuid(), primary_key=True),
        sa.Column('wallet_id', sa.Uuid(), sa.ForeignKey('wallets.wallet_id'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.user_id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('description', sa.String(500), nullable=False, server_default=''),
        sa.Column('auction_id', sa.Uuid(), sa.ForeignKey('auctions.auction_id'), nullable=True),
        sa.Column('bid_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('amount <> 0', name='chk_ledger_amount_non_zero'),
        sa.UniqueConstraint('bid_id', 'kind', name='uq_ledger_bid_kind'),
    )
    op.create_index('idx_ledger_user_created', 'ledger_transactions', ['user_id', 'created_at'])
    op.create_index('idx_ledger_auction', 'ledger_transactions', ['auction_id'])


def downgrade() -> None:
    op.drop_table('ledger_transactions')
    op.drop_table('bids')
    op.drop_table('auctions')
    op.drop_table('wallets')
    op.drop_table('users')
