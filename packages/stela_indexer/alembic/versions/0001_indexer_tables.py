"""Indexer Tables

Revision ID: 0001_indexer_tables
Revises:
Create Date: 2026-10-18

Creates tables owned by the indexer:
- agreements: Derived agreement state
- inscriptions: Derived inscription state (repayment and share axes)
- indexer_events: Immutable event history, unique per (tx_hash, event_type, subject_id)
- indexer_cursor: Last fully indexed block
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = '0001_indexer_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # =========================================================================
    # AGREEMENTS
    # =========================================================================

    op.create_table(
        'agreements',
        sa.Column('id', sa.String(66), nullable=False),
        sa.Column('lender', sa.String(66), nullable=True),
        sa.Column('status', sa.String(20), server_default='partial', nullable=False),
        sa.Column('issued_debt_percentage', sa.Integer(), server_default='0', nullable=False),
        sa.Column('signed_at', sa.BigInteger(), nullable=True),
        sa.Column('updated_at', sa.BigInteger(), nullable=True),
        sa.Column('duration', sa.BigInteger(), nullable=True),
        sa.Column('deadline', sa.BigInteger(), nullable=True),
        sa.Column('last_block', sa.BigInteger(), nullable=True),
        sa.Column('last_log_index', sa.Integer(), nullable=True),
        sa.Column('indexed_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_agreements_status_signed_at', 'agreements', ['status', 'signed_at'])

    # =========================================================================
    # INSCRIPTIONS
    # =========================================================================

    op.create_table(
        'inscriptions',
        sa.Column('id', sa.String(66), nullable=False),
        sa.Column('status', sa.String(20), server_default='open', nullable=False),
        sa.Column('share_status', sa.String(20), server_default='open', nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=True),
        sa.Column('borrower', sa.String(66), nullable=True),
        sa.Column('duration', sa.BigInteger(), nullable=True),
        sa.Column('deadline', sa.BigInteger(), nullable=True),
        sa.Column('debt_asset_count', sa.Integer(), nullable=True),
        sa.Column('interest_asset_count', sa.Integer(), nullable=True),
        sa.Column('collateral_asset_count', sa.Integer(), nullable=True),
        sa.Column('last_block', sa.BigInteger(), nullable=True),
        sa.Column('last_log_index', sa.Integer(), nullable=True),
        sa.Column('indexed_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_inscriptions_status', 'inscriptions', ['status'])

    # =========================================================================
    # EVENT HISTORY
    # =========================================================================

    op.create_table(
        'indexer_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', sa.String(20), nullable=False),
        sa.Column('subject_type', sa.String(20), nullable=False),
        sa.Column('subject_id', sa.String(66), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.BigInteger(), nullable=False),
        sa.Column('payload', JSONB(), server_default='{}', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash', 'event_type', 'subject_id', name='uq_indexer_events_tx_type_subject'),
    )
    op.create_index(
        'idx_indexer_events_subject_position',
        'indexer_events',
        ['subject_id', 'block_number', 'log_index'],
    )

    # =========================================================================
    # CURSOR
    # =========================================================================

    op.create_table(
        'indexer_cursor',
        sa.Column('key', sa.String(50), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )


def downgrade():
    op.drop_table('indexer_cursor')
    op.drop_index('idx_indexer_events_subject_position', table_name='indexer_events')
    op.drop_table('indexer_events')
    op.drop_index('idx_inscriptions_status', table_name='inscriptions')
    op.drop_table('inscriptions')
    op.drop_index('idx_agreements_status_signed_at', table_name='agreements')
    op.drop_table('agreements')
