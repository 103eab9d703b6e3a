"""Initial schema: items, stage ledger, summaries, sync records, digests

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-01-06

The stage ledger is append-only. The partial unique index on
(item_id, stage) WHERE outcome = 'success' is what guarantees an item is
never recorded as succeeding twice at the same stage.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Items
    op.create_table(
        'items',
        sa.Column('id', sa.String(16), primary_key=True),
        sa.Column('title', sa.Text, nullable=False),
        sa.Column('source_url', sa.Text, nullable=False, unique=True),
        sa.Column('body', sa.Text, nullable=False, server_default=''),
        sa.Column('published_at', sa.DateTime, nullable=False),
        sa.Column('source', sa.String(32), nullable=False, server_default='other'),
        sa.Column('ingested_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_items_published_at', 'items', ['published_at'])
    op.create_index('ix_items_ingested_at', 'items', ['ingested_at'])

    # Stage ledger
    op.create_table(
        'stage_events',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('item_id', sa.String(16), sa.ForeignKey('items.id'), nullable=False),
        sa.Column('stage', sa.String(16), nullable=False),
        sa.Column('outcome', sa.String(16), nullable=False),
        sa.Column('error_detail', sa.Text, nullable=True),
        sa.Column('score', sa.Float, nullable=True),
        sa.Column('occurred_at', sa.DateTime, nullable=False),
        sa.Column('requeued_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_stage_events_item_stage', 'stage_events', ['item_id', 'stage'])
    op.create_index('ix_stage_events_stage_outcome', 'stage_events', ['stage', 'outcome'])
    op.create_index(
        'uq_stage_events_single_success',
        'stage_events',
        ['item_id', 'stage'],
        unique=True,
        sqlite_where=sa.text("outcome = 'success'"),
        postgresql_where=sa.text("outcome = 'success'"),
    )

    # Summaries
    op.create_table(
        'summaries',
        sa.Column('item_id', sa.String(16), sa.ForeignKey('items.id'), primary_key=True),
        sa.Column('short_summary', sa.Text, nullable=False),
        sa.Column('detailed_summary', sa.Text, nullable=True),
        sa.Column('tokens_used', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )

    # Sync records (one remote page per published item)
    op.create_table(
        'sync_records',
        sa.Column('item_id', sa.String(16), sa.ForeignKey('items.id'), primary_key=True),
        sa.Column('remote_page_id', sa.String(64), nullable=False),
        sa.Column('synced_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_sync_records_synced_at', 'sync_records', ['synced_at'])

    # Digests
    op.create_table(
        'digest_records',
        sa.Column('period_kind', sa.String(8), primary_key=True),
        sa.Column('period_key', sa.String(10), primary_key=True),
        sa.Column('period_start', sa.DateTime, nullable=False),
        sa.Column('period_end', sa.DateTime, nullable=False),
        sa.Column('item_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('narrative', sa.Text, nullable=False, server_default=''),
        sa.Column('tokens_used', sa.Integer, nullable=False, server_default='0'),
        sa.Column('remote_page_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )


def downgrade() -> None:
    op.drop_table('digest_records')
    op.drop_index('ix_sync_records_synced_at', table_name='sync_records')
    op.drop_table('sync_records')
    op.drop_table('summaries')
    op.drop_index('uq_stage_events_single_success', table_name='stage_events')
    op.drop_index('ix_stage_events_stage_outcome', table_name='stage_events')
    op.drop_index('ix_stage_events_item_stage', table_name='stage_events')
    op.drop_table('stage_events')
    op.drop_index('ix_items_ingested_at', table_name='items')
    op.drop_index('ix_items_published_at', table_name='items')
    op.drop_table('items')
