"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-02-16 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Analyses table (scans); pages reference it for baseline and last scan
    op.create_table(
        'analyses',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('trigger_type', sa.String(length=16), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('screenshot_url', sa.Text(), nullable=True),
        sa.Column('mobile_screenshot_url', sa.Text(), nullable=True),
        sa.Column('changes_summary', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Pages table
    op.create_table(
        'pages',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('scan_frequency', sa.String(length=16), nullable=False),
        sa.Column('metric_focus', sa.String(length=64), nullable=True),
        sa.Column('stable_baseline_id', sa.String(length=64), nullable=True),
        sa.Column('last_scan_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['stable_baseline_id'], ['analyses.id'], ),
        sa.ForeignKeyConstraint(['last_scan_id'], ['analyses.id'], )
    )

    # Detected changes table
    op.create_table(
        'detected_changes',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('page_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('element', sa.Text(), nullable=False),
        sa.Column('element_type', sa.String(length=32), nullable=True),
        sa.Column('before_value', sa.Text(), nullable=True),
        sa.Column('after_value', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('first_detected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('correlation_metrics', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('correlation_unlocked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('observation_text', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['page_id'], ['pages.id'], ),
        sa.CheckConstraint(
            "status IN ('watching', 'validated', 'regressed', 'inconclusive', 'reverted', 'superseded')",
            name='ck_detected_change_status'
        )
    )

    # Change checkpoints table: one immutable row per (change, horizon)
    op.create_table(
        'change_checkpoints',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('change_id', sa.String(length=64), nullable=False),
        sa.Column('horizon_days', sa.Integer(), nullable=False),
        sa.Column('window_before_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('window_before_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('window_after_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('window_after_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('metrics_json', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('assessment', sa.String(length=16), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('provider', sa.String(length=16), nullable=False),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['change_id'], ['detected_changes.id'], ),
        sa.UniqueConstraint('change_id', 'horizon_days', name='uq_checkpoint_change_horizon'),
        sa.CheckConstraint('horizon_days IN (7, 14, 30, 60, 90)', name='ck_checkpoint_horizon'),
        sa.CheckConstraint(
            "assessment IN ('improved', 'regressed', 'neutral', 'inconclusive')",
            name='ck_checkpoint_assessment'
        )
    )

    # Lifecycle events table
    op.create_table(
        'change_lifecycle_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('change_id', sa.String(length=64), nullable=False),
        sa.Column('from_status', sa.String(length=16), nullable=False),
        sa.Column('to_status', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('actor_type', sa.String(length=16), nullable=False),
        sa.Column('checkpoint_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['change_id'], ['detected_changes.id'], ),
        sa.ForeignKeyConstraint(['checkpoint_id'], ['change_checkpoints.id'], )
    )

    # Create indexes
    op.create_index('ix_analyses_user_id', 'analyses', ['user_id'])
    op.create_index('ix_analyses_created_at', 'analyses', ['created_at'])
    op.create_index('ix_pages_user_id', 'pages', ['user_id'])
    op.create_index('ix_detected_changes_page_id', 'detected_changes', ['page_id'])
    op.create_index('ix_detected_changes_user_id', 'detected_changes', ['user_id'])
    op.create_index('ix_detected_changes_status', 'detected_changes', ['status'])
    op.create_index('ix_change_checkpoints_change_id', 'change_checkpoints', ['change_id'])
    op.create_index('ix_change_lifecycle_events_change_id', 'change_lifecycle_events', ['change_id'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('ix_change_lifecycle_events_change_id', table_name='change_lifecycle_events')
    op.drop_index('ix_change_checkpoints_change_id', table_name='change_checkpoints')
    op.drop_index('ix_detected_changes_status', table_name='detected_changes')
    op.drop_index('ix_detected_changes_user_id', table_name='detected_changes')
    op.drop_index('ix_detected_changes_page_id', table_name='detected_changes')
    op.drop_index('ix_pages_user_id', table_name='pages')
    op.drop_index('ix_analyses_created_at', table_name='analyses')
    op.drop_index('ix_analyses_user_id', table_name='analyses')

    # Drop tables
    op.drop_table('change_lifecycle_events')
    op.drop_table('change_checkpoints')
    op.drop_table('detected_changes')
    op.drop_table('pages')
    op.drop_table('analyses')
