"""Capture pipeline schema

Revision ID: 3f9c2a7d1b40
Revises: 
Create Date: 2026-10-17 09:12:44.201733

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create capture groups, captures and the job queue."""
    # Create capture_groups table
    op.create_table(
        'capture_groups',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('project_id', sa.String(length=255), nullable=True),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=512), nullable=False),
        sa.Column('base_url', sa.Text(), nullable=False),
        sa.Column('expected_total', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('params_json', sa.JSON(), nullable=True,
                  comment='Requested parameters: time frames, options, auto-scroll, crawl limits'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('expected_total >= 0', name='ck_groups_expected_total'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_capture_groups_owner_id'), 'capture_groups', ['owner_id'])
    op.create_index(op.f('ix_capture_groups_status'), 'capture_groups', ['status'])

    # Create captures table
    op.create_table(
        'captures',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('project_id', sa.String(length=255), nullable=True),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('group_id', sa.String(length=36), nullable=True),
        sa.Column('parent_id', sa.String(length=36), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('image_path', sa.String(length=1024), nullable=True),
        sa.Column('thumbnail_path', sa.String(length=1024), nullable=True),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata_json', sa.JSON(), nullable=True,
                  comment='Kind-specific metadata (frame, scroll, trigger, form step)'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['group_id'], ['capture_groups.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_id'], ['captures.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_captures_group_status', 'captures', ['group_id', 'status'])
    op.create_index('idx_captures_parent', 'captures', ['parent_id'])
    op.create_index(op.f('ix_captures_owner_id'), 'captures', ['owner_id'])

    # Create capture_jobs table
    op.create_table(
        'capture_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('payload_json', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('run_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_jobs_status_run_at', 'capture_jobs', ['status', 'run_at'])


def downgrade() -> None:
    """Drop capture pipeline schema."""
    op.drop_index('idx_jobs_status_run_at', table_name='capture_jobs')
    op.drop_table('capture_jobs')

    op.drop_index(op.f('ix_captures_owner_id'), table_name='captures')
    op.drop_index('idx_captures_parent', table_name='captures')
    op.drop_index('idx_captures_group_status', table_name='captures')
    op.drop_table('captures')

    op.drop_index(op.f('ix_capture_groups_status'), table_name='capture_groups')
    op.drop_index(op.f('ix_capture_groups_owner_id'), table_name='capture_groups')
    op.drop_table('capture_groups')
