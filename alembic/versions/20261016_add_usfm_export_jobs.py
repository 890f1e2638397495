"""Add USFM export jobs table.

Revision ID: add_usfm_export_jobs
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'add_usfm_export_jobs'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'usfm_export_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('queue_name', sa.String(100), nullable=False),
        # Request
        sa.Column('project_unit_id', sa.Integer(), nullable=False),
        sa.Column('book_ids', sa.JSON(), nullable=True),
        sa.Column('requested_by', sa.String(255), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        # State
        sa.Column('status', sa.String(20), nullable=False, server_default='queued'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('error_kind', sa.String(30), nullable=True),
        # Result
        sa.Column('filename', sa.String(255), nullable=True),
        sa.Column('size_bytes', sa.BigInteger(), nullable=True),
        sa.Column('project_name', sa.String(255), nullable=True),
        # Delivery
        sa.Column('run_after', sa.DateTime(timezone=True), nullable=False),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_usfm_export_jobs_project_unit_id', 'usfm_export_jobs', ['project_unit_id'])
    op.create_index(
        'ix_usfm_export_jobs_claim', 'usfm_export_jobs', ['queue_name', 'status', 'run_after']
    )


def downgrade() -> None:
    op.drop_index('ix_usfm_export_jobs_claim', table_name='usfm_export_jobs')
    op.drop_index('ix_usfm_export_jobs_project_unit_id', table_name='usfm_export_jobs')
    op.drop_table('usfm_export_jobs')
