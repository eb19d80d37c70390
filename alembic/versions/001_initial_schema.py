"""scan_jobs and scan_reports

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

scan_job_status = sa.Enum(
    'queued', 'running', 'completed', 'failed', 'rejected', 'rate_limited',
    name='scanjobstatus',
)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'scan_jobs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('domain', sa.String(253), nullable=False),
        sa.Column('scan_url', sa.Text(), nullable=False),
        sa.Column('status', scan_job_status, nullable=False),
        sa.Column('ip', sa.String(64), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False),
        sa.Column('make_public', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('failure_code', sa.String(32), nullable=True),
        sa.Column('result_json', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scan_jobs_id'), 'scan_jobs', ['id'], unique=False)
    op.create_index('idx_scan_jobs_domain_status', 'scan_jobs', ['domain', 'status'], unique=False)
    op.create_index('idx_scan_jobs_status_created', 'scan_jobs', ['status', 'created_at'], unique=False)
    op.create_index('idx_scan_jobs_expires_at', 'scan_jobs', ['expires_at'], unique=False)

    op.create_table(
        'scan_reports',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('domain', sa.String(253), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('wcag_level', sa.String(16), nullable=False),
        sa.Column('is_public', sa.Boolean(), nullable=False),
        sa.Column('private_token', sa.String(64), nullable=False),
        sa.Column('opted_out', sa.Boolean(), nullable=False),
        sa.Column('totals', sa.JSON(), nullable=False),
        sa.Column('issue_breakdown', sa.JSON(), nullable=False),
        sa.Column('issues', sa.JSON(), nullable=False),
        sa.Column('last_scanned_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scan_reports_id'), 'scan_reports', ['id'], unique=False)
    op.create_index(op.f('ix_scan_reports_domain'), 'scan_reports', ['domain'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_scan_reports_domain'), table_name='scan_reports')
    op.drop_index(op.f('ix_scan_reports_id'), table_name='scan_reports')
    op.drop_table('scan_reports')

    op.drop_index('idx_scan_jobs_expires_at', table_name='scan_jobs')
    op.drop_index('idx_scan_jobs_status_created', table_name='scan_jobs')
    op.drop_index('idx_scan_jobs_domain_status', table_name='scan_jobs')
    op.drop_index(op.f('ix_scan_jobs_id'), table_name='scan_jobs')
    op.drop_table('scan_jobs')
    scan_job_status.drop(op.get_bind(), checkfirst=True)
