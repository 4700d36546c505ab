"""job tracking for classification and conversion tasks

Revision ID: 002_job_tracking
Revises: 001_initial_schema
Create Date: 2025-10-15 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '002_job_tracking'
down_revision = '001_initial_schema'
branch_labels = None
depends_on = None

JSONB = postgresql.JSONB(astext_type=sa.Text())

JOB_RUN_INDEXES = [
    ('idx_job_runs_status', ['status']),
    ('idx_job_runs_created_at', ['created_at']),
    ('idx_job_runs_file_id', ['file_id']),
    ('idx_job_runs_type_status', ['job_type', 'status']),
]

JOB_PROGRESS_INDEXES = [
    ('idx_job_progress_job_id', ['job_id']),
    ('idx_job_progress_timestamp', ['timestamp']),
    ('idx_job_progress_job_stage', ['job_id', 'stage']),
]


def upgrade() -> None:
    op.create_table(
        'job_runs',
        sa.Column('job_id', sa.String(length=255), primary_key=True, comment='Celery task UUID'),
        sa.Column('job_type', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('started_at', sa.TIMESTAMP()),
        sa.Column('completed_at', sa.TIMESTAMP()),
        sa.Column('params', JSONB, nullable=False, server_default='{}'),
        sa.Column('result', JSONB),
        sa.Column('error', JSONB),
        sa.Column('file_id', sa.String(length=36), sa.ForeignKey('files.id', ondelete='SET NULL'),
                  comment='File being classified or converted'),
        sa.Column('created_by', sa.String(length=255), comment='User or API key that created the job'),
        sa.CheckConstraint("status IN ('pending', 'processing', 'success', 'failed', 'cancelled')",
                           name='job_runs_status_check'),
        sa.CheckConstraint("job_type IN ('classification', 'conversion')", name='job_runs_job_type_check'),
        comment='Classification and PDF conversion jobs'
    )
    for name, columns in JOB_RUN_INDEXES:
        op.create_index(name, 'job_runs', columns)

    op.create_table(
        'job_progress',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('job_id', sa.String(length=255), sa.ForeignKey('job_runs.job_id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('stage', sa.String(length=50), nullable=False, comment='e.g. loading, classifying, writing'),
        sa.Column('percent', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('message', sa.Text()),
        sa.Column('timestamp', sa.TIMESTAMP(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        comment='Progress reports for jobs'
    )
    for name, columns in JOB_PROGRESS_INDEXES:
        op.create_index(name, 'job_progress', columns)


def downgrade() -> None:
    for name, _ in reversed(JOB_PROGRESS_INDEXES):
        op.drop_index(name, table_name='job_progress')
    op.drop_table('job_progress')

    for name, _ in reversed(JOB_RUN_INDEXES):
        op.drop_index(name, table_name='job_runs')
    op.drop_table('job_runs')
