"""add order import job tracking

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

JOB_RUN_INDEXES = (
    ('idx_job_runs_status', ['status']),
    ('idx_job_runs_created_at', ['created_at']),
    ('idx_job_runs_organization', ['organization_id']),
)

JOB_PROGRESS_INDEXES = (
    ('idx_job_progress_job_id', ['job_id']),
    ('idx_job_progress_timestamp', ['timestamp']),
)


def _jsonb():
    return postgresql.JSONB(astext_type=sa.Text())


def upgrade() -> None:
    """job_runs: one row per uploaded export; job_progress: its snapshots."""
    op.create_table(
        'job_runs',
        sa.Column('job_id', sa.String(length=255), nullable=False, comment='Celery task UUID'),
        sa.Column('job_type', sa.String(length=50), nullable=False, server_default='order_import'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('organization_id', sa.String(length=64), nullable=False,
                  comment='Organization the import writes into'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('started_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('params', _jsonb(), server_default='{}', nullable=False,
                  comment='filename, header mapping, file size'),
        sa.Column('result', _jsonb(), nullable=True,
                  comment='status, stats, errors, cancelled_at_batch, log'),
        sa.Column('error', _jsonb(), nullable=True,
                  comment='Failure details, or who requested cancellation'),
        sa.Column('created_by', sa.String(length=255), nullable=True, comment='API key of the uploader'),
        sa.CheckConstraint("status IN ('pending', 'processing', 'success', 'failed', 'cancelled')",
                           name='job_runs_status_check'),
        sa.PrimaryKeyConstraint('job_id'),
        comment='Order import jobs'
    )
    for name, columns in JOB_RUN_INDEXES:
        op.create_index(name, 'job_runs', columns)

    op.create_table(
        'job_progress',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.String(length=255), nullable=False),
        sa.Column('stage', sa.String(length=50), nullable=False,
                  comment='snapshot, clients, services, workers, preparing, orders, complete'),
        sa.Column('current', sa.Integer(), server_default='0', nullable=False, comment='Source rows reached'),
        sa.Column('total', sa.Integer(), server_default='0', nullable=False, comment='Rows in file'),
        sa.Column('percent', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('message', sa.Text(), nullable=True, comment='Operation label'),
        sa.Column('timestamp', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['job_runs.job_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
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
