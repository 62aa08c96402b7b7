"""
Import job tracking.

Each upload creates a ``JobRun`` keyed by its Celery task id; the task
appends ``JobProgress`` rows as the import moves through its stages and
stores the final import result on the run.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, TIMESTAMP, ForeignKey, Numeric, Text,
    CheckConstraint, Index, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from backend.models.schema import Base


class JobStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class JobType(str, Enum):
    ORDER_IMPORT = 'order_import'


FINISHED_STATUSES = (JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.CANCELLED)


class JobRun(Base):
    """An order import, from upload to its final result."""

    __tablename__ = 'job_runs'
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'success', 'failed', 'cancelled')",
            name='job_runs_status_check'
        ),
        Index('idx_job_runs_status', 'status'),
        Index('idx_job_runs_created_at', 'created_at'),
        Index('idx_job_runs_organization', 'organization_id'),
        {'comment': 'Order import jobs'}
    )

    job_id = Column(String(255), primary_key=True, nullable=False, comment='Celery task UUID')
    job_type = Column(String(50), nullable=False, server_default=JobType.ORDER_IMPORT.value)
    status = Column(String(20), nullable=False, server_default='pending')
    organization_id = Column(
        String(64),
        nullable=False,
        comment='Organization the import writes into'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    started_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)

    params = Column(
        JSONB,
        server_default='{}',
        nullable=False,
        comment='filename, header mapping, file size'
    )
    result = Column(
        JSONB,
        nullable=True,
        comment='status, stats, errors, cancelled_at_batch, log'
    )
    error = Column(
        JSONB,
        nullable=True,
        comment='Failure details, or who requested cancellation'
    )
    created_by = Column(String(255), nullable=True, comment='API key of the uploader')

    progress = relationship(
        'JobProgress',
        back_populates='job',
        cascade='all, delete-orphan',
        order_by='JobProgress.timestamp'
    )

    def __repr__(self):
        return f"<JobRun(job_id='{self.job_id}', org='{self.organization_id}', status='{self.status}')>"

    def is_complete(self) -> bool:
        return self.status in FINISHED_STATUSES

    def request_cancel(self, requested_by: str):
        """
        Record a cancel request on the run.

        The worker observes the request through Redis; the status only
        becomes ``cancelled`` once the import stops at a batch boundary.
        """
        self.error = {
            'cancel_requested_by': requested_by,
            'cancel_requested_at': datetime.utcnow().isoformat()
        }


class JobProgress(Base):
    """A persisted progress snapshot; outlives the Redis copy."""

    __tablename__ = 'job_progress'
    __table_args__ = (
        Index('idx_job_progress_job_id', 'job_id'),
        Index('idx_job_progress_timestamp', 'timestamp'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    job_id = Column(
        String(255),
        ForeignKey('job_runs.job_id', ondelete='CASCADE'),
        nullable=False
    )
    stage = Column(
        String(50),
        nullable=False,
        comment='snapshot, clients, services, workers, preparing, orders, complete'
    )
    current = Column(Integer, nullable=False, server_default='0', comment='Source rows reached')
    total = Column(Integer, nullable=False, server_default='0', comment='Rows in file')
    percent = Column(Numeric(5, 2), nullable=False)
    message = Column(Text, nullable=True, comment='Operation label')
    timestamp = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    job = relationship('JobRun', back_populates='progress')
