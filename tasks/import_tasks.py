"""
Import background tasks.

This module defines the Celery task that runs an order import with
progress tracking and cooperative cancellation.
"""

import os
import json
import logging
import traceback
from datetime import datetime, timedelta
from typing import Dict, Any, Optional
import redis

from celery import Task
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from api.config import settings
from tasks.celery_app import celery_app
from services.data_store import SqlAlchemyDataStore
from services.order_import_service import (
    OrderImportService, STATUS_CANCELLED, STATUS_FAILED, STATUS_SUCCESS
)
from backend.models.job import JobRun, JobProgress, JobStatus

logger = logging.getLogger(__name__)

# Create Redis client
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

# Create database engine and session factory
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db_session() -> Session:
    """Get database session."""
    return SessionLocal()


def progress_key(job_id: str) -> str:
    return f'job_progress:{job_id}'


def cancel_key(job_id: str) -> str:
    return f'job_cancel:{job_id}'


RESULT_STATUS = {
    STATUS_SUCCESS: JobStatus.SUCCESS,
    STATUS_CANCELLED: JobStatus.CANCELLED,
    STATUS_FAILED: JobStatus.FAILED,
}


class ImportTask(Task):
    """
    Base task class with progress tracking.

    Provides methods for updating job progress in both Redis (for real-time)
    and PostgreSQL (for persistence).
    """

    _last_persisted: Optional[tuple] = None

    def on_progress(self, snapshot: Dict[str, Any]):
        """
        Store a reporter snapshot in Redis and, when the stage or row
        counter moved, in the job_progress table.

        Args:
            snapshot: Dict produced by ProgressReporter.snapshot()
        """
        job_id = self.request.id

        try:
            redis_client.setex(
                progress_key(job_id),
                settings.PROGRESS_CACHE_EXPIRY,
                json.dumps(snapshot, default=str)
            )

            marker = (job_id, snapshot['stage'], snapshot['current'])
            if marker == self._last_persisted:
                return
            self._last_persisted = marker

            with get_db_session() as session:
                progress = JobProgress(
                    job_id=job_id,
                    stage=snapshot['stage'],
                    current=snapshot['current'],
                    total=snapshot['total'],
                    percent=snapshot['percent'],
                    message=snapshot['message']
                )
                session.add(progress)
                session.commit()

            logger.debug(f"Progress updated: {job_id} - {snapshot['stage']} ({snapshot['percent']}%)")

        except (redis.RedisError, SQLAlchemyError) as e:
            logger.error(f"Error updating progress for {job_id}: {e}")

    def cancel_requested(self) -> bool:
        """True once the API has set the job's cancel flag."""
        try:
            return bool(redis_client.exists(cancel_key(self.request.id)))
        except redis.RedisError as e:
            logger.warning(f"Could not read cancel flag for {self.request.id}: {e}")
            return False

    def update_job_status(self, job_id: str, status: str, **kwargs):
        """
        Update job status in database.

        Args:
            job_id: Job ID
            status: New status
            **kwargs: Additional fields to update (result, error, etc.)
        """
        try:
            with get_db_session() as session:
                job_run = session.query(JobRun).filter_by(job_id=job_id).first()
                if job_run:
                    job_run.status = status

                    for key, value in kwargs.items():
                        if hasattr(job_run, key):
                            setattr(job_run, key, value)

                    session.commit()
                    logger.info(f"Job {job_id} status updated to {status}")
                else:
                    logger.warning(f"Job {job_id} not found in database")
        except SQLAlchemyError as e:
            logger.error(f"Error updating job status for {job_id}: {e}")


def _remove_temp_file(file_path: str):
    if not file_path.startswith(settings.TEMP_UPLOAD_DIR):
        return
    try:
        os.remove(file_path)
        logger.info(f"Cleaned up temporary file: {file_path}")
    except OSError as e:
        logger.warning(f"Could not remove temp file {file_path}: {e}")


@celery_app.task(base=ImportTask, bind=True, name='tasks.import_tasks.import_order_file')
def import_order_file(self, file_path: str, organization_id: str,
                      header_mapping: Optional[Dict[str, Optional[str]]] = None) -> Dict[str, Any]:
    """
    Background task to import an order export.

    Args:
        file_path: Path to the uploaded csv/xlsx file
        organization_id: Organization the records are written into
        header_mapping: Column -> field mapping; suggested from the
            headers when omitted

    Returns:
        Import result dictionary (status, stats, errors, cancelled_at_batch, log)
    """
    job_id = self.request.id
    logger.info(f"Starting import task {job_id} for organization {organization_id}: {file_path}")

    try:
        self.update_job_status(
            job_id=job_id,
            status=JobStatus.PROCESSING,
            started_at=datetime.utcnow()
        )

        with get_db_session() as session:
            store = SqlAlchemyDataStore(session, organization_id,
                                        page_size=settings.SNAPSHOT_PAGE_SIZE)
            service = OrderImportService(
                store,
                progress_callback=self.on_progress,
                cancel_check=self.cancel_requested,
                **settings.import_options()
            )
            result = service.import_file(file_path, header_mapping)

        final_status = RESULT_STATUS[result['status']]
        extra = {}
        if final_status == JobStatus.FAILED:
            extra['error'] = {'error': '; '.join(result['errors']) or 'Import failed'}
        self.update_job_status(
            job_id=job_id,
            status=final_status,
            completed_at=datetime.utcnow(),
            result=result,
            **extra
        )

        _remove_temp_file(file_path)
        redis_client.delete(cancel_key(job_id))

        logger.info(f"Import task {job_id} finished with status {result['status']}")
        return result

    except Exception as e:
        error_details = {
            'error': str(e),
            'traceback': traceback.format_exc(),
            'file_path': file_path,
            'organization_id': organization_id
        }

        logger.error(f"Import task {job_id} failed: {e}", exc_info=True)

        self.update_job_status(
            job_id=job_id,
            status=JobStatus.FAILED,
            completed_at=datetime.utcnow(),
            error=error_details
        )

        # Re-raise for Celery to handle
        raise


@celery_app.task(name='tasks.import_tasks.cleanup_old_jobs')
def cleanup_old_jobs(days_to_keep: int = settings.JOB_RETENTION_DAYS) -> Dict[str, Any]:
    """
    Clean up old job records and progress entries.

    Args:
        days_to_keep: Number of days to keep job records

    Returns:
        Dictionary with cleanup statistics
    """
    logger.info(f"Starting cleanup of jobs older than {days_to_keep} days")

    try:
        with get_db_session() as session:
            cutoff_date = datetime.utcnow() - timedelta(days=days_to_keep)

            deleted_progress = session.query(JobProgress).filter(
                JobProgress.timestamp < cutoff_date
            ).delete(synchronize_session=False)

            deleted_jobs = session.query(JobRun).filter(
                JobRun.completed_at < cutoff_date,
                JobRun.status.in_([JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.CANCELLED])
            ).delete(synchronize_session=False)

            session.commit()

            logger.info(f"Cleanup complete: {deleted_jobs} jobs, {deleted_progress} progress entries deleted")

            return {
                'deleted_jobs': deleted_jobs,
                'deleted_progress': deleted_progress,
                'cutoff_date': cutoff_date.isoformat()
            }

    except SQLAlchemyError as e:
        logger.error(f"Error during cleanup: {e}", exc_info=True)
        return {
            'error': str(e),
            'deleted_jobs': 0,
            'deleted_progress': 0
        }
