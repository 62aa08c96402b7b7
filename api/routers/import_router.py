"""
Import router - Handle order file uploads and job tracking.

This module provides endpoints for previewing and uploading order
exports and for checking or cancelling import jobs.
"""

import os
import logging
import tempfile
import shutil
import json
from pathlib import Path
from typing import Dict, Optional

import redis
from fastapi import APIRouter, UploadFile, File, Form, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import get_db, get_current_user, verify_file_extension, verify_file_size
from api.schemas.common import SuccessResponse
from api.schemas.import_schema import ImportStartResponse, PreviewResponse
from api.schemas.job_schema import JobStatusResponse, JobProgressResponse, JobListResponse, JobListItem
from backend.models.job import JobRun, JobType, JobStatus
from services.errors import HeaderMappingError, OrderImportError
from services.row_normalizer import HeaderMapping, OrderField, REQUIRED_FIELDS
from services.row_source import read_rows, suggest_mapping
from tasks.import_tasks import import_order_file, progress_key, cancel_key

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/import', tags=['import'])

# Redis client for progress tracking
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def _save_upload(file: UploadFile) -> str:
    """Write an upload to the temp directory and return its path."""
    verify_file_extension(file.filename)

    fd, temp_path = tempfile.mkstemp(
        suffix=Path(file.filename).suffix,
        dir=settings.TEMP_UPLOAD_DIR
    )
    with os.fdopen(fd, 'wb') as tmp:
        shutil.copyfileobj(file.file, tmp)

    try:
        verify_file_size(os.path.getsize(temp_path))
    except HTTPException:
        os.unlink(temp_path)
        raise
    return temp_path


def _parse_mapping(header_mapping: Optional[str]) -> Optional[Dict[str, Optional[str]]]:
    """
    Decode and validate the JSON header mapping form field.

    Raises:
        HeaderMappingError: malformed JSON or an unusable mapping
    """
    if not header_mapping:
        return None
    try:
        raw = json.loads(header_mapping)
    except json.JSONDecodeError as e:
        raise HeaderMappingError(f"header_mapping is not valid JSON: {e}")
    if not isinstance(raw, dict):
        raise HeaderMappingError("header_mapping must be a JSON object of column -> field")

    HeaderMapping.from_dict(raw).require(*REQUIRED_FIELDS)
    return raw


@router.post('/preview', response_model=PreviewResponse)
async def preview_order_file(
    file: UploadFile = File(..., description="Order export (.csv, .xlsx or .xlsm)"),
    current_user: str = Depends(get_current_user)
):
    """
    Read an order export and return its headers, a suggested header
    mapping and the first rows, without importing anything.
    """
    temp_path = _save_upload(file)
    try:
        row_set = read_rows(temp_path)
    except OrderImportError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    finally:
        os.unlink(temp_path)

    logger.info(f"Preview by {current_user}: {file.filename} ({len(row_set.rows)} rows)")

    return PreviewResponse(
        filename=file.filename,
        headers=row_set.headers,
        suggested_mapping=suggest_mapping(row_set.headers),
        available_fields=[f.value for f in OrderField],
        rows=row_set.preview(settings.PREVIEW_ROWS),
        total_rows=len(row_set.rows)
    )


@router.post('/upload', response_model=ImportStartResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_order_file(
    file: UploadFile = File(..., description="Order export (.csv, .xlsx or .xlsm)"),
    organization_id: str = Form(..., min_length=1, max_length=64, description="Target organization"),
    header_mapping: Optional[str] = Form(
        None, description="JSON object mapping column headers to order fields"
    ),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Upload an order export and start an import job.

    The header mapping is validated before anything is queued; an unknown
    target field, a field mapped twice or a missing order number column
    is rejected with 400. Without a mapping, one is suggested from the
    headers when the job runs.

    **Progress Tracking:**
    - Poll GET /api/import/job/{job_id} for status
    - Connect to WebSocket /ws/import/{job_id} for real-time updates

    **Returns:**
    - 202 Accepted with job_id
    - URLs for status checking and WebSocket connection
    """
    logger.info(f"Upload request from {current_user}: {file.filename} for organization {organization_id}")

    # Raises HeaderMappingError -> 400 before the file is even stored
    mapping = _parse_mapping(header_mapping)

    temp_path = _save_upload(file)
    try:
        file_size = os.path.getsize(temp_path)

        job_run = JobRun(
            job_id='temp',  # Replaced with the Celery task ID
            job_type=JobType.ORDER_IMPORT,
            status=JobStatus.PENDING,
            organization_id=organization_id,
            params={
                'filename': file.filename,
                'header_mapping': mapping,
                'file_size_mb': round(file_size / 1024 / 1024, 2)
            },
            created_by=current_user
        )

        db.add(job_run)
        db.flush()

        task = import_order_file.apply_async(args=[temp_path, organization_id, mapping])

        job_run.job_id = task.id
        db.commit()

        logger.info(f"Started import task {task.id} for file: {file.filename}")

        return ImportStartResponse(
            job_id=task.id,
            message="Order import job started",
            status_url=f"/api/import/job/{task.id}",
            websocket_url=f"/ws/import/{task.id}"
        )

    except Exception as e:
        if os.path.exists(temp_path):
            os.unlink(temp_path)

        logger.error(f"Upload failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Upload failed: {str(e)}"
        )


@router.get('/job/{job_id}', response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    db: Session = Depends(get_db)
):
    """
    Get current status of an import job.

    Returns the job status, the latest progress snapshot (with the
    operator log), and the result or error once finished.
    """
    job_run = db.query(JobRun).filter_by(job_id=job_id).first()

    if not job_run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )

    # Latest progress from Redis (real-time)
    progress = None
    try:
        progress_data = redis_client.get(progress_key(job_id))
        if progress_data:
            progress = JobProgressResponse(**json.loads(progress_data))
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Could not fetch progress from Redis for {job_id}: {e}")

    # Fall back to the last persisted snapshot
    if not progress and job_run.progress:
        latest_progress = job_run.progress[-1]
        progress = JobProgressResponse(
            stage=latest_progress.stage,
            current=latest_progress.current,
            total=latest_progress.total,
            percent=float(latest_progress.percent),
            message=latest_progress.message or "",
            timestamp=latest_progress.timestamp
        )

    return JobStatusResponse(
        job_id=job_run.job_id,
        job_type=job_run.job_type,
        status=job_run.status,
        organization_id=job_run.organization_id,
        created_at=job_run.created_at,
        started_at=job_run.started_at,
        completed_at=job_run.completed_at,
        progress=progress,
        result=job_run.result,
        error=job_run.error,
        created_by=job_run.created_by
    )


@router.get('/jobs', response_model=JobListResponse)
async def list_jobs(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    organization_id: Optional[str] = Query(None, description="Filter by organization"),
    status: Optional[str] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db)
):
    """
    List import jobs with pagination and filtering.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/import/jobs?organization_id=org-1&status=success&page=1"
    ```
    """
    query = db.query(JobRun)

    if organization_id:
        query = query.filter_by(organization_id=organization_id)

    if status:
        query = query.filter_by(status=status)

    total = query.count()

    jobs = query.order_by(JobRun.created_at.desc())\
        .offset((page - 1) * page_size)\
        .limit(page_size)\
        .all()

    total_pages = (total + page_size - 1) // page_size

    return JobListResponse(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        items=[JobListItem.model_validate(job) for job in jobs]
    )


@router.delete('/job/{job_id}', response_model=SuccessResponse, status_code=status.HTTP_202_ACCEPTED)
async def cancel_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Request cancellation of a pending or processing import.

    Cancellation is cooperative: the running import stops at the next
    order batch boundary and keeps every batch already committed. The
    job moves to ``cancelled`` when the worker acknowledges it.

    **Returns:**
    - 202 Accepted once the request is recorded
    - 404 if job not found
    - 400 if the job already finished
    """
    job_run = db.query(JobRun).filter_by(job_id=job_id).first()

    if not job_run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )

    if job_run.is_complete():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel job with status '{job_run.status}'"
        )

    redis_client.setex(cancel_key(job_id), settings.PROGRESS_CACHE_EXPIRY, current_user)

    job_run.request_cancel(current_user)
    db.commit()

    logger.info(f"Cancellation of job {job_id} requested by {current_user}")

    return SuccessResponse(
        message="Cancellation requested; the import stops at the next batch boundary",
        data={'job_id': job_id}
    )
