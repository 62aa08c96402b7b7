"""
WebSocket stream of import progress.

Progress snapshots are written to Redis by the import task; this endpoint
polls them and forwards what changed. Log lines are sent incrementally:
each message carries only the lines added since the previous one.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import get_db
from backend.models.job import JobRun, JobStatus
from tasks.import_tasks import progress_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=['websocket'])

redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

POLL_INTERVAL_SECONDS = 0.5


def _read_progress(job_id: str) -> Optional[Dict[str, Any]]:
    try:
        raw = redis_client.get(progress_key(job_id))
    except redis.RedisError as e:
        logger.warning(f"Error reading progress from Redis for {job_id}: {e}")
        return None
    return json.loads(raw) if raw else None


def _final_message(job_run: JobRun) -> Dict[str, Any]:
    message = {
        'job_id': job_run.job_id,
        'status': job_run.status,
        'completed_at': job_run.completed_at.isoformat() if job_run.completed_at else None
    }
    if job_run.status == JobStatus.FAILED:
        message['error'] = job_run.error
    else:
        message['result'] = job_run.result
    return message


@router.websocket('/ws/import/{job_id}')
async def websocket_import_progress(
    websocket: WebSocket,
    job_id: str,
    db: Session = Depends(get_db)
):
    """
    Stream an import job until it finishes.

    Progress messages look like::

        {"job_id": "...", "status": "processing",
         "progress": {"stage": "orders", "current": 40, "total": 100,
                      "percent": 40.0, "message": "Creating orders batch 3 of 5...",
                      "error_count": 0, "cancel_requested": false, ...},
         "new_logs": ["[12:30:44] Created order ORD-0040"]}

    The last message carries ``completed_at`` and either ``result``
    (success, cancelled) or ``error`` (failed).
    """
    await websocket.accept()

    try:
        job_run = db.query(JobRun).filter_by(job_id=job_id).first()
        if not job_run:
            await websocket.send_json({'error': f'Job {job_id} not found', 'job_id': job_id})
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.send_json({'job_id': job_id, 'status': job_run.status})

        last_timestamp = None
        logs_sent = 0

        while True:
            db.refresh(job_run)

            snapshot = _read_progress(job_id)
            if snapshot and snapshot.get('timestamp') != last_timestamp:
                last_timestamp = snapshot.get('timestamp')
                logs = snapshot.pop('logs', [])
                await websocket.send_json({
                    'job_id': job_id,
                    'status': job_run.status,
                    'progress': snapshot,
                    'new_logs': logs[logs_sent:]
                })
                logs_sent = len(logs)

            if job_run.is_complete():
                await websocket.send_json(_final_message(job_run))
                logger.info(f"Job {job_id} finished with status {job_run.status}; closing stream")
                break

            await asyncio.sleep(POLL_INTERVAL_SECONDS)

        await websocket.close()

    except WebSocketDisconnect:
        logger.info(f"Progress stream for job {job_id} disconnected by client")
