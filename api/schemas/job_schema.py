"""
Schemas for import jobs: status, progress snapshots and results.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobStatusEnum(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class JobTypeEnum(str, Enum):
    ORDER_IMPORT = 'order_import'


class JobProgressResponse(BaseModel):
    """
    One progress snapshot, as published by the import's reporter.

    ``current`` counts source rows, so it can jump by more than one per
    committed batch when rows were skipped.
    """

    stage: str = Field(..., description="Pipeline stage, e.g. 'clients', 'preparing', 'orders'")
    current: int = Field(0, ge=0)
    total: int = Field(0, ge=0)
    percent: float = Field(..., ge=0, le=100)
    message: str = Field(..., description="Current operation label")
    logs: List[str] = Field(default_factory=list, description="Operator log lines so far")
    error_count: int = 0
    cancel_requested: bool = False
    timestamp: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "stage": "orders",
                "current": 40,
                "total": 100,
                "percent": 40.0,
                "message": "Creating orders batch 3 of 5...",
                "logs": ["[12:30:44] Created order ORD-0040"],
                "error_count": 0,
                "cancel_requested": False,
                "timestamp": "2025-10-15T12:30:45Z"
            }
        }


class ImportResult(BaseModel):
    """Outcome of a finished import run."""

    status: JobStatusEnum
    stats: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list, description="Error lines from the log")
    cancelled_at_batch: Optional[int] = Field(
        None, description="Order batches completed before the import was cancelled"
    )
    log: List[str] = Field(default_factory=list)


class JobStatusResponse(BaseModel):
    job_id: str = Field(..., description="Celery task ID")
    job_type: JobTypeEnum
    status: JobStatusEnum
    organization_id: str
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress: Optional[JobProgressResponse] = None
    result: Optional[ImportResult] = None
    error: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None

    class Config:
        from_attributes = True


class JobCreateResponse(BaseModel):
    job_id: str
    message: str = "Job created successfully"
    status_url: str
    websocket_url: str


class JobListItem(BaseModel):
    job_id: str
    job_type: JobTypeEnum
    status: JobStatusEnum
    organization_id: str
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class JobListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int
    items: List[JobListItem]
