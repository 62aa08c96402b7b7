"""Pydantic request/response models for the OrderBridge API."""

from api.schemas.common import ErrorResponse, HealthCheckResponse, SuccessResponse
from api.schemas.job_schema import (
    ImportResult, JobCreateResponse, JobListItem, JobListResponse,
    JobProgressResponse, JobStatusEnum, JobStatusResponse, JobTypeEnum
)
from api.schemas.import_schema import ImportStartResponse, PreviewResponse

__all__ = [
    'ErrorResponse',
    'HealthCheckResponse',
    'SuccessResponse',
    'ImportResult',
    'JobCreateResponse',
    'JobListItem',
    'JobListResponse',
    'JobProgressResponse',
    'JobStatusEnum',
    'JobStatusResponse',
    'JobTypeEnum',
    'ImportStartResponse',
    'PreviewResponse',
]
