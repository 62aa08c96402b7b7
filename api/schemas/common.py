"""
Response bodies shared by every router: errors, acknowledgements, health.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every non-2xx response produced by the exception handlers."""

    error: str = Field(..., description="Short error title")
    detail: Optional[Dict[str, Any]] = Field(None, description="Error specifics, e.g. the rejected mapping")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    path: Optional[str] = Field(None, description="Request URL")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Invalid header mapping",
                "detail": {"message": "Required field not mapped: order_number"},
                "timestamp": "2025-10-15T12:00:00Z",
                "path": "/api/import/upload"
            }
        }


class SuccessResponse(BaseModel):
    """Acknowledgement for requests that act on a job without returning it."""

    success: bool = True
    message: str
    data: Optional[Dict[str, Any]] = None


class HealthCheckResponse(BaseModel):
    """
    Component status for ``/health``.

    ``status`` is "healthy", "degraded" (imports will queue) or
    "unhealthy" (the database is unreachable).
    """

    status: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str
    database: str = Field(..., description="connected / disconnected")
    redis: str = Field(..., description="connected / disconnected")
    celery: str = Field(..., description="Import worker availability")
