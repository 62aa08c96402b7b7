"""
Schemas for the preview and upload endpoints.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from api.schemas.job_schema import JobCreateResponse


class PreviewResponse(BaseModel):
    """Headers, suggested mapping and first rows of an uploaded export."""

    filename: str
    headers: List[str] = Field(..., description="Column headers; repeats carry a _2, _3 suffix")
    suggested_mapping: Dict[str, Optional[str]] = Field(
        ..., description="Column -> order field; null means the column is not imported"
    )
    available_fields: List[str] = Field(..., description="Fields a column can be mapped to")
    rows: List[Dict[str, str]]
    total_rows: int

    class Config:
        json_schema_extra = {
            "example": {
                "filename": "orders.csv",
                "headers": ["Order #", "Client name", "Client phone number", "Notes"],
                "suggested_mapping": {
                    "Order #": "order_number",
                    "Client name": "client_name",
                    "Client phone number": "client_phone",
                    "Notes": None
                },
                "available_fields": ["order_number", "client_name", "client_phone"],
                "rows": [{"Order #": "ORD-001", "Client name": "Ama",
                          "Client phone number": "0551234567", "Notes": ""}],
                "total_rows": 120
            }
        }


class ImportStartResponse(JobCreateResponse):
    """Returned with 202 once the import job is queued."""

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "abc-123-def-456",
                "message": "Order import job started",
                "status_url": "/api/import/job/abc-123-def-456",
                "websocket_url": "/ws/import/abc-123-def-456"
            }
        }
