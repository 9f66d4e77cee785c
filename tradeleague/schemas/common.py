"""Common schemas and error responses."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    code: str = Field(..., description="Error code", examples=["INSUFFICIENT_FUNDS"])
    message: str = Field(..., description="Human-readable error message")
    status: int = Field(..., description="HTTP status code")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Additional error details"
    )


class ErrorResponse(BaseModel):
    """Envelope for every failed request."""

    success: bool = False
    error: ErrorBody

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error": {"code": "NOT_FOUND", "message": "No price available for 005930", "status": 404},
            }
        }
    }


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Overall health status", examples=["healthy", "degraded"])
    version: str = Field(..., description="Application version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checks: Dict[str, bool] = Field(default_factory=dict, description="Individual service health checks")


DataT = TypeVar("DataT")


class DataResponse(BaseModel, Generic[DataT]):
    """Envelope for every successful read or write."""

    success: bool = True
    data: DataT
