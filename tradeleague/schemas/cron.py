"""Scheduled trigger response schemas."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CronJobResponse(BaseModel):
    """``{success, data|error}`` with the counts of affected rows."""

    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
