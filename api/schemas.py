from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class HealthOut(BaseModel):
    status: str = "ok"
    environment: str
    catalog_version: str


class PhaseOut(BaseModel):
    id: int
    name: str
    display_name: str = ""
    phase_order: int
    max_level: int
    exit_criteria: dict[str, Any] = Field(default_factory=dict)


class ResultOut(BaseModel):
    """``ServiceResult`` envelope as returned to HTTP clients."""

    success: bool
    data: Any = None


class ErrorOut(BaseModel):
    success: bool = False
    error: str
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
