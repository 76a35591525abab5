"""Data models for persisted run state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class StepRecord(BaseModel):
    """Record of an individual step execution within a run."""

    id: Optional[int] = None
    run_id: str
    step_id: str
    execution_id: str
    step_type: Optional[str] = None
    status: str = "running"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    log_entry: Optional[dict[str, Any]] = None
    continuations: list[dict[str, Any]] = Field(default_factory=list)


class RunInstance(BaseModel):
    """Persisted run data."""

    run_id: str
    workflow_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: str = "pending"
    message: Optional[str] = None
    result_delivered: bool = False
    open_branches: int = 0
    steps: list[StepRecord] = Field(default_factory=list)
