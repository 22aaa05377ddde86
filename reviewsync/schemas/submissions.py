"""
Pydantic request/response schemas for the /api/v1 submission and pipeline endpoints.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


# ── Request Schemas ──────────────────────────────────────────

class StatusOverrideRequest(BaseModel):
    """Administrative status change for one submission."""
    status: str
    error_message: Optional[str] = None
    # Bypasses the transition table; the only path that can set `ignore`
    skip_validation: bool = False


class PipelineRunRequest(BaseModel):
    dry_run: bool = False
    # Run on the worker instead of inside the request
    enqueue: bool = False


# ── Response Schemas ─────────────────────────────────────────

class SubmissionSummary(BaseModel):
    """Lightweight submission row for list endpoints."""
    submission_id: str
    reviewer: Optional[str] = None
    select_product: Optional[str] = None
    cleaned_product_title: Optional[str] = None
    status: str
    status_updated_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SubmissionListResponse(BaseModel):
    submissions: list[SubmissionSummary]
    limit: int
    offset: int


class TransformLogEntry(BaseModel):
    id: int
    submission_id: Optional[str] = None
    stage: Optional[str] = None
    error_code: Optional[str] = None
    message: str
    details_json: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TransformLogResponse(BaseModel):
    entries: list[TransformLogEntry]
    stats: dict[str, int] = Field(default_factory=dict)


class EnqueueResponse(BaseModel):
    job_id: str
    stage: Optional[str] = None
    message: str = "Pipeline run queued."
