"""
Schemas for the /api/v1/jobs endpoints.
"""

from pydantic import BaseModel
from typing import Any, Optional
from datetime import datetime


class JobStatus(BaseModel):
    job_id: str
    stage: Optional[str] = None
    status: str
    enqueued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Any] = None


class QueueStats(BaseModel):
    queue_name: str
    queued: int
    started: int
    finished: int
    failed: int
    deferred: int
    workers: int


class RecentJobs(BaseModel):
    started: list[JobStatus] = []
    finished: list[JobStatus] = []
    failed: list[JobStatus] = []
