"""
/api/v1/pipeline endpoints.
Run stages, follow progress, read the transform log.
"""

import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from reviewsync.config import settings
from reviewsync.dependencies import get_db, get_orchestrator, get_progress_sink, verify_api_key
from reviewsync.models.enums import PipelineStage
from reviewsync.observability.transform_log import get_failure_stats, get_recent_failures
from reviewsync.pipeline.orchestrator import PipelineOrchestrator
from reviewsync.pipeline.progress import ProgressSink
from reviewsync.schemas.submissions import (
    EnqueueResponse,
    PipelineRunRequest,
    TransformLogEntry,
    TransformLogResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/pipeline", tags=["pipeline"], dependencies=[Depends(verify_api_key)])


def _enqueue(stage: Optional[str], dry_run: bool) -> EnqueueResponse:
    from reviewsync.worker.jobs import enqueue_pipeline_run

    try:
        job_id = enqueue_pipeline_run(stage, dry_run=dry_run)
    except Exception as e:
        logger.error("enqueue_failed", stage=stage, error=str(e))
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")
    return EnqueueResponse(job_id=job_id, stage=stage)


@router.post("/stages/{stage}")
async def run_stage(
    stage: PipelineStage,
    request: Optional[PipelineRunRequest] = None,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Run one stage across every eligible submission."""
    request = request or PipelineRunRequest()
    if request.enqueue:
        return _enqueue(stage.value, request.dry_run)
    try:
        summary = await orchestrator.run_stage(stage, dry_run=request.dry_run)
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return summary.model_dump(mode="json")


@router.post("/run")
async def run_full_pipeline(
    request: Optional[PipelineRunRequest] = None,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Run every stage in order with a fresh lookup cache."""
    request = request or PipelineRunRequest()
    if request.enqueue:
        return _enqueue(None, request.dry_run)
    try:
        summaries = await orchestrator.run_full_pipeline(dry_run=request.dry_run)
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"summaries": [s.model_dump(mode="json") for s in summaries]}


@router.get("/progress")
async def latest_progress(sink: ProgressSink = Depends(get_progress_sink)):
    """Latest specification-generation progress snapshot, if any."""
    snapshot = await sink.latest()
    return {"progress": snapshot.model_dump() if snapshot else None}


@router.get("/progress/stream")
async def stream_progress(sink: ProgressSink = Depends(get_progress_sink)):
    """Server-sent events of progress snapshots until the run reports done."""

    async def events():
        last = None
        while True:
            snapshot = await sink.latest()
            if snapshot is not None:
                payload = snapshot.model_dump_json()
                if payload != last:
                    last = payload
                    yield f"data: {payload}\n\n"
                if snapshot.done:
                    break
            await asyncio.sleep(settings.PROGRESS_INTERVAL_SECONDS)

    return StreamingResponse(events(), media_type="text/event-stream")


@router.get("/failures", response_model=TransformLogResponse)
async def recent_failures(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    submission_id: Optional[str] = None,
    stage: Optional[PipelineStage] = None,
    session: AsyncSession = Depends(get_db),
):
    """Most recent transform log entries, newest first."""
    rows = await get_recent_failures(
        session,
        limit=limit,
        offset=offset,
        submission_id=submission_id,
        stage=stage.value if stage else None,
    )
    return TransformLogResponse(
        entries=[TransformLogEntry.model_validate(r) for r in rows],
        stats=await get_failure_stats(session),
    )
