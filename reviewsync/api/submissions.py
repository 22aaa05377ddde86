"""
/api/v1/submissions endpoints.
Status listing, single-submission generation and re-runs, admin override.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from reviewsync.dependencies import get_db, get_orchestrator, verify_api_key
from reviewsync.models.enums import ErrorCode, PipelineStage, SubmissionStatus
from reviewsync.pipeline.errors import http_status_for
from reviewsync.pipeline.orchestrator import PipelineOrchestrator, SingleRunResult
from reviewsync.pipeline.status_model import attempt_transition, count_by_status, list_by_status
from reviewsync.schemas.submissions import (
    StatusOverrideRequest,
    SubmissionListResponse,
    SubmissionSummary,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/submissions", tags=["submissions"], dependencies=[Depends(verify_api_key)])


def _single_result(result: SingleRunResult) -> dict:
    if result.success:
        return result.model_dump(mode="json")
    code = result.failure.error_code if result.failure else ErrorCode.STATE_VIOLATION.value
    raise HTTPException(status_code=http_status_for(code), detail=result.model_dump(mode="json"))


@router.get("", response_model=SubmissionListResponse)
async def list_submissions(
    status: Optional[list[SubmissionStatus]] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db),
):
    """Newest submissions, optionally filtered by status."""
    rows = await list_by_status(session, statuses=status, limit=limit, offset=offset)
    return SubmissionListResponse(
        submissions=[SubmissionSummary.model_validate(r) for r in rows],
        limit=limit,
        offset=offset,
    )


@router.get("/counts")
async def submission_counts(session: AsyncSession = Depends(get_db)):
    """Submission counts per status (ignored rows excluded)."""
    return await count_by_status(session)


@router.post("/{submission_id}/specification")
async def generate_specification(
    submission_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Materialize the specification for one submission."""
    return _single_result(await orchestrator.generate_for_submission(submission_id))


@router.post("/{submission_id}/stages/{stage}")
async def rerun_stage(
    submission_id: str,
    stage: PipelineStage,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Re-run one stage for one submission, subject to the transition rules."""
    return _single_result(await orchestrator.rerun_stage(submission_id, stage))


@router.post("/{submission_id}/status")
async def override_status(
    submission_id: str,
    request: StatusOverrideRequest,
    session: AsyncSession = Depends(get_db),
):
    """Set a submission's status, optionally bypassing the transition table."""
    try:
        target = SubmissionStatus(request.status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status: {request.status}")

    result = await attempt_transition(
        session,
        submission_id,
        target,
        error_message=request.error_message,
        skip_validation=request.skip_validation,
    )
    if not result.success:
        raise HTTPException(
            status_code=http_status_for(result.error_code),
            detail=result.model_dump(mode="json"),
        )

    logger.info(
        "status_overridden",
        submission_id=submission_id,
        previous=result.previous_status,
        status=result.status,
        skip_validation=request.skip_validation,
    )
    return result.model_dump(mode="json")
