"""
Submission workflow state machine.

Each target state has exactly one legal source state:

    fetched                 <- (ingest only)
    title_cleaned           <- fetched
    shopify_mapped          <- title_cleaned
    specification_generated <- shopify_mapped
    error                   <- any state

`ignore` has no predecessor; only the administrative override
(skip_validation=True) can set it. Pipeline code never passes skip_validation.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reviewsync.models.enums import ErrorCode, SubmissionStatus
from reviewsync.models.tables import Submission
from reviewsync.observability.metrics import status_transitions_total

logger = structlog.get_logger(__name__)


REQUIRED_PREDECESSOR: dict[SubmissionStatus, Optional[SubmissionStatus]] = {
    SubmissionStatus.FETCHED: None,
    SubmissionStatus.TITLE_CLEANED: SubmissionStatus.FETCHED,
    SubmissionStatus.SHOPIFY_MAPPED: SubmissionStatus.TITLE_CLEANED,
    SubmissionStatus.SPECIFICATION_GENERATED: SubmissionStatus.SHOPIFY_MAPPED,
}


class TransitionCheck(BaseModel):
    allowed: bool
    current: Optional[str] = None
    target: str
    required: Optional[str] = None
    reason: Optional[str] = None


class TransitionResult(BaseModel):
    """Outcome of a single transition attempt."""
    success: bool
    submission_id: str
    previous_status: Optional[str] = None
    status: Optional[str] = None
    required_status: Optional[str] = None
    status_updated_at: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class BulkRejection(BaseModel):
    submission_id: str
    current_status: Optional[str] = None
    error_code: str
    reason: str


class BulkTransitionResult(BaseModel):
    target: str
    updated: list[str] = Field(default_factory=list)
    rejected: list[BulkRejection] = Field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return len(self.updated)


def check_transition(current: Optional[str], target: SubmissionStatus | str) -> TransitionCheck:
    """
    Evaluate whether `current` may move to `target`.
    Pure; every other operation in this module goes through it.
    """
    target = SubmissionStatus(target)

    if target is SubmissionStatus.ERROR:
        return TransitionCheck(allowed=True, current=current, target=target.value)

    required = REQUIRED_PREDECESSOR.get(target)
    if required is None:
        if target is SubmissionStatus.FETCHED:
            reason = "Submissions enter the fetched state only through ingest"
        else:
            reason = f"State {target.value} can only be set by an administrative override"
        return TransitionCheck(allowed=False, current=current, target=target.value, reason=reason)

    if current == required.value:
        return TransitionCheck(
            allowed=True, current=current, target=target.value, required=required.value
        )

    return TransitionCheck(
        allowed=False,
        current=current,
        target=target.value,
        required=required.value,
        reason=(
            f"Invalid state transition: {current} -> {target.value}. "
            f"Submission must be in one of these states: {required.value}"
        ),
    )


def _status_values(target: SubmissionStatus, error_message: Optional[str]) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "status": target.value,
        "status_updated_at": now,
        "last_updated": now,
        # Leaving the error state clears the stale message
        "error_message": error_message if target is SubmissionStatus.ERROR else None,
    }


async def attempt_transition(
    session: AsyncSession,
    submission_id: str,
    target: SubmissionStatus | str,
    *,
    error_message: Optional[str] = None,
    skip_validation: bool = False,
) -> TransitionResult:
    """
    Move one submission to `target`, persisting the new state and timestamp.

    Rejections are returned, not raised, and leave the row untouched.
    Runs inside the caller's transaction.
    """
    target = SubmissionStatus(target)

    result = await session.execute(
        select(Submission.status)
        .where(Submission.submission_id == submission_id)
        .with_for_update()
    )
    current = result.scalar_one_or_none()

    if current is None:
        status_transitions_total.labels(target=target.value, outcome="not_found").inc()
        return TransitionResult(
            success=False,
            submission_id=submission_id,
            status=None,
            error_code=ErrorCode.NOT_FOUND.value,
            error_message=f"Submission {submission_id} not found",
        )

    if not skip_validation:
        check = check_transition(current, target)
        if not check.allowed:
            status_transitions_total.labels(target=target.value, outcome="rejected").inc()
            logger.warning(
                "transition_rejected",
                submission_id=submission_id,
                current=current,
                target=target.value,
                required=check.required,
            )
            return TransitionResult(
                success=False,
                submission_id=submission_id,
                previous_status=current,
                status=current,
                required_status=check.required,
                error_code=ErrorCode.STATE_VIOLATION.value,
                error_message=check.reason,
            )
    else:
        logger.info(
            "transition_override",
            submission_id=submission_id,
            current=current,
            target=target.value,
        )

    values = _status_values(target, error_message)
    await session.execute(
        update(Submission)
        .where(Submission.submission_id == submission_id)
        .values(**values)
    )
    status_transitions_total.labels(target=target.value, outcome="applied").inc()

    return TransitionResult(
        success=True,
        submission_id=submission_id,
        previous_status=current,
        status=target.value,
        status_updated_at=values["status_updated_at"],
        error_message=values["error_message"],
    )


async def bulk_transition(
    session: AsyncSession,
    submission_ids: Iterable[str],
    target: SubmissionStatus | str,
    *,
    error_message: Optional[str] = None,
    skip_validation: bool = False,
) -> BulkTransitionResult:
    """
    Transition many submissions with one read and one set-based write.

    Partitions ids exactly as attempt_transition would judge each one
    independently; duplicates are collapsed.
    """
    target = SubmissionStatus(target)
    unique_ids = list(dict.fromkeys(submission_ids))
    outcome = BulkTransitionResult(target=target.value)

    if not unique_ids:
        return outcome

    result = await session.execute(
        select(Submission.submission_id, Submission.status)
        .where(Submission.submission_id.in_(unique_ids))
        .with_for_update()
    )
    current_by_id = {row.submission_id: row.status for row in result.all()}

    for submission_id in unique_ids:
        current = current_by_id.get(submission_id)
        if current is None:
            outcome.rejected.append(BulkRejection(
                submission_id=submission_id,
                error_code=ErrorCode.NOT_FOUND.value,
                reason=f"Submission {submission_id} not found",
            ))
            continue
        if skip_validation:
            outcome.updated.append(submission_id)
            continue
        check = check_transition(current, target)
        if check.allowed:
            outcome.updated.append(submission_id)
        else:
            outcome.rejected.append(BulkRejection(
                submission_id=submission_id,
                current_status=current,
                error_code=ErrorCode.STATE_VIOLATION.value,
                reason=check.reason or "Transition not allowed",
            ))

    if outcome.updated:
        await session.execute(
            update(Submission)
            .where(Submission.submission_id.in_(outcome.updated))
            .values(**_status_values(target, error_message))
        )

    status_transitions_total.labels(target=target.value, outcome="applied").inc(len(outcome.updated))
    status_transitions_total.labels(target=target.value, outcome="rejected").inc(len(outcome.rejected))
    logger.info(
        "bulk_transition",
        target=target.value,
        requested=len(unique_ids),
        updated=len(outcome.updated),
        rejected=len(outcome.rejected),
    )
    return outcome


async def count_by_status(session: AsyncSession) -> dict[str, int]:
    """Submission counts per state, excluding ignored rows."""
    result = await session.execute(
        select(Submission.status, func.count(Submission.submission_id))
        .where(Submission.status != SubmissionStatus.IGNORE.value)
        .group_by(Submission.status)
    )
    stats = {row[0]: row[1] for row in result.all()}
    counts = {
        s.value: stats.get(s.value, 0)
        for s in SubmissionStatus
        if s is not SubmissionStatus.IGNORE
    }
    counts["total"] = sum(stats.values())
    return counts


async def list_by_status(
    session: AsyncSession,
    statuses: Optional[Sequence[SubmissionStatus | str]] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Submission]:
    """Newest-first submissions, optionally filtered by state."""
    query = select(Submission)
    if statuses:
        query = query.where(Submission.status.in_([SubmissionStatus(s).value for s in statuses]))
    else:
        query = query.where(Submission.status != SubmissionStatus.IGNORE.value)
    result = await session.execute(
        query.order_by(Submission.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())
