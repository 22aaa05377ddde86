"""
Append-only transform log of pipeline failures.
Written in its own transaction so entries survive the item's rollback.
"""

from typing import Iterable, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewsync.models.tables import TransformLog
from reviewsync.pipeline.errors import FailureEntry

logger = structlog.get_logger(__name__)


def _to_row(entry: FailureEntry, stage: Optional[str]) -> TransformLog:
    return TransformLog(
        submission_id=entry.submission_id,
        stage=stage,
        error_code=entry.error_code,
        message=entry.error,
        details_json=entry.model_dump(exclude={"submission_id", "error"}),
    )


async def record_failures(
    session_factory: async_sessionmaker,
    entries: Iterable[FailureEntry],
    stage: Optional[str] = None,
) -> int:
    """
    Persist entries in a fresh transaction.

    A log write that fails is reported and dropped; it must not turn an
    already-handled item failure into a batch failure.
    """
    entries = list(entries)
    if not entries:
        return 0
    try:
        async with session_factory() as session:
            session.add_all([_to_row(e, stage) for e in entries])
            await session.commit()
    except SQLAlchemyError as e:
        logger.error(
            "transform_log_write_failed",
            stage=stage,
            entries=len(entries),
            error=str(e),
        )
        return 0
    return len(entries)


async def get_recent_failures(
    session: AsyncSession,
    limit: int = 50,
    offset: int = 0,
    submission_id: Optional[str] = None,
    stage: Optional[str] = None,
) -> list[TransformLog]:
    query = select(TransformLog)
    if submission_id is not None:
        query = query.where(TransformLog.submission_id == submission_id)
    if stage is not None:
        query = query.where(TransformLog.stage == stage)
    result = await session.execute(
        query.order_by(TransformLog.id.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())


async def get_failure_stats(session: AsyncSession) -> dict[str, int]:
    """Entry counts per error code, plus the total."""
    result = await session.execute(
        select(TransformLog.error_code, func.count(TransformLog.id))
        .group_by(TransformLog.error_code)
    )
    stats = {(row[0] or "UNKNOWN"): row[1] for row in result.all()}
    stats["total"] = sum(stats.values())
    return stats
