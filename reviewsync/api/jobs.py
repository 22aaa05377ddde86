"""
/api/v1/jobs endpoints.
Queued pipeline runs: queue counters, recent runs, one run's outcome.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from redis import Redis
from redis.exceptions import RedisError

from reviewsync.config import settings
from reviewsync.dependencies import verify_api_key
from reviewsync.schemas.jobs import JobStatus, QueueStats, RecentJobs

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(verify_api_key)])


def _pipeline_queue():
    from rq import Queue

    return Queue(settings.QUEUE_NAME, connection=Redis.from_url(settings.REDIS_URL))


def _job_status(job) -> JobStatus:
    # Full-pipeline runs are enqueued with stage=None
    stage = job.args[0] if job.args else None
    latest = job.latest_result() if job.is_failed else None
    return JobStatus(
        job_id=job.id,
        stage=stage or "full",
        status=job.get_status(),
        enqueued_at=job.enqueued_at,
        started_at=job.started_at,
        ended_at=job.ended_at,
        error_message=latest.exc_string if latest else None,
        result=job.return_value() if job.is_finished else None,
    )


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats():
    """Counts for the pipeline queue and its registries."""
    from rq.worker import Worker

    try:
        q = _pipeline_queue()
        return QueueStats(
            queue_name=q.name,
            queued=q.count,
            started=q.started_job_registry.count,
            finished=q.finished_job_registry.count,
            failed=q.failed_job_registry.count,
            deferred=q.deferred_job_registry.count,
            workers=Worker.count(queue=q),
        )
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")


@router.get("", response_model=RecentJobs)
async def recent_jobs(limit: int = Query(20, ge=1, le=100)):
    """Most recent runs per registry: running, finished and failed."""
    from rq.job import Job

    try:
        q = _pipeline_queue()
        registries = {
            "started": q.started_job_registry,
            "finished": q.finished_job_registry,
            "failed": q.failed_job_registry,
        }
        listed = {}
        for name, registry in registries.items():
            job_ids = registry.get_job_ids(0, limit - 1)
            jobs = Job.fetch_many(job_ids, connection=q.connection)
            listed[name] = [_job_status(job) for job in jobs if job is not None]
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")
    return RecentJobs(**listed)


@router.get("/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    """Status and, once finished, the stage summaries of one pipeline run."""
    from rq.exceptions import NoSuchJobError
    from rq.job import Job

    try:
        job = Job.fetch(job_id, connection=_pipeline_queue().connection)
    except NoSuchJobError:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")
    return _job_status(job)
