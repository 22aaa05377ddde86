"""
RQ job functions for pipeline runs.
These are the entry points that the worker calls.
"""

from typing import Optional

import structlog
from redis import Redis
from rq import Queue

from reviewsync.config import settings
from reviewsync.observability.metrics import worker_jobs_active

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the pipeline job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_pipeline_run(stage: Optional[str] = None, dry_run: bool = False) -> str:
    """
    Enqueue one stage, or the full pipeline when `stage` is None.
    Returns the job ID.
    """
    q = get_queue()
    job = q.enqueue(
        run_pipeline_job,
        stage,
        dry_run,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("job_enqueued", stage=stage or "full", job_id=job.id, dry_run=dry_run)
    return job.id


def run_pipeline_job(stage: Optional[str] = None, dry_run: bool = False) -> dict:
    """
    Run the pipeline inside the RQ worker process.
    Returns JSON-serializable stage summaries.
    """
    import asyncio

    logger.info("job_started", stage=stage or "full")
    worker_jobs_active.inc()
    try:
        result = asyncio.run(_run_pipeline_async(stage, dry_run))
        logger.info("job_completed", stage=stage or "full", stages=len(result["summaries"]))
        return result
    except Exception as e:
        logger.error("job_failed", stage=stage or "full", error=str(e))
        raise
    finally:
        worker_jobs_active.dec()


async def _run_pipeline_async(stage: Optional[str], dry_run: bool) -> dict:
    from reviewsync.clients.factory import build_catalog_client, build_forms_client
    from reviewsync.models.database import close_db
    from reviewsync.pipeline.orchestrator import PipelineOrchestrator
    from reviewsync.pipeline.progress import RedisProgressSink

    forms = build_forms_client()
    catalog = build_catalog_client()
    sink = RedisProgressSink.from_url()
    orchestrator = PipelineOrchestrator(forms=forms, catalog=catalog, progress=sink)
    try:
        if stage:
            summaries = [await orchestrator.run_stage(stage, dry_run=dry_run)]
        else:
            summaries = await orchestrator.run_full_pipeline(dry_run=dry_run)
        return {"summaries": [s.model_dump(mode="json") for s in summaries]}
    finally:
        for client in (forms, catalog):
            if client is not None:
                await client.aclose()
        await sink.redis.aclose()
        # Each job gets its own event loop; pooled connections cannot outlive it
        await close_db()
