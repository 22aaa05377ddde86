"""
FastAPI dependency injection.
Provides DB sessions, the orchestrator and catalog client, the progress sink
and API key validation.
"""

from typing import AsyncIterator, Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from reviewsync.config import settings
from reviewsync.models.database import get_session
from reviewsync.pipeline.progress import ProgressSink, RedisProgressSink


# ── Singleton instances ──────────────────────────────────────
_progress_sink: Optional[ProgressSink] = None


def get_progress_sink() -> ProgressSink:
    """Get or create the Redis progress sink singleton."""
    global _progress_sink
    if _progress_sink is None:
        _progress_sink = RedisProgressSink.from_url()
    return _progress_sink


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield an async DB session."""
    async for session in get_session():
        yield session


async def get_orchestrator():
    """A fresh orchestrator (and enum cache) per request; clients closed afterwards."""
    from reviewsync.clients.factory import build_catalog_client, build_forms_client
    from reviewsync.pipeline.orchestrator import PipelineOrchestrator

    forms = build_forms_client()
    catalog = build_catalog_client()
    try:
        yield PipelineOrchestrator(forms=forms, catalog=catalog, progress=get_progress_sink())
    finally:
        for client in (forms, catalog):
            if client is not None:
                await client.aclose()


async def get_catalog_client():
    """The configured catalog client for one request, closed afterwards."""
    from reviewsync.clients.factory import build_catalog_client

    catalog = build_catalog_client()
    if catalog is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Shopify credentials are not configured",
        )
    try:
        yield catalog
    finally:
        await catalog.aclose()


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key


async def close_progress_sink() -> None:
    """Release the progress sink's Redis connection on shutdown."""
    global _progress_sink
    if isinstance(_progress_sink, RedisProgressSink):
        await _progress_sink.redis.aclose()
    _progress_sink = None
