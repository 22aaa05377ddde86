"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from reviewsync.api.catalog import router as catalog_router
from reviewsync.api.health import router as health_router
from reviewsync.api.jobs import router as jobs_router
from reviewsync.api.pipeline import router as pipeline_router
from reviewsync.api.submissions import router as submissions_router
from reviewsync.api.titles import router as titles_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(pipeline_router)
api_router.include_router(submissions_router)
api_router.include_router(titles_router)
api_router.include_router(catalog_router)
api_router.include_router(jobs_router)
