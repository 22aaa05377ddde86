"""
/api/v1/catalog endpoints.
Pass-through product search for matching a review by hand.
"""

from fastapi import APIRouter, Depends, Query

from reviewsync.clients.base import CatalogClient, CatalogProduct
from reviewsync.config import settings
from reviewsync.dependencies import get_catalog_client, verify_api_key

router = APIRouter(prefix="/api/v1/catalog", tags=["catalog"], dependencies=[Depends(verify_api_key)])


@router.get("/search", response_model=list[CatalogProduct])
async def search_catalog(
    query: str = Query(..., min_length=1),
    limit: int = Query(settings.SHOPIFY_SEARCH_LIMIT, ge=1, le=50),
    catalog: CatalogClient = Depends(get_catalog_client),
):
    """Catalog products whose title matches `query`. Upstream failures map to 502."""
    return await catalog.search_products(query.strip(), limit=limit)
