"""
Build the configured external clients.
Returns None for a client whose credentials are not set.
"""

from typing import Optional

import structlog

from reviewsync.clients.base import CatalogClient, FormsClient
from reviewsync.config import settings

logger = structlog.get_logger(__name__)


def build_forms_client() -> Optional[FormsClient]:
    if not settings.JOTFORM_API_KEY or not settings.JOTFORM_FORM_ID:
        logger.warning("forms_client_not_configured")
        return None
    from reviewsync.clients.jotform_client import JotformClient
    return JotformClient()


def build_catalog_client() -> Optional[CatalogClient]:
    if not settings.SHOPIFY_STORE_DOMAIN or not settings.SHOPIFY_ACCESS_TOKEN:
        logger.warning("catalog_client_not_configured")
        return None
    from reviewsync.clients.shopify_client import ShopifyCatalogClient
    return ShopifyCatalogClient()
