"""
Choosing the catalog product for a submission title, and persisting it.
"""

import re
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from reviewsync.clients.base import CatalogProduct
from reviewsync.models.database import dialect_insert
from reviewsync.models.tables import CatalogMatch

_NON_WORD_RE = re.compile(r"[^\w\s]")


def normalize_title(title: Optional[str]) -> str:
    if not title:
        return ""
    return " ".join(_NON_WORD_RE.sub(" ", title.lower()).split())


def vendor_hint_from_title(title: Optional[str]) -> Optional[str]:
    """Brand prefix of a cleaned "Brand - Product" title, if present."""
    if not title or " - " not in title:
        return None
    hint = title.split(" - ", 1)[0].strip()
    return hint or None


def choose_best_match(
    title: str,
    candidates: Sequence[CatalogProduct],
    vendor_hint: Optional[str] = None,
) -> Optional[CatalogProduct]:
    """
    Pick one candidate, in priority order:
    1. normalized title equal to the query
    2. vendor equal to the hint, among candidates whose title contains the query
    3. the only candidate, when exactly one was returned
    Otherwise no match.
    """
    query = normalize_title(title)
    if not query or not candidates:
        return None

    for product in candidates:
        if normalize_title(product.title) == query:
            return product

    if vendor_hint:
        hint = normalize_title(vendor_hint)
        for product in candidates:
            if query in normalize_title(product.title) and normalize_title(product.vendor) == hint:
                return product

    if len(candidates) == 1:
        return candidates[0]
    return None


async def save_catalog_match(
    session: AsyncSession,
    submission_id: str,
    product: CatalogProduct,
) -> None:
    """Insert or replace the submission's catalog side row."""
    values = {
        "shopify_handle": product.handle,
        "shopify_title": product.title,
        "product_type": product.product_type,
        "product_brand": product.vendor,
    }
    stmt = dialect_insert(session, CatalogMatch).values(submission_id=submission_id, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[CatalogMatch.submission_id],
        set_={**values, "updated_at": datetime.now(timezone.utc)},
    )
    await session.execute(stmt)
