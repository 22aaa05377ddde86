"""
In-memory stand-ins for the external APIs.
Used by tests and by local runs without credentials.
"""

from typing import Any, Iterable, Optional

from reviewsync.clients.base import CatalogClient, CatalogProduct, FormsClient
from reviewsync.pipeline.errors import UpstreamError


class StubFormsClient(FormsClient):
    """Returns a fixed list of raw submissions, or fails with `error`."""

    def __init__(self, submissions: Iterable[dict[str, Any]] = (), error: Optional[str] = None):
        self.submissions = list(submissions)
        self.error = error
        self.calls: list[tuple[dict, int]] = []

    @property
    def service_name(self) -> str:
        return "stub-forms"

    async def fetch_submissions(self, filters: dict[str, str], limit: int = 1000) -> list[dict[str, Any]]:
        self.calls.append((dict(filters), limit))
        if self.error:
            raise UpstreamError(self.service_name, self.error)
        return self.submissions[:limit]


class StubCatalogClient(CatalogClient):
    """Case-insensitive substring search over a fixed product list."""

    def __init__(self, products: Iterable[CatalogProduct] = (), failing_titles: Iterable[str] = ()):
        self.products = list(products)
        self.failing_titles = set(failing_titles)
        self.queries: list[str] = []

    @property
    def service_name(self) -> str:
        return "stub-catalog"

    async def search_products(self, title: str, limit: int = 10) -> list[CatalogProduct]:
        self.queries.append(title)
        if title in self.failing_titles:
            raise UpstreamError(self.service_name, f"search failed for {title!r}")
        needle = title.lower()
        return [p for p in self.products if needle in p.title.lower()][:limit]
