"""
Abstract base classes for the external APIs the pipeline consumes.
Implementations raise UpstreamError on any failure or unexpected shape.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel


class CatalogProduct(BaseModel):
    """The catalog fields the pipeline consumes."""
    handle: str
    title: str
    product_type: Optional[str] = None
    vendor: Optional[str] = None


class FormsClient(ABC):
    """Source of raw form submissions."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def fetch_submissions(
        self,
        filters: dict[str, str],
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """
        Raw submissions matching `filters`, oldest first, at most `limit`.
        Must raise UpstreamError rather than return a partial page.
        """
        ...

    async def aclose(self) -> None:
        return None


class CatalogClient(ABC):
    """Product catalog searched by title."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def search_products(self, title: str, limit: int = 10) -> list[CatalogProduct]:
        """Candidate products whose title matches `title`."""
        ...

    async def aclose(self) -> None:
        return None
