"""
Shopify Admin GraphQL client: product search by title.
"""

import time
from typing import Optional

import httpx
import structlog

from reviewsync.clients.base import CatalogClient, CatalogProduct
from reviewsync.config import settings
from reviewsync.observability.metrics import upstream_latency_seconds, upstream_requests_total
from reviewsync.pipeline.errors import UpstreamError

logger = structlog.get_logger(__name__)

PRODUCT_SEARCH_QUERY = """
query searchProducts($first: Int!, $query: String!) {
  products(first: $first, query: $query) {
    edges {
      node {
        handle
        title
        productType
        vendor
      }
    }
  }
}
"""


def build_title_query(title: str) -> str:
    """Shopify search syntax for a title phrase."""
    escaped = title.replace("\\", "\\\\").replace('"', '\\"')
    return f'title:"{escaped}"'


class ShopifyCatalogClient(CatalogClient):
    def __init__(
        self,
        store_domain: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        store_domain = store_domain or settings.SHOPIFY_STORE_DOMAIN
        access_token = access_token or settings.SHOPIFY_ACCESS_TOKEN
        if not store_domain or not access_token:
            raise ValueError("SHOPIFY_STORE_DOMAIN and SHOPIFY_ACCESS_TOKEN must be configured")
        version = api_version or settings.SHOPIFY_API_VERSION
        self.endpoint = f"https://{store_domain}/admin/api/{version}/graphql.json"
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds or settings.HTTP_TIMEOUT_SECONDS),
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @property
    def service_name(self) -> str:
        return "shopify"

    async def search_products(self, title: str, limit: int = 10) -> list[CatalogProduct]:
        body = {
            "query": PRODUCT_SEARCH_QUERY,
            "variables": {"first": limit, "query": build_title_query(title)},
        }

        started = time.perf_counter()
        try:
            response = await self.client.post(self.endpoint, json=body)
        except httpx.HTTPError as e:
            upstream_requests_total.labels(service=self.service_name, outcome="transport_error").inc()
            raise UpstreamError(self.service_name, f"Product search failed: {e}") from e
        finally:
            upstream_latency_seconds.labels(
                service=self.service_name, operation="search_products"
            ).observe(time.perf_counter() - started)

        if response.status_code != 200:
            upstream_requests_total.labels(service=self.service_name, outcome="http_error").inc()
            raise UpstreamError(
                self.service_name,
                f"Product search failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            upstream_requests_total.labels(service=self.service_name, outcome="bad_payload").inc()
            raise UpstreamError(self.service_name, "Response body is not JSON") from e

        if isinstance(payload, dict) and payload.get("errors"):
            upstream_requests_total.labels(service=self.service_name, outcome="graphql_error").inc()
            first = payload["errors"][0]
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise UpstreamError(self.service_name, f"GraphQL error: {message}")

        try:
            edges = payload["data"]["products"]["edges"]
        except (KeyError, TypeError) as e:
            upstream_requests_total.labels(service=self.service_name, outcome="bad_payload").inc()
            raise UpstreamError(self.service_name, "Unexpected product search response shape") from e

        products = []
        for edge in edges:
            node = edge.get("node") or {}
            if not node.get("handle"):
                continue
            products.append(CatalogProduct(
                handle=node["handle"],
                title=node.get("title") or "",
                product_type=node.get("productType") or None,
                vendor=node.get("vendor") or None,
            ))

        upstream_requests_total.labels(service=self.service_name, outcome="ok").inc()
        logger.debug("shopify_products_found", title=title, count=len(products))
        return products

    async def aclose(self) -> None:
        await self.client.aclose()
