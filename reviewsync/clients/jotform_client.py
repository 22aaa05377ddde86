"""
Jotform REST client (form submissions listing).
"""

import json
import time
from typing import Any, Optional

import httpx
import structlog

from reviewsync.clients.base import FormsClient
from reviewsync.config import settings
from reviewsync.observability.metrics import upstream_latency_seconds, upstream_requests_total
from reviewsync.pipeline.errors import UpstreamError

logger = structlog.get_logger(__name__)

# Jotform rejects larger pages
MAX_PAGE_SIZE = 1000


class JotformClient(FormsClient):
    def __init__(
        self,
        api_key: Optional[str] = None,
        form_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.JOTFORM_API_KEY
        self.form_id = form_id or settings.JOTFORM_FORM_ID
        if not self.api_key or not self.form_id:
            raise ValueError("JOTFORM_API_KEY and JOTFORM_FORM_ID must be configured")
        self.client = httpx.AsyncClient(
            base_url=(base_url or settings.JOTFORM_API_URL).rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds or settings.HTTP_TIMEOUT_SECONDS),
            transport=transport,
        )

    @property
    def service_name(self) -> str:
        return "jotform"

    async def fetch_submissions(
        self,
        filters: dict[str, str],
        limit: int = MAX_PAGE_SIZE,
        direction: str = "ASC",
    ) -> list[dict[str, Any]]:
        params = {
            "apiKey": self.api_key,
            "limit": min(limit, MAX_PAGE_SIZE),
            "offset": 0,
            "orderby": "created_at",
            "direction": direction,
        }
        if filters:
            params["filter"] = json.dumps(filters)

        started = time.perf_counter()
        try:
            response = await self.client.get(f"/form/{self.form_id}/submissions", params=params)
        except httpx.HTTPError as e:
            upstream_requests_total.labels(service=self.service_name, outcome="transport_error").inc()
            raise UpstreamError(self.service_name, f"Failed to fetch submissions: {e}") from e
        finally:
            upstream_latency_seconds.labels(
                service=self.service_name, operation="fetch_submissions"
            ).observe(time.perf_counter() - started)

        if response.status_code != 200:
            upstream_requests_total.labels(service=self.service_name, outcome="http_error").inc()
            raise UpstreamError(
                self.service_name,
                f"Failed to fetch submissions: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            upstream_requests_total.labels(service=self.service_name, outcome="bad_payload").inc()
            raise UpstreamError(self.service_name, "Response body is not JSON") from e

        content = payload.get("content") if isinstance(payload, dict) else None
        if not isinstance(content, list):
            upstream_requests_total.labels(service=self.service_name, outcome="bad_payload").inc()
            raise UpstreamError(
                self.service_name,
                "Invalid API response format: expected an array of submissions",
            )

        upstream_requests_total.labels(service=self.service_name, outcome="ok").inc()
        logger.info("jotform_submissions_fetched", count=len(content), filters=filters)
        return content

    async def aclose(self) -> None:
        await self.client.aclose()
