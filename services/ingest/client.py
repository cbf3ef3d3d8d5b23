"""
Search Engine Client
Talks to an OpenSearch/Elasticsearch-compatible `_search` API over HTTP
"""

from typing import Any, Optional

import httpx
import structlog

from shared import config

logger = structlog.get_logger()


class SearchError(Exception):
    """Raised when the document store rejects or fails a search request"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SearchClient:
    """
    Async client for the document store search endpoint.

    Only the pieces the clustering pipeline needs: a paginated `_search`
    call and a health check.
    """

    def __init__(
        self,
        base_url: str = config.OPENSEARCH_URL,
        username: str = config.OPENSEARCH_USERNAME,
        password: str = config.OPENSEARCH_PASSWORD,
        timeout: float = config.OPENSEARCH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        auth = (username, password) if username else None
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=auth,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def search(self, index: str, body: dict) -> dict[str, Any]:
        """Run a search request and return the decoded response"""
        try:
            response = await self._client.post(f"/{index}/_search", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_text = e.response.text if e.response is not None else str(e)
            logger.error(
                "Search request rejected",
                index=index,
                status=e.response.status_code,
                error=error_text[:200],
            )
            raise SearchError(error_text[:200], status=e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error("Search request failed", index=index, error=str(e))
            raise SearchError(str(e)) from e

        try:
            return response.json()
        except ValueError as e:
            logger.error("Search response is not JSON", index=index, error=str(e))
            raise SearchError(f"Malformed search response: {e}", status=response.status_code) from e

    async def check_health(self) -> bool:
        """Check if the document store is reachable"""
        try:
            response = await self._client.get("/_cluster/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Search engine health check failed", error=str(e))
            return False

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self) -> "SearchClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
