"""
Upstream web app client for the cache gateway.
"""

from typing import Dict, List, Optional, Tuple

import httpx

from shared.logging import get_logger
from shared.errors import NetworkError
from ..caching.models import CacheRequest, CachedResponse


# Headers that describe a single hop or the original encoding of the body;
# httpx has already decoded the body, so they no longer apply.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "content-encoding",
    "content-length",
    "host",
})


def _filter_headers(headers) -> Dict[str, str]:
    return {name: value for name, value in headers.items() if name.lower() not in HOP_BY_HOP_HEADERS}


def _snapshot_headers(headers: httpx.Headers) -> List[Tuple[str, str]]:
    """Response header pairs, keeping repeated fields separate."""
    return [(name, value) for name, value in headers.multi_items() if name.lower() not in HOP_BY_HOP_HEADERS]


class UpstreamClient:
    """Fetches requests from the upstream app and snapshots the responses."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = get_logger("cache_gateway.upstream_client")
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def resolve(self, path: str) -> str:
        """Absolute upstream URL for a path (with optional query string)."""
        if not path.startswith('/'):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    async def fetch(self, request: CacheRequest) -> CachedResponse:
        """Forward a request upstream.

        Raises NetworkError when the upstream cannot be reached. HTTP error
        statuses are returned as responses, not raised.
        """
        client = self._get_client()
        try:
            response = await client.request(
                request.method,
                request.url,
                headers=_filter_headers(request.headers),
                content=request.body or None,
            )
        except httpx.TransportError as exc:
            self.logger.warning(
                "Upstream request failed",
                method=request.method,
                url=request.url,
                error=str(exc),
            )
            raise NetworkError(request.url, message=str(exc) or exc.__class__.__name__) from exc

        self.logger.debug(
            "Upstream response received",
            method=request.method,
            url=request.url,
            status_code=response.status_code,
        )
        return CachedResponse(
            status=response.status_code,
            headers=_snapshot_headers(response.headers),
            body=response.content,
        )

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
