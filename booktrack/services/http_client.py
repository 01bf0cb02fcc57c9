import logging
from typing import Dict, Optional

import httpx

from booktrack.config import settings

logger = logging.getLogger(__name__)

# HTTP/2 is only enabled when the 'h2' package is installed
try:
    import h2  # type: ignore  # noqa: F401
    _HTTP2_AVAILABLE = True
except ImportError:
    _HTTP2_AVAILABLE = False
    logger.debug("HTTP/2 disabled: 'h2' package is not installed.")


class SearchHTTPClient:
    """Pooled async HTTP client shared by the search service."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        limits = httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
            keepalive_expiry=30.0
        )

        timeout = httpx.Timeout(
            timeout=settings.search_timeout,
            connect=settings.search_connect_timeout,
        )

        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=timeout,
            follow_redirects=True,
            headers=self._default_headers(),
            http2=_HTTP2_AVAILABLE and transport is None,
            transport=transport,
        )

    @staticmethod
    def _default_headers() -> Dict[str, str]:
        headers = {"User-Agent": settings.user_agent}
        if settings.api_key:
            headers["X-API-Key"] = settings.api_key
        return headers

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self._client.get(url, **kwargs)

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Global HTTP client instance
_global_client: Optional[SearchHTTPClient] = None


async def get_http_client() -> SearchHTTPClient:
    """Return the global HTTP client, creating it on first use"""
    global _global_client
    if _global_client is None or _global_client.is_closed:
        _global_client = SearchHTTPClient()
    return _global_client


async def cleanup_http_client():
    """Close the global HTTP client"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
