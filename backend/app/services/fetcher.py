from __future__ import annotations

from typing import Dict, Optional, Protocol
from urllib.parse import urlencode

import httpx

from backend.app.core.rate_limit import ConcurrencyLimiter
from backend.app.core.settings import settings

DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
OVERVIEW_PATH = "/iad/immobilien/mietwohnungen/mietwohnung-angebote"


class TransportError(Exception):
    """Raised when a page cannot be fetched (network failure or non-2xx status)."""

    def __init__(self, message: str, *, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class AsyncTransport(Protocol):
    async def get(self, url: str, headers: Dict[str, str], timeout: float) -> httpx.Response: ...

    async def close(self) -> None: ...


class HttpxTransport:
    """httpx-based transport with connection pooling."""

    def __init__(self) -> None:
        self._client = httpx.AsyncClient(follow_redirects=True, timeout=None)

    async def get(self, url: str, headers: Dict[str, str], timeout: float) -> httpx.Response:
        return await self._client.get(url, headers=headers, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()


class Fetcher:
    """Concurrency-bounded HTML fetcher shared by the crawl jobs."""

    def __init__(
        self,
        *,
        limiter: Optional[ConcurrencyLimiter] = None,
        transport: Optional[AsyncTransport] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.limiter = limiter or ConcurrencyLimiter(settings.fetch_concurrency)
        self.timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
        self.user_agent = user_agent or settings.user_agent
        self.base_url = (base_url or settings.source_base_url).rstrip("/")
        self._transport = transport or HttpxTransport()
        self._owns_transport = transport is None

    async def aclose(self) -> None:
        if self._owns_transport:
            await self._transport.close()

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> str:
        request_headers = self._default_headers(headers)
        return await self.limiter.run(lambda: self._get(url, request_headers))

    async def fetch_overview(self, page: int, rows: Optional[int] = None) -> str:
        return await self.fetch(self.overview_url(page, rows))

    async def fetch_detail(self, url: str) -> str:
        return await self.fetch(url)

    def overview_url(self, page: int, rows: Optional[int] = None) -> str:
        query = urlencode(
            {
                "rows": rows or settings.rows_per_page,
                "page": page,
                "isNavigation": "true",
            }
        )
        return f"{self.base_url}{OVERVIEW_PATH}?{query}"

    async def _get(self, url: str, headers: Dict[str, str]) -> str:
        try:
            response = await self._transport.get(url, headers=headers, timeout=self.timeout)
        except httpx.RequestError as exc:
            raise TransportError(f"Request failed for {url}: {exc}", url=url) from exc

        if not 200 <= response.status_code < 300:
            raise TransportError(f"HTTP {response.status_code} for {url}", url=url, status_code=response.status_code)
        return response.text

    def _default_headers(self, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = dict(headers or {})
        lowered = {key.lower() for key in merged}
        if "user-agent" not in lowered:
            merged["User-Agent"] = self.user_agent
        if "accept" not in lowered:
            merged["Accept"] = DEFAULT_ACCEPT
        return merged
