"""Fake HTTP transport shared by the service tests."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Union
from urllib.parse import parse_qs, urlparse

import httpx

from backend.app.core.rate_limit import ConcurrencyLimiter
from backend.app.services.fetcher import Fetcher

Route = Union[str, int, Exception]


def make_response(status_code: int, text: str = "", url: str = "https://www.willhaben.at") -> httpx.Response:
    return httpx.Response(status_code=status_code, text=text, request=httpx.Request("GET", url))


class FakeTransport:
    """Serves overview pages by page number and detail pages by listing id."""

    def __init__(
        self,
        overview_pages: Optional[Dict[int, Route]] = None,
        details: Optional[Dict[str, Route]] = None,
        default_overview: Optional[Route] = None,
        delay: float = 0.0,
    ):
        self.overview_pages = overview_pages or {}
        self.details = details or {}
        self.default_overview = default_overview
        self.delay = delay
        self.calls: List[str] = []
        self.headers: List[Dict[str, str]] = []
        self.closed = False

    async def get(self, url: str, headers: Dict[str, str], timeout: float) -> httpx.Response:
        self.calls.append(url)
        self.headers.append(headers)
        if self.delay:
            await asyncio.sleep(self.delay)
        parsed = urlparse(url)
        if parsed.path.endswith("mietwohnung-angebote"):
            page = int(parse_qs(parsed.query)["page"][0])
            route = self.overview_pages.get(page, self.default_overview)
        else:
            route = self._detail_route(parsed.path)
        return self._respond(route, url)

    def _detail_route(self, path: str) -> Optional[Route]:
        for listing_id, route in self.details.items():
            if path.rstrip("/").endswith(listing_id):
                return route
        return None

    @staticmethod
    def _respond(route: Optional[Route], url: str) -> httpx.Response:
        if route is None:
            return make_response(404, "not found", url)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, int):
            return make_response(route, "", url)
        return make_response(200, route, url)

    async def close(self) -> None:
        self.closed = True

    def overview_calls(self) -> List[int]:
        return [
            int(parse_qs(urlparse(url).query)["page"][0])
            for url in self.calls
            if urlparse(url).path.endswith("mietwohnung-angebote")
        ]


def make_fetcher(transport: FakeTransport, concurrency: int = 4) -> Fetcher:
    return Fetcher(limiter=ConcurrencyLimiter(concurrency), transport=transport, timeout=1.0)


async def no_sleep(_delay: float) -> None:
    return None


