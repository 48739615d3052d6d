"""
aiohttp client for a JSON search-results API.

``SearchApiFetcher`` implements both the page fetcher and the initial-state
loader contracts: it performs exactly one round-trip per call and either returns
a parsed ``PageResult`` or raises a typed ``FetchError``. Retrying, pacing and
cooldowns belong to the pagination manager, not to this client.
"""

from __future__ import annotations

import asyncio
import json
import time
from http.cookies import CookieError, SimpleCookie
from typing import Any, Dict, Optional, Tuple

import aiohttp
import structlog

from pageharvest.config import FetcherConfig
from pageharvest.crawler.navigation import NavigationExtractor, cookie_header, sanitize_cookies
from pageharvest.dedup.accumulator import build_records
from pageharvest.errors import InvalidResponseError, RateLimitedError, TransportError
from pageharvest.protocols import NavigationState, NavigationUpdate, PageResult

logger = structlog.get_logger(__name__)

DEFAULT_HITS_PER_PAGE = 96
RATE_LIMIT_STATUSES = frozenset({429, 503})
RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "cloudflare")

COMMON_HEADERS = {
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Content-Type": "application/json",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
}

ATTRIBUTES_TO_RETRIEVE = [
    "lotId",
    "lotTitle",
    "lotNumber",
    "lotRef",
    "houseName",
    "dateTimeUTCUnix",
    "dateTimeLocal",
    "currencyCode",
    "currencySymbol",
    "priceResult",
    "photoPath",
    "saleType",
]


def is_rate_limit_signal(status: Optional[int], message: Optional[str] = None) -> bool:
    """True for explicit throttling: 429/503 or a provider throttle message."""
    if status in RATE_LIMIT_STATUSES:
        return True
    if message:
        lowered = message.lower()
        return any(marker in lowered for marker in RATE_LIMIT_MARKERS)
    return False


def _error_message(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        for key in ("error", "message"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def parse_search_response(data: Any, page_number: int, default_hits_per_page: int = DEFAULT_HITS_PER_PAGE) -> PageResult:
    """Turn a decoded results body into a ``PageResult``.

    Raises ``RateLimitedError`` for throttle messages and ``InvalidResponseError``
    when the body lacks ``results[0].hits``.
    """
    message = _error_message(data)
    if message and is_rate_limit_signal(None, message):
        raise RateLimitedError(message, page_number=page_number)

    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        raise InvalidResponseError(message or "response has no results block", page_number=page_number)

    first = results[0]
    hits = first.get("hits")
    if not isinstance(hits, list):
        raise InvalidResponseError("results block has no hits list", page_number=page_number)

    meta = first.get("meta") if isinstance(first.get("meta"), dict) else {}
    total = first.get("nbHits", first.get("totalHits", meta.get("totalHits")))
    hits_per_page = first.get("hitsPerPage") or meta.get("hitsPerPage") or default_hits_per_page

    return PageResult(
        page_number=page_number,
        records=tuple(build_records(hit for hit in hits if isinstance(hit, dict))),
        total_count=int(total) if total is not None else None,
        hits_per_page=int(hits_per_page),
        raw=data,
    )


def cookies_from_headers(headers: Any) -> Dict[str, str]:
    """Collect ``Set-Cookie`` values from a response's headers."""
    jar: SimpleCookie = SimpleCookie()
    for header in headers.getall("Set-Cookie", []):
        try:
            jar.load(header)
        except CookieError as e:
            logger.debug("Ignoring malformed Set-Cookie header", error=str(e))
    return sanitize_cookies({name: morsel.value for name, morsel in jar.items()})


class SearchApiFetcher:
    """One fetcher per job: it owns an aiohttp session and the job's query."""

    def __init__(
        self,
        config: Optional[FetcherConfig] = None,
        query: str = "",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config or FetcherConfig()
        self.query = query
        self.session = session
        self._owns_session = session is None
        self.extractor = NavigationExtractor()
        self.requests_made = 0

    @property
    def results_url(self) -> str:
        return f"{self.config.base_url}{self.config.results_path}"

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                headers={**COMMON_HEADERS, "User-Agent": self.config.user_agent},
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
                # Cookies travel in NavigationState only
                cookie_jar=aiohttp.DummyCookieJar(),
            )
            self._owns_session = True
            logger.info("Search API session initialized", base_url=self.config.base_url)

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None

    async def __aenter__(self) -> SearchApiFetcher:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_payload(self, page_number: int, navigation: NavigationState) -> Dict[str, Any]:
        """Algolia-style multi-query payload. Upstream pages are 0-indexed."""
        params: Dict[str, Any] = {
            "attributesToRetrieve": list(ATTRIBUTES_TO_RETRIEVE),
            "clickAnalytics": True,
            "hitsPerPage": self.config.hits_per_page,
            "page": page_number - 1,
            "query": self.query,
        }
        if navigation.user_token:
            params["userToken"] = navigation.user_token
        params.update(self.config.extra_params)

        request: Dict[str, Any] = {"indexName": self.config.index_name, "params": params}
        if navigation.ref_id:
            request["refId"] = navigation.ref_id
        if navigation.search_context is not None:
            request["searchContext"] = navigation.search_context
        if navigation.searcher is not None:
            request["searcher"] = navigation.searcher
        return {"requests": [request]}

    def build_headers(self, navigation: NavigationState) -> Dict[str, str]:
        headers = {"Origin": self.config.base_url, "Referer": f"{self.config.base_url}/search"}
        if navigation.cookies:
            headers["Cookie"] = cookie_header(navigation.cookies)
        return headers

    # ------------------------------------------------------------------
    # Round-trips
    # ------------------------------------------------------------------

    async def _request(
        self, method: str, url: str, page_number: int, **kwargs: Any
    ) -> Tuple[int, str, Dict[str, str], float]:
        if self.session is None:
            await self.initialize()
        assert self.session is not None

        self.requests_made += 1
        started = time.perf_counter()
        try:
            async with self.session.request(method, url, **kwargs) as response:
                body = await response.text()
                return response.status, body, cookies_from_headers(response.headers), time.perf_counter() - started
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} {url} timed out", page_number=page_number) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {url} failed: {e}", page_number=page_number) from e

    async def fetch_page(self, page_number: int, navigation: NavigationState) -> PageResult:
        status, body, cookies, elapsed = await self._request(
            "POST",
            self.results_url,
            page_number,
            json=self.build_payload(page_number, navigation),
            headers=self.build_headers(navigation),
        )

        if is_rate_limit_signal(status):
            raise RateLimitedError(f"HTTP {status}", page_number=page_number, status=status)
        if not 200 <= status < 300:
            if is_rate_limit_signal(None, body[:2000]):
                raise RateLimitedError(f"HTTP {status} throttle page", page_number=page_number, status=status)
            raise TransportError(f"HTTP {status}", page_number=page_number, status=status)

        try:
            data = json.loads(body)
        except ValueError as e:
            if is_rate_limit_signal(None, body[:2000]):
                raise RateLimitedError("throttle page instead of JSON", page_number=page_number, status=status) from e
            raise InvalidResponseError(f"invalid JSON: {e}", page_number=page_number, status=status) from e

        page = parse_search_response(data, page_number, self.config.hits_per_page)
        logger.debug("Fetched page", page=page_number, hits=len(page.records), elapsed=round(elapsed, 3))
        return PageResult(
            page_number=page.page_number,
            records=page.records,
            total_count=page.total_count,
            hits_per_page=page.hits_per_page,
            raw=page.raw,
            cookies=cookies,
            response_time=elapsed,
        )

    async def _warmup(self) -> Dict[str, str]:
        """Visit the site origin once so the session carries its cookies."""
        status, _, cookies, _ = await self._request("GET", self.config.base_url, 1)
        if is_rate_limit_signal(status):
            raise RateLimitedError(f"HTTP {status} during warmup", page_number=1, status=status)
        if status >= 400:
            logger.warning("Warmup request returned an error status", status=status)
        logger.debug("Warmup complete", cookies=len(cookies))
        return cookies

    async def load_first_page(self, query: str) -> Tuple[PageResult, NavigationState]:
        self.query = query
        navigation = NavigationState(user_token=self.config.extra_params.get("userToken"))
        if self.config.warmup:
            navigation.apply(NavigationUpdate(cookies=await self._warmup()))

        page = await self.fetch_page(1, navigation)
        navigation.apply(self.extractor.extract(page.raw))
        navigation.apply(NavigationUpdate(cookies=page.cookies))
        logger.info(
            "First page loaded",
            query=query,
            total_count=page.total_count,
            hits=len(page.records),
            has_ref_id=navigation.ref_id is not None,
        )
        return page, navigation
