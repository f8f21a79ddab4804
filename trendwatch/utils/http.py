"""Rate-limited, retrying HTTP client shared by every network-facing component."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import urlparse

import httpx

from trendwatch.utils.rate_limit import RateLimiter
from trendwatch.utils.retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "TrendwatchBot/1.0 (+https://github.com/trendwatch)"
DEFAULT_TIMEOUT = 15.0
DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.8,*/*;q=0.7",
}


class FetchError(Exception):
    """Base class for fetch failures."""

    retryable = True


class NetworkError(FetchError):
    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class FetchTimeoutError(FetchError):
    pass


class PayloadError(FetchError):
    """A body that was required to be JSON could not be decoded."""

    retryable = False


class HttpError(FetchError):
    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"HTTP {status} on {url}")
        self.status = status
        self.url = url
        self.retryable = status >= 500 or status == 429


class AuthError(HttpError):
    def __init__(self, status: int, url: str) -> None:
        super().__init__(status, url)
        self.retryable = False


@dataclass(slots=True)
class FetchResult:
    url: str
    status: int
    body: str
    headers: Mapping[str, str] = field(default_factory=dict)
    links: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, TypeError) as exc:
            raise PayloadError(f"Malformed JSON from {self.url}") from exc

    @property
    def next_link(self) -> str | None:
        link = self.links.get("next") if self.links else None
        return link.get("url") if link else None


class FetchClient:
    """GET-only client with per-host politeness, timeouts and bounded retries."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: Mapping[str, str] | None = None,
        max_redirects: int = 5,
        retries: int = 2,
        backoff: float = 1.0,
        rate_limiter: RateLimiter | None = None,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.retries = retries
        self.backoff = backoff
        self.default_headers = {**DEFAULT_HEADERS, **(headers or {}), "User-Agent": user_agent}
        self._rate_limiter = rate_limiter or RateLimiter(rate=0.0)
        self._session = session or httpx.AsyncClient(timeout=timeout, max_redirects=max_redirects)

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._session.aclose()

    async def fetch(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> FetchResult:
        fetch_once = retry_async(
            self._fetch_once,
            retries=self.retries,
            base_delay=self.backoff,
            exceptions=(FetchError,),
        )
        return await fetch_once(url, params, headers)

    async def fetch_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        merged = {"Accept": "application/json", **(headers or {})}
        result = await self.fetch(url, params=params, headers=merged)
        return result.json()

    async def _fetch_once(
        self,
        url: str,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
    ) -> FetchResult:
        await self._rate_limiter.wait_for_host(urlparse(url).netloc)
        merged = {**self.default_headers, **(headers or {})}
        try:
            response = await self._session.get(
                url,
                params=params,
                headers=merged,
                timeout=self.timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Timed out fetching {url}") from exc
        except httpx.TooManyRedirects as exc:
            raise NetworkError(f"Too many redirects for {url}", retryable=False) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Network error for {url}: {exc}") from exc
        status = response.status_code
        if status in (401, 403):
            raise AuthError(status, url)
        if status >= 400:
            raise HttpError(status, url)
        return FetchResult(
            url=str(response.url),
            status=status,
            body=response.text,
            headers=dict(response.headers),
            links=response.links,
        )
