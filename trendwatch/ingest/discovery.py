"""Breadth-first crawl that finds storefronts running a target platform."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from trendwatch.config import CrawlSettings
from trendwatch.ingest.models import normalize_host
from trendwatch.utils.http import FetchClient, FetchError
from trendwatch.utils.robots import RobotsCache

logger = logging.getLogger(__name__)

SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "#")
BINARY_EXT_RE = re.compile(r"\.(jpe?g|png|gif|svg|webp|ico|pdf|zip|gz|mp4|webm|mp3|wav|css|woff2?)$", re.I)


@dataclass(frozen=True, slots=True)
class PlatformSignature:
    """Layered heuristics for one storefront platform, most reliable first."""

    name: str = "shopify"
    host_suffixes: tuple[str, ...] = (".myshopify.com",)
    asset_re: re.Pattern[str] = re.compile(r"cdn\.shopify\.com|shopify\.js|shopify_common|shopify_assets", re.I)
    marker_re: re.Pattern[str] = re.compile(
        r"Shopify\.analytics|Shopify\.theme|Shopify\.shop|data-shopify|shopify-section", re.I
    )
    path_re: re.Pattern[str] = re.compile(r"/(products|collections)/[A-Za-z0-9_-]+", re.I)

    def matches_host(self, host: str) -> bool:
        return any(host.endswith(suffix) for suffix in self.host_suffixes)

    def classify(self, url: str, soup: BeautifulSoup | None) -> str | None:
        """Name of the first heuristic that matched, or None."""
        if self.matches_host(normalize_host(url)):
            return "host"
        if soup is None:
            return None
        for tag in soup.find_all(["script", "link"]):
            if self.asset_re.search(tag.get("src") or tag.get("href") or ""):
                return "asset"
        markup = str(soup)
        if self.marker_re.search(markup):
            return "marker"
        if self.path_re.search(urlparse(url).path):
            return "path"
        return None


SHOPIFY = PlatformSignature()


@dataclass(slots=True)
class DiscoveryResult:
    matched: list[str]
    registry: list[str]
    pages_fetched: int
    failures: list[dict[str, str]] = field(default_factory=list)


def normalize_seed(url: str) -> str:
    url = url.strip()
    if "://" not in url:
        url = f"https://{url}"
    return urldefrag(url)[0]


def extract_links(soup: BeautifulSoup, base_url: str) -> list[str]:
    """Absolute http(s) links in document order, fragments removed."""
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.lower().startswith(SKIPPED_SCHEMES):
            continue
        absolute = urldefrag(urljoin(base_url, href))[0]
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https") or BINARY_EXT_RE.search(parsed.path):
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links


class StorefrontDiscoverer:
    def __init__(
        self,
        client: FetchClient,
        settings: CrawlSettings,
        *,
        signature: PlatformSignature = SHOPIFY,
        robots: RobotsCache | None = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.signature = signature
        if robots is None and settings.respect_robots:
            robots = RobotsCache(client)
        self.robots = robots
        self._lock = asyncio.Lock()
        self._seen: set[str] = set()
        self._hosts: set[str] = set()
        self._pages = 0
        self._failures: list[dict[str, str]] = []

    async def crawl(self, seeds: Iterable[str]) -> DiscoveryResult:
        queue: asyncio.Queue[tuple[str, int]] = asyncio.Queue()
        for seed in seeds:
            url = normalize_seed(seed)
            if url not in self._seen:
                self._seen.add(url)
                queue.put_nowait((url, 0))
        workers = [
            asyncio.create_task(self._worker(queue))
            for _ in range(max(1, self.settings.concurrency))
        ]
        try:
            await queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
        matched = sorted(self._hosts)
        logger.info("Crawled %s pages, matched %s hosts", self._pages, len(matched))
        return DiscoveryResult(
            matched=matched,
            registry=matched,
            pages_fetched=self._pages,
            failures=list(self._failures),
        )

    async def _worker(self, queue: asyncio.Queue[tuple[str, int]]) -> None:
        while True:
            url, depth = await queue.get()
            try:
                await self._visit(url, depth, queue)
            except Exception:
                logger.exception("Unexpected error crawling %s", url)
                self._failures.append({"unit": url, "stage": "discover", "reason": "unexpected error"})
            finally:
                queue.task_done()

    async def _visit(self, url: str, depth: int, queue: asyncio.Queue[tuple[str, int]]) -> None:
        if depth > self.settings.depth or self._budget_exhausted():
            return
        if self.robots is not None and not await self.robots.allowed(url):
            logger.info("Blocked by robots.txt: %s", url)
            return
        async with self._lock:
            # budget re-checked under the lock so concurrent workers never overshoot
            if self._budget_exhausted():
                return
            self._pages += 1
        try:
            result = await self.client.fetch(url)
        except FetchError as exc:
            logger.warning("Skipping %s: %s", url, exc)
            self._failures.append({"unit": url, "stage": "discover", "reason": str(exc)})
            return
        soup = BeautifulSoup(result.body or "", "html.parser")
        method = self.signature.classify(result.url, soup)
        host = normalize_host(result.url)
        if method and self._accept_host(host):
            async with self._lock:
                if host not in self._hosts:
                    logger.info("Matched %s via %s", host, method)
                    self._hosts.add(host)
        if depth >= self.settings.depth:
            return
        for link in extract_links(soup, result.url):
            async with self._lock:
                if link in self._seen:
                    continue
                self._seen.add(link)
            queue.put_nowait((link, depth + 1))

    def _budget_exhausted(self) -> bool:
        return self._pages >= self.settings.max_pages

    def _accept_host(self, host: str) -> bool:
        if not host:
            return False
        if self.settings.only_platform_hosts:
            return self.signature.matches_host(host)
        return True


async def discover(
    client: FetchClient,
    settings: CrawlSettings,
    seeds: Iterable[str],
    *,
    existing: Iterable[str] = (),
    signature: PlatformSignature = SHOPIFY,
) -> DiscoveryResult:
    """Crawl ``seeds`` and union the matches with ``existing`` hosts."""
    result = await StorefrontDiscoverer(client, settings, signature=signature).crawl(seeds)
    hosts = {normalize_host(h) for h in existing if h} | set(result.matched)
    result.registry = sorted(h for h in hosts if h)
    return result
