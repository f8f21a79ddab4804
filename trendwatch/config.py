"""Runtime settings loaded from the environment."""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass
from typing import Mapping

import httpx

from trendwatch.logic.signals import ScoringWeights
from trendwatch.utils.http import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT, FetchClient
from trendwatch.utils.rate_limit import RateLimiter

PACKAGED_SOURCES = pathlib.Path(__file__).parent / "ingest" / "sources.yml"

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    """Invalid or missing configuration; raised before any network work."""


@dataclass(frozen=True, slots=True)
class CrawlSettings:
    max_pages: int = 200
    depth: int = 3
    delay_seconds: float = 0.6
    concurrency: int = 2
    respect_robots: bool = False
    only_platform_hosts: bool = False


@dataclass(frozen=True, slots=True)
class Settings:
    data_dir: pathlib.Path
    sources_path: pathlib.Path
    seeds: tuple[str, ...]
    crawl: CrawlSettings
    weights: ScoringWeights
    snapshot_concurrency: int = 3
    max_product_pages: int = 10
    page_size: int = 250
    top_n: int = 10
    superset_n: int = 200
    keep_snapshots: int = 30
    http_timeout: float = DEFAULT_TIMEOUT
    fetch_retries: int = 2
    fetch_backoff: float = 1.0
    user_agent: str = DEFAULT_USER_AGENT
    keywords: tuple[str, ...] = ()
    serp_api_key: str | None = None
    news_api_key: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        crawl = CrawlSettings(
            max_pages=_int(env, "MAX_PAGES", 200),
            depth=_int(env, "CRAWL_DEPTH", 3, minimum=0),
            delay_seconds=_int(env, "CRAWL_DELAY_MS", 600, minimum=0) / 1000.0,
            concurrency=_int(env, "CRAWL_CONCURRENCY", 2),
            respect_robots=_bool(env, "RESPECT_ROBOTS", False),
            only_platform_hosts=_bool(env, "ONLY_PLATFORM_HOSTS", False),
        )
        weights = ScoringWeights(
            trend=_float(env, "WEIGHT_TREND", 0.6),
            sales=_float(env, "WEIGHT_SALES", 0.3),
            revenue=_float(env, "WEIGHT_REVENUE", 0.1),
        )
        try:
            weights.validate()
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        settings = cls(
            data_dir=pathlib.Path(env.get("TRENDWATCH_DATA_DIR", "data")),
            sources_path=pathlib.Path(env.get("TRENDWATCH_SOURCES") or PACKAGED_SOURCES),
            seeds=_seeds(env.get("SEEDS", "")),
            crawl=crawl,
            weights=weights,
            snapshot_concurrency=_int(env, "SNAPSHOT_CONCURRENCY", 3),
            max_product_pages=_int(env, "MAX_PRODUCT_PAGES", 10),
            page_size=_int(env, "PAGE_SIZE", 250),
            top_n=_int(env, "TOP_N", 10),
            superset_n=_int(env, "SUPERSET_N", 200),
            keep_snapshots=_int(env, "KEEP_SNAPSHOTS", 30, minimum=2),
            http_timeout=_float(env, "HTTP_TIMEOUT", DEFAULT_TIMEOUT, minimum=0.001),
            fetch_retries=_int(env, "FETCH_RETRIES", 2, minimum=0),
            fetch_backoff=_int(env, "FETCH_BACKOFF_MS", 1000, minimum=0) / 1000.0,
            user_agent=env.get("USER_AGENT") or DEFAULT_USER_AGENT,
            keywords=_split(env.get("TREND_KEYWORDS", "")),
            serp_api_key=env.get("SERP_API_KEY") or None,
            news_api_key=env.get("NEWS_API_KEY") or None,
        )
        if settings.superset_n < settings.top_n:
            raise ConfigError("SUPERSET_N must be at least TOP_N")
        return settings

    def fetch_client(self, *, session: httpx.AsyncClient | None = None) -> FetchClient:
        return FetchClient(
            timeout=self.http_timeout,
            user_agent=self.user_agent,
            retries=self.fetch_retries,
            backoff=self.fetch_backoff,
            rate_limiter=RateLimiter.from_delay(self.crawl.delay_seconds),
            session=session,
        )


def _int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    lowered = raw.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _split(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _seeds(value: str) -> tuple[str, ...]:
    """Seeds come either from a file (one URL per line) or a comma-separated list."""
    value = value.strip()
    if not value:
        return ()
    path = pathlib.Path(value)
    if "," not in value and path.is_file():
        return tuple(line.strip() for line in path.read_text().splitlines() if line.strip())
    return _split(value)
