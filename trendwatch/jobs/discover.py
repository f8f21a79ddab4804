"""Discovery job: crawl seeds and grow the storefront registry."""

from __future__ import annotations

import asyncio
import logging

import httpx
from dotenv import load_dotenv

from trendwatch.config import Settings
from trendwatch.ingest.discovery import StorefrontDiscoverer
from trendwatch.jobs.report import RunReport
from trendwatch.store.files import OutputStore
from trendwatch.utils.dates import isoformat, now_utc
from trendwatch.utils.http import FetchClient

logger = logging.getLogger(__name__)


async def discover_hosts(
    settings: Settings,
    client: FetchClient,
    store: OutputStore,
    report: RunReport,
) -> list[str]:
    """Crawl the configured seeds and merge matches into the registry; returns the registry."""
    if not settings.seeds:
        logger.info("No seeds configured; keeping existing registry")
        return store.load_registry()
    result = await StorefrontDiscoverer(client, settings.crawl).crawl(settings.seeds)
    report.extend(result.failures)
    registry = store.merge_registry(result.matched)
    report.counts["pages_crawled"] = result.pages_fetched
    report.counts["hosts_matched"] = len(result.matched)
    report.counts["registry_size"] = len(registry)
    return registry


async def run_discovery(
    settings: Settings | None = None,
    *,
    session: httpx.AsyncClient | None = None,
) -> RunReport:
    load_dotenv()
    settings = settings or Settings.from_env()
    store = OutputStore(settings.data_dir)
    report = RunReport(started_at=isoformat(now_utc()))
    async with settings.fetch_client(session=session) as client:
        await discover_hosts(settings, client, store, report)
    return report


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_discovery())
