"""Snapshot job: capture the current catalog of every known storefront."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Iterable

import httpx
from dotenv import load_dotenv

from trendwatch.config import Settings
from trendwatch.ingest import load_sources
from trendwatch.ingest.models import STOREFRONT, Snapshot, Source
from trendwatch.ingest.storefront import CatalogSnapshotter, outcome_for, snapshot_sources, source_for_host
from trendwatch.jobs.report import RunReport
from trendwatch.store.files import SUMMARIES, OutputStore
from trendwatch.utils.dates import isoformat, now_utc
from trendwatch.utils.http import FetchClient

logger = logging.getLogger(__name__)


def storefront_sources(sources: Iterable[Source], registry: Iterable[str]) -> list[Source]:
    """Configured storefronts first, then registry hosts not already configured."""
    configured = [source for source in sources if source.kind == STOREFRONT]
    known = {source.host for source in configured}
    discovered = [source_for_host(host) for host in sorted(set(registry)) if host not in known]
    return configured + discovered


async def snapshot_storefronts(
    settings: Settings,
    client: FetchClient,
    store: OutputStore,
    sources: list[Source],
    report: RunReport,
    *,
    when: datetime | None = None,
) -> list[Snapshot]:
    snapshotter = CatalogSnapshotter(
        client,
        page_size=settings.page_size,
        max_pages=settings.max_product_pages,
    )
    snapshots = await snapshot_sources(snapshotter, sources, concurrency=settings.snapshot_concurrency)
    outcomes = []
    for snapshot in snapshots:
        store.write_snapshot(snapshot, when=when)
        outcome = outcome_for(snapshot)
        outcomes.append(outcome.to_dict())
        if not outcome.ok:
            report.fail(snapshot.source, "snapshot", outcome.reason)
    summary = {
        "generatedAt": isoformat(when or now_utc()),
        "count": len(outcomes),
        "ok": sum(1 for outcome in outcomes if outcome["ok"]),
        "summary": outcomes,
    }
    report.outputs["summary"] = str(store.write(SUMMARIES, summary, when=when))
    report.counts["snapshots"] = len(snapshots)
    return snapshots


async def run_snapshots(
    settings: Settings | None = None,
    *,
    session: httpx.AsyncClient | None = None,
) -> RunReport:
    load_dotenv()
    settings = settings or Settings.from_env()
    sources = load_sources(settings.sources_path)
    store = OutputStore(settings.data_dir)
    report = RunReport(started_at=isoformat(now_utc()))
    targets = storefront_sources(sources, store.load_registry())
    async with settings.fetch_client(session=session) as client:
        await snapshot_storefronts(settings, client, store, targets, report)
    store.prune_snapshots(settings.keep_snapshots)
    return report


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_snapshots())
