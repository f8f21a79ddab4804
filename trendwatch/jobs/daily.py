"""Full pipeline run: discover, snapshot, diff, enrich, score, rank."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Iterable

import httpx
from dotenv import load_dotenv

from trendwatch.config import Settings
from trendwatch.ingest import load_sources
from trendwatch.ingest.keywords import KeywordTrendClient
from trendwatch.ingest.locations import StoreLocation, StoreLocator, enrich_locations, region_for
from trendwatch.ingest.models import NEWS, TREND, Source
from trendwatch.ingest.news import NewsClient
from trendwatch.jobs.discover import discover_hosts
from trendwatch.jobs.report import RunReport
from trendwatch.jobs.snapshot import snapshot_storefronts, storefront_sources
from trendwatch.logic.diff import SaleEvent, diff_all, write_sales
from trendwatch.logic.ranking import SignalRecord, aggregate, apply_trend_labels
from trendwatch.store.files import AGGREGATED, RANKED, SUMMARIES, OutputStore
from trendwatch.utils.dates import isoformat, now_utc
from trendwatch.utils.http import FetchClient, FetchError

logger = logging.getLogger(__name__)

TRENDING_LIMIT = 20


async def run_pipeline(
    settings: Settings | None = None,
    *,
    session: httpx.AsyncClient | None = None,
    when: datetime | None = None,
) -> RunReport:
    """One scheduled run. Only configuration problems raise; everything else lands in the report."""
    load_dotenv()
    settings = settings or Settings.from_env()
    sources = load_sources(settings.sources_path)
    when = when or now_utc()
    store = OutputStore(settings.data_dir)
    report = RunReport(started_at=isoformat(when))

    async with settings.fetch_client(session=session) as client:
        registry = await discover_hosts(settings, client, store, report)
        storefronts = storefront_sources(sources, registry)
        await snapshot_storefronts(settings, client, store, storefronts, report, when=when)

        events = diff_all(store, [source.id for source in storefronts])
        report.outputs["sales"] = str(write_sales(store, events, when=when))
        report.counts["sale_events"] = len(events)

        hosts_by_source = {source.id: source.host for source in storefronts}
        sold_hosts = {hosts_by_source[e.source] for e in events if e.source in hosts_by_source}
        locations = await enrich_locations(store, StoreLocator(client), sold_hosts)

        records = sale_signals(events, hosts_by_source, locations)
        records.extend(await keyword_signals(settings, client, sources, report))

    result = aggregate(records, settings.weights, top_n=settings.top_n, superset_n=settings.superset_n)
    apply_trend_labels(result.candidates, store.read_latest(RANKED))
    payload = result.to_dict(generated_at=isoformat(when), failures=report.failures)
    report.outputs["ranked"] = str(store.write(RANKED, payload, when=when, latest=True))
    report.counts["ranked"] = len(result.candidates)

    store.prune_snapshots(settings.keep_snapshots)
    for directory in (SUMMARIES, AGGREGATED, RANKED):
        store.prune(directory, settings.keep_snapshots)
    logger.info("Run finished with %s failures", len(report.failures))
    return report


def sale_signals(
    events: Iterable[SaleEvent],
    hosts_by_source: dict[str, str],
    locations: dict[str, StoreLocation],
) -> list[SignalRecord]:
    records = []
    for event in events:
        host = hosts_by_source.get(event.source, event.source)
        records.append(event.to_signal(region_for(locations, host)))
    return records


async def keyword_signals(
    settings: Settings,
    client: FetchClient,
    sources: list[Source],
    report: RunReport,
) -> list[SignalRecord]:
    trend_sources = [source for source in sources if source.kind == TREND]
    news_sources = [source for source in sources if source.kind == NEWS]
    keywords = list(settings.keywords)
    records: list[SignalRecord] = []

    for source in trend_sources:
        trends = KeywordTrendClient(client, source)
        tracked = keywords
        if not tracked:
            try:
                tracked = (await trends.trending_keywords())[:TRENDING_LIMIT]
            except FetchError as exc:
                report.fail(source.id, "trending", exc)
                continue
            keywords.extend(k for k in tracked if k not in keywords)
        for keyword in tracked:
            try:
                trend = await trends.fetch_trend(keyword)
            except FetchError as exc:
                report.fail(f"{source.id}:{keyword}", "trend", exc)
                continue
            records.append(trend.to_signal())

    for source in news_sources:
        news = NewsClient(client, source)
        for keyword in keywords:
            try:
                mentions = await news.count_mentions(keyword)
            except FetchError as exc:
                report.fail(f"{source.id}:{keyword}", "news", exc)
                continue
            records.append(mentions.to_signal())

    report.counts["keyword_signals"] = len(records)
    return records


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_pipeline())
