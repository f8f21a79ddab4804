"""Search-interest signals for tracked keywords."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from trendwatch.ingest.models import Source, to_float
from trendwatch.logic.ranking import SignalRecord, normalize_title
from trendwatch.logic.regions import RegionAttributor, default_attributor
from trendwatch.utils.dates import isoformat, now_utc
from trendwatch.utils.http import FetchClient

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://serpapi.com/search.json"
DEFAULT_GEO = "US"
DEFAULT_WINDOW = "today 1-m"
REGION_CODE_RE = re.compile(r"^[A-Z]{2}-[A-Z0-9]{1,3}$")


@dataclass(slots=True)
class KeywordTrend:
    keyword: str
    score: float
    growth: float
    points: list[float] = field(default_factory=list)
    regions: dict[str, float] = field(default_factory=dict)
    fetched_at: str = ""
    source: str = ""

    def to_signal(self) -> SignalRecord:
        return SignalRecord(
            source=self.source,
            title=self.keyword,
            identity=normalize_title(self.keyword),
            trend_score=self.score,
            regions=dict(self.regions),
            observed_at=self.fetched_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "keyword": self.keyword,
            "score": self.score,
            "growth": self.growth,
            "points": self.points,
            "regions": self.regions,
            "fetchedAt": self.fetched_at,
            "source": self.source,
        }


def timeline_points(payload: Any) -> list[float]:
    """0-100 interest points from a TIMESERIES response; missing pieces read as empty."""
    if not isinstance(payload, dict):
        return []
    interest = payload.get("interest_over_time")
    timeline = interest.get("timeline_data") if isinstance(interest, dict) else None
    if not isinstance(timeline, list):
        return []
    points: list[float] = []
    for entry in timeline:
        values = entry.get("values") if isinstance(entry, dict) else None
        first = values[0] if isinstance(values, list) and values else {}
        if not isinstance(first, dict):
            first = {}
        value = to_float(first.get("extracted_value", first.get("value")))
        points.append(value if value is not None else 0.0)
    return points


def summarize(points: list[float]) -> tuple[float, float]:
    """Mean of the series and last-minus-first growth."""
    if not points:
        return 0.0, 0.0
    arr = np.array(points, dtype=float)
    growth = float(arr[-1] - arr[0]) if len(arr) > 1 else 0.0
    return round(float(arr.mean()), 2), growth


class KeywordTrendClient:
    def __init__(
        self,
        client: FetchClient,
        source: Source,
        *,
        geo: str = DEFAULT_GEO,
        window: str = DEFAULT_WINDOW,
        attributor: RegionAttributor | None = None,
    ) -> None:
        self.client = client
        self.source = source
        self.geo = geo
        self.window = window
        self.attributor = attributor or default_attributor()

    @property
    def endpoint(self) -> str:
        return self.source.endpoint or self.source.url or DEFAULT_ENDPOINT

    async def fetch_trend(self, keyword: str) -> KeywordTrend:
        logger.info("Fetching search interest for %r", keyword)
        series = await self._search({"engine": "google_trends", "q": keyword, "data_type": "TIMESERIES"})
        by_region = await self._search({"engine": "google_trends", "q": keyword, "data_type": "GEO_MAP_0"})
        points = timeline_points(series)
        score, growth = summarize(points)
        return KeywordTrend(
            keyword=keyword,
            score=score,
            growth=growth,
            points=points,
            regions=self.region_interest(by_region),
            fetched_at=isoformat(now_utc()),
            source=self.source.id,
        )

    async def trending_keywords(self) -> list[str]:
        """Today's trending searches, in provider order without duplicates."""
        payload = await self._search({"engine": "google_trends_daily_trending_searches"})
        days = payload.get("daily_trending_searches") if isinstance(payload, dict) else None
        keywords: list[str] = []
        for day in days if isinstance(days, list) else []:
            searches = day.get("trending_searches") if isinstance(day, dict) else None
            for search in searches if isinstance(searches, list) else []:
                query = search.get("query") if isinstance(search, dict) else None
                if isinstance(query, str) and query.strip() and query.strip() not in keywords:
                    keywords.append(query.strip())
        return keywords

    def region_interest(self, payload: Any) -> dict[str, float]:
        entries = payload.get("interest_by_region") if isinstance(payload, dict) else None
        regions: dict[str, float] = {}
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict):
                continue
            region = self._region_code(entry)
            value = to_float(entry.get("extracted_value", entry.get("value")))
            if region and value is not None:
                regions[region] = regions.get(region, 0.0) + value
        return regions

    def _region_code(self, entry: dict[str, Any]) -> str | None:
        name = entry.get("location") or entry.get("name")
        if isinstance(name, str):
            resolved = self.attributor.resolve_region_name(name, country=self.geo)
            if resolved:
                return resolved
        code = entry.get("geo")
        if isinstance(code, str) and REGION_CODE_RE.match(code.upper()):
            return code.upper()
        return None

    async def _search(self, params: dict[str, Any]) -> Any:
        query = {**params, "api_key": self.source.token}
        if params.get("engine") == "google_trends":
            query.update({"geo": self.geo, "date": self.window})
        else:
            query["geo"] = self.geo
        return await self.client.fetch_json(self.endpoint, params=query)
