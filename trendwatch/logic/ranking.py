"""Merge heterogeneous signals into demand scores and ranked top lists."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from trendwatch.logic.regions import UNKNOWN_REGION
from trendwatch.logic.signals import ScoringWeights, clamp_score, normalized, trend_label

GLOBAL_SHARE = 0.6
REGION_SHARE = 0.4
DEFAULT_TOP_N = 10
DEFAULT_SUPERSET_N = 200

WHITESPACE_RE = re.compile(r"\s+")


def normalize_title(title: str | None) -> str:
    return WHITESPACE_RE.sub(" ", (title or "").lower()).strip()


@dataclass(slots=True)
class SignalRecord:
    """One observation from one source, before aggregation."""

    source: str
    title: str
    identity: str | None = None
    category: str = ""
    units: int = 0
    revenue: float = 0.0
    trend_score: float | None = None
    regions: dict[str, float] = field(default_factory=dict)
    mentions: int = 0
    observed_at: str = ""

    @property
    def key(self) -> str:
        """Stable identity when present, else the normalized title."""
        if self.identity and self.identity.strip():
            return self.identity.strip()
        return normalize_title(self.title)


@dataclass(slots=True)
class AggregatedRecord:
    identity: str
    title: str
    category: str = ""
    units: int = 0
    revenue: float = 0.0
    trend_score: float | None = None
    regions: dict[str, float] = field(default_factory=dict)
    mentions: int = 0
    sources: list[str] = field(default_factory=list)
    trend_norm: float = 0.0
    sales_norm: float = 0.0
    revenue_norm: float = 0.0
    demand_score: float = 0.0
    trend: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "title": self.title,
            "category": self.category,
            "totalUnits": self.units,
            "totalRevenue": self.revenue,
            "trendScore": self.trend_score,
            "regions": dict(sorted(self.regions.items())),
            "mentions": self.mentions,
            "sources": self.sources,
            "components": {
                "trend": self.trend_norm,
                "sales": self.sales_norm,
                "revenue": self.revenue_norm,
            },
            "demandScore": self.demand_score,
            "trend": self.trend,
        }


@dataclass(slots=True)
class RegionalEntry:
    record: AggregatedRecord
    region: str
    region_metric: float
    local_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.record.to_dict(),
            "region": self.region,
            "regionMetric": self.region_metric,
            "localScore": self.local_score,
        }


@dataclass(slots=True)
class RankingResult:
    ranked_global: list[AggregatedRecord]
    ranked_by_region: dict[str, list[RegionalEntry]]
    candidates: list[AggregatedRecord]
    weights: ScoringWeights

    def to_dict(self, *, generated_at: str, failures: Sequence[Mapping[str, Any]] = ()) -> dict[str, Any]:
        return {
            "generatedAt": generated_at,
            "weights": {
                "trend": self.weights.trend,
                "sales": self.weights.sales,
                "revenue": self.weights.revenue,
            },
            "count": len(self.candidates),
            "rankedGlobal": [record.to_dict() for record in self.ranked_global],
            "rankedByRegion": {
                region: [entry.to_dict() for entry in entries]
                for region, entries in sorted(self.ranked_by_region.items())
            },
            "items": [record.to_dict() for record in self.candidates],
            "failures": list(failures),
        }


def merge_records(records: Iterable[SignalRecord]) -> list[AggregatedRecord]:
    """Accumulate per identity; input order never changes the result."""
    ordered = sorted(
        records,
        key=lambda r: (r.key, r.source, r.observed_at, r.title, r.units, r.revenue, r.trend_score or 0.0),
    )
    merged: dict[str, AggregatedRecord] = {}
    latest_trend: dict[str, tuple[str, float]] = {}
    for record in ordered:
        key = record.key
        if not key:
            continue
        agg = merged.get(key)
        if agg is None:
            agg = merged[key] = AggregatedRecord(identity=key, title=record.title or key)
        if not agg.category and record.category:
            agg.category = record.category
        agg.units += max(0, int(record.units or 0))
        agg.revenue = round(agg.revenue + max(0.0, float(record.revenue or 0.0)), 2)
        agg.mentions += max(0, int(record.mentions or 0))
        if record.source and record.source not in agg.sources:
            agg.sources.append(record.source)
        for region, metric in record.regions.items():
            agg.regions[region] = round(agg.regions.get(region, 0.0) + float(metric or 0.0), 4)
        if record.trend_score is not None:
            # latest report wins; scores are never summed across sources
            candidate = (record.observed_at, float(record.trend_score))
            if key not in latest_trend or candidate > latest_trend[key]:
                latest_trend[key] = candidate
                agg.trend_score = float(record.trend_score)
    for agg in merged.values():
        agg.sources.sort()
    return [merged[key] for key in sorted(merged)]


def score_records(records: Sequence[AggregatedRecord], weights: ScoringWeights) -> None:
    """Attach normalized components and the composite demand score in place."""
    trend_norm = normalized([r.trend_score or 0.0 for r in records])
    sales_norm = normalized([float(r.units) for r in records])
    revenue_norm = normalized([r.revenue for r in records])
    for idx, record in enumerate(records):
        record.trend_norm = round(trend_norm[idx], 4)
        record.sales_norm = round(sales_norm[idx], 4)
        record.revenue_norm = round(revenue_norm[idx], 4)
        score = (
            weights.trend * record.trend_norm
            + weights.sales * record.sales_norm
            + weights.revenue * record.revenue_norm
        )
        record.demand_score = round(clamp_score(score), 4)


def rank_global(records: Iterable[AggregatedRecord]) -> list[AggregatedRecord]:
    """Descending demand score, then normalized sales, then ascending identity."""
    return sorted(records, key=lambda r: (-r.demand_score, -r.sales_norm, r.identity))


def rank_regions(records: Iterable[AggregatedRecord], *, top_n: int = DEFAULT_TOP_N) -> dict[str, list[RegionalEntry]]:
    buckets: dict[str, list[RegionalEntry]] = defaultdict(list)
    for record in records:
        if not record.regions:
            buckets[UNKNOWN_REGION].append(
                RegionalEntry(record, UNKNOWN_REGION, 0.0, record.demand_score)
            )
            continue
        for region, metric in record.regions.items():
            local = round(GLOBAL_SHARE * record.demand_score + REGION_SHARE * metric, 4)
            buckets[region].append(RegionalEntry(record, region, metric, local))
    ranked: dict[str, list[RegionalEntry]] = {}
    for region in sorted(buckets):
        entries = sorted(
            buckets[region],
            key=lambda e: (-e.local_score, -e.record.sales_norm, e.record.identity),
        )
        ranked[region] = entries[:top_n]
    return ranked


def aggregate(
    records: Iterable[SignalRecord],
    weights: ScoringWeights,
    *,
    top_n: int = DEFAULT_TOP_N,
    superset_n: int = DEFAULT_SUPERSET_N,
) -> RankingResult:
    merged = merge_records(records)
    score_records(merged, weights)
    ordered = rank_global(merged)
    return RankingResult(
        ranked_global=ordered[:top_n],
        ranked_by_region=rank_regions(ordered, top_n=top_n),
        candidates=ordered[: max(superset_n, top_n)],
        weights=weights,
    )


def apply_trend_labels(records: Iterable[AggregatedRecord], previous: Mapping[str, Any] | None) -> None:
    """Label each record against the previous ranked output: new, rising, falling or stable."""
    history: dict[str, Mapping[str, Any]] = {}
    if isinstance(previous, Mapping) and isinstance(previous.get("items"), list):
        for item in previous["items"]:
            if isinstance(item, Mapping) and item.get("identity"):
                history[str(item["identity"])] = item
    for record in records:
        before = history.get(record.identity)
        if before is None:
            record.trend = trend_label(None, 0.0)
            continue
        prev_units = _number(before.get("totalUnits"))
        if record.units or prev_units:
            record.trend = trend_label(prev_units, float(record.units))
        else:
            record.trend = trend_label(_number(before.get("demandScore")), record.demand_score)


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
