"""Infer sold units from consecutive inventory snapshots."""

from __future__ import annotations

import logging
import pathlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from trendwatch.ingest.models import Snapshot
from trendwatch.logic.ranking import SignalRecord
from trendwatch.store.files import AGGREGATED, OutputStore
from trendwatch.utils.dates import isoformat, now_utc

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SaleEvent:
    source: str
    product_id: str
    variant_id: str | None
    title: str
    category: str
    price: float | None
    inventory_before: int
    inventory_now: int
    units_sold: int
    revenue: float
    window_start: str
    window_end: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "productId": self.product_id,
            "variantId": self.variant_id,
            "title": self.title,
            "category": self.category,
            "price": self.price,
            "inventoryBefore": self.inventory_before,
            "inventoryNow": self.inventory_now,
            "unitsSold": self.units_sold,
            "revenue": self.revenue,
            "windowStart": self.window_start,
            "windowEnd": self.window_end,
        }

    def to_signal(self, region: str | None = None) -> SignalRecord:
        """Variants roll up into their product; the store's region carries the units."""
        return SignalRecord(
            source=self.source,
            title=self.title,
            identity=f"{self.source}/{self.product_id}",
            category=self.category,
            units=self.units_sold,
            revenue=self.revenue,
            regions={region: float(self.units_sold)} if region else {},
            observed_at=self.window_end,
        )


def compute_sales(previous: Snapshot, current: Snapshot) -> list[SaleEvent]:
    """Events only where both inventories are known and stock strictly decreased.

    Revenue uses the current snapshot's price for the whole window.
    """
    before = {item.key: item.inventory_quantity for item in previous.items}
    events: list[SaleEvent] = []
    for item in current.items:
        prev_qty = before.get(item.key)
        now_qty = item.inventory_quantity
        if prev_qty is None or now_qty is None:
            continue
        sold = max(0, prev_qty - now_qty)
        if sold <= 0:
            continue
        events.append(
            SaleEvent(
                source=current.source or previous.source,
                product_id=item.product_id,
                variant_id=item.variant_id,
                title=item.title,
                category=item.category,
                price=item.price,
                inventory_before=prev_qty,
                inventory_now=now_qty,
                units_sold=sold,
                revenue=round(sold * (item.price or 0.0), 2),
                window_start=previous.fetched_at,
                window_end=current.fetched_at,
            )
        )
    return events


def diff_source(store: OutputStore, source_id: str) -> list[SaleEvent]:
    snapshots = store.list_latest_two(source_id)
    if len(snapshots) < 2:
        logger.info("Need two snapshots to diff %s, have %s", source_id, len(snapshots))
        return []
    previous, current = snapshots
    events = compute_sales(previous, current)
    logger.info("%s: %s sale events", source_id, len(events))
    return events


def diff_all(store: OutputStore, source_ids: Iterable[str] | None = None) -> list[SaleEvent]:
    ids = sorted(set(source_ids)) if source_ids is not None else store.snapshot_sources()
    events: list[SaleEvent] = []
    for source_id in ids:
        events.extend(diff_source(store, source_id))
    return events


def write_sales(
    store: OutputStore,
    events: list[SaleEvent],
    *,
    when: datetime | None = None,
) -> pathlib.Path:
    when = when or now_utc()
    payload = {
        "generatedAt": isoformat(when),
        "count": len(events),
        "items": [event.to_dict() for event in events],
    }
    return store.write(AGGREGATED, payload, when=when, latest=True)
