from datetime import datetime, timedelta, timezone

from trendwatch.ingest.models import CatalogItem, Snapshot
from trendwatch.logic.diff import compute_sales, diff_all, diff_source, write_sales

T0 = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)


def _item(product, variant, qty, price=10.0, title="Widget"):
    return CatalogItem(product, variant, title, "Tools", price, qty)


def _snap(items, fetched_at="2026-10-01T12:00:00+00:00", source="store-x"):
    return Snapshot(source=source, fetched_at=fetched_at, items=items)


def test_inventory_drop_becomes_sale_event(store):
    store.write_snapshot(_snap([_item("P1", "V1", 100)]), when=T0)
    store.write_snapshot(
        _snap([_item("P1", "V1", 60)], fetched_at="2026-10-02T12:00:00+00:00"),
        when=T0 + timedelta(days=1),
    )
    events = diff_source(store, "store-x")
    assert len(events) == 1
    payload = events[0].to_dict()
    assert payload["productId"] == "P1"
    assert payload["variantId"] == "V1"
    assert payload["unitsSold"] == 40
    assert payload["revenue"] == 400.0
    assert payload["windowStart"] == "2026-10-01T12:00:00+00:00"
    assert payload["windowEnd"] == "2026-10-02T12:00:00+00:00"


def test_unknown_or_rising_inventory_emits_nothing():
    previous = _snap([_item("P1", "V1", None), _item("P2", None, 5), _item("P3", "V3", 10), _item("P4", "V4", 7)])
    current = _snap([_item("P1", "V1", 3), _item("P2", None, None), _item("P3", "V3", 12), _item("P4", "V4", 7)])
    assert compute_sales(previous, current) == []


def test_new_items_and_missing_price():
    previous = _snap([_item("P1", "V1", 9)])
    current = _snap([_item("P1", "V1", 4, price=None), _item("P9", "V9", 1)])
    events = compute_sales(previous, current)
    assert [(e.product_id, e.units_sold, e.revenue) for e in events] == [("P1", 5, 0.0)]


def test_units_sold_never_negative():
    previous = _snap([_item(f"P{i}", None, i * 3) for i in range(10)])
    current = _snap([_item(f"P{i}", None, 15) for i in range(10)])
    assert all(event.units_sold > 0 for event in compute_sales(previous, current))


def test_single_snapshot_yields_nothing(store):
    store.write_snapshot(_snap([_item("P1", "V1", 10)]), when=T0)
    assert diff_source(store, "store-x") == []


def test_diff_all_and_write_sales(store):
    for source, (before, after) in {"a-shop": (10, 4), "b-shop": (3, 1)}.items():
        store.write_snapshot(_snap([_item("P1", "V1", before)], source=source), when=T0)
        store.write_snapshot(_snap([_item("P1", "V1", after)], source=source), when=T0 + timedelta(hours=1))
    events = diff_all(store)
    assert [(e.source, e.units_sold) for e in events] == [("a-shop", 6), ("b-shop", 2)]
    write_sales(store, events, when=T0)
    latest = store.read_latest("aggregated")
    assert latest["count"] == 2
    assert latest["items"][0]["unitsSold"] == 6


def test_sale_event_signal_rolls_up_to_product():
    events = compute_sales(
        _snap([_item("P1", "V1", 10), _item("P1", "V2", 10)]),
        _snap([_item("P1", "V1", 8), _item("P1", "V2", 7)]),
    )
    signals = [event.to_signal("US-TX") for event in events]
    assert {signal.key for signal in signals} == {"store-x/P1"}
    assert signals[0].regions == {"US-TX": 2.0}
    assert events[0].to_signal().regions == {}
