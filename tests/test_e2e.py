from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx

from trendwatch.config import ConfigError, Settings
from trendwatch.jobs import daily
from trendwatch.store.files import AGGREGATED, RANKED, STORE_METADATA, SUMMARIES, OutputStore

T0 = datetime(2026, 10, 17, 6, 0, tzinfo=timezone.utc)

SOURCES = """
- id: hexco
  kind: storefront
  url: https://hexco.test
- id: serp
  kind: trend
  url: https://serpapi.com/search.json
"""


def _catalog(trail_qty: int) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "products": [
                {
                    "id": 101,
                    "title": "Trail Runner",
                    "product_type": "Shoes",
                    "variants": [
                        {"id": 1001, "price": "89.00", "inventory_quantity": trail_qty},
                        {"id": 1002, "price": "89.00", "inventory_quantity": 15},
                    ],
                }
            ]
        },
    )


@pytest.fixture()
def pipeline_settings(env, tmp_path, monkeypatch):
    sources = tmp_path / "pipeline_sources.yml"
    sources.write_text(SOURCES)
    monkeypatch.setenv("SERP_API_KEY", "serp-key")
    env.update({"TRENDWATCH_SOURCES": str(sources), "TREND_KEYWORDS": "trail runner"})
    return Settings.from_env(env)


@pytest.mark.asyncio
async def test_two_runs_produce_ranked_output(pipeline_settings, fixture_text):
    async with respx.mock(assert_all_called=False) as router:
        catalog = router.get("https://hexco.test/products.json").mock(side_effect=[_catalog(40), _catalog(30)])
        router.get("https://hexco.test/pages/contact").mock(
            return_value=httpx.Response(200, html=fixture_text("locations/contact.html"))
        )
        router.get("https://serpapi.com/search.json", params={"data_type": "TIMESERIES"}).mock(
            return_value=httpx.Response(200, text=fixture_text("serpapi/timeseries.json"))
        )
        router.get("https://serpapi.com/search.json", params={"data_type": "GEO_MAP_0"}).mock(
            return_value=httpx.Response(200, text=fixture_text("serpapi/geo_map.json"))
        )
        first = await daily.run_pipeline(pipeline_settings, when=T0)
        second = await daily.run_pipeline(pipeline_settings, when=T0 + timedelta(days=1))

    assert catalog.call_count == 2
    assert first.ok and second.ok
    assert first.counts["sale_events"] == 0
    assert second.counts["sale_events"] == 1

    store = OutputStore(pipeline_settings.data_dir)
    sales = store.read_latest(AGGREGATED)
    assert sales["items"][0]["unitsSold"] == 10
    assert sales["items"][0]["revenue"] == 890.0
    assert len(store.list_stamped(SUMMARIES)) == 2

    ranked = store.read_latest(RANKED)
    assert ranked["generatedAt"] == "2026-10-18T06:00:00+00:00"
    assert ranked["count"] == 2
    assert ranked["failures"] == []
    by_identity = {item["identity"]: item for item in ranked["rankedGlobal"]}
    keyword = by_identity["trail runner"]
    sale = by_identity["hexco/101"]
    assert [item["identity"] for item in ranked["rankedGlobal"]] == ["trail runner", "hexco/101"]
    assert keyword["trend"] == "rising"
    assert sale["trend"] == "new"
    assert sale["totalUnits"] == 10
    assert sale["regions"] == {"US-CO": 10.0}
    assert [entry["identity"] for entry in ranked["rankedByRegion"]["US-CO"]] == ["hexco/101"]
    assert "US-TX" in ranked["rankedByRegion"]

    stores = store.load_json(STORE_METADATA)
    assert stores["stores"][0]["region"] == "US-CO"


@pytest.mark.asyncio
async def test_failed_storefront_is_reported_not_fatal(pipeline_settings):
    async with respx.mock(assert_all_called=False) as router:
        router.route(host="hexco.test").mock(return_value=httpx.Response(503))
        router.get("https://serpapi.com/search.json").mock(return_value=httpx.Response(500))
        report = await daily.run_pipeline(pipeline_settings, when=T0)
    assert not report.ok
    stages = {(f["unit"], f["stage"]) for f in report.failures}
    assert ("hexco", "snapshot") in stages
    assert ("serp:trail runner", "trend") in stages
    ranked = OutputStore(pipeline_settings.data_dir).read_latest(RANKED)
    assert ranked["count"] == 0
    assert len(ranked["failures"]) == 2


@pytest.mark.asyncio
async def test_configuration_errors_abort_before_network(env, tmp_path, monkeypatch):
    monkeypatch.delenv("SERP_API_KEY", raising=False)
    sources = tmp_path / "bad.yml"
    sources.write_text("- id: serp\n  kind: trend\n  url: https://serpapi.com/search.json\n")
    env["TRENDWATCH_SOURCES"] = str(sources)
    settings = Settings.from_env(env)
    async with respx.mock(assert_all_called=False) as router:
        with pytest.raises(ConfigError):
            await daily.run_pipeline(settings)
        assert not router.calls
