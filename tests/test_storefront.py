import json

import httpx
import pytest
import respx

from trendwatch.ingest.models import Source
from trendwatch.ingest.storefront import (
    ADMIN,
    ADMIN_TOKEN_HEADER,
    PAGES,
    PUBLIC,
    CatalogSnapshotter,
    items_from_product,
    outcome_for,
    snapshot_sources,
)

HEXCO = Source(id="hexco", kind="storefront", url="https://hexco.test")


def test_product_without_variants_is_one_item():
    [item] = items_from_product({"id": 5, "title": "Poster", "product_type": "Art"})
    assert item.key == ("5", None)
    assert item.price is None
    assert items_from_product({"title": "no id"}) == []


@pytest.mark.asyncio
async def test_public_catalog(make_client, fixture_text):
    async with respx.mock() as router:
        route = router.get("https://hexco.test/products.json").mock(
            return_value=httpx.Response(200, text=fixture_text("shopify/products_page1.json"))
        )
        async with make_client() as client:
            snapshot = await CatalogSnapshotter(client).snapshot(HEXCO)
    assert snapshot.strategy == PUBLIC
    assert snapshot.error is None
    assert [(i.product_id, i.variant_id, i.inventory_quantity) for i in snapshot.items] == [
        ("101", "1001", 40),
        ("101", "1002", 15),
        ("102", "1003", None),
    ]
    assert snapshot.items[2].price == 14.5
    assert route.calls.last.request.url.params["page"] == "1"
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_admin_api_follows_next_links(make_client, fixture_text):
    source = Source(id="hexco", kind="storefront", url="https://hexco.test", token="shpat_secret")
    next_url = "https://hexco.test/admin/api/2024-01/products.json?page_info=abc&limit=2"
    async with respx.mock() as router:
        route = router.get("https://hexco.test/admin/api/2024-01/products.json").mock(
            side_effect=[
                httpx.Response(
                    200,
                    text=fixture_text("shopify/products_page1.json"),
                    headers={"Link": f'<{next_url}>; rel="next"'},
                ),
                httpx.Response(200, json={"products": [{"id": 103, "title": "Headlamp"}]}),
            ]
        )
        async with make_client() as client:
            snapshot = await CatalogSnapshotter(client, page_size=2).snapshot(source)
    assert snapshot.strategy == ADMIN
    assert [i.product_id for i in snapshot.items] == ["101", "101", "102", "103"]
    assert route.call_count == 2
    assert route.calls[0].request.headers[ADMIN_TOKEN_HEADER] == "shpat_secret"
    assert route.calls[1].request.url.params["page_info"] == "abc"


@pytest.mark.asyncio
async def test_rejected_token_falls_through_to_public(make_client, fixture_text):
    source = Source(id="hexco", kind="storefront", url="https://hexco.test", token="bad")
    async with respx.mock() as router:
        admin = router.get("https://hexco.test/admin/api/2024-01/products.json").mock(
            return_value=httpx.Response(401)
        )
        router.get("https://hexco.test/products.json").mock(
            return_value=httpx.Response(200, text=fixture_text("shopify/products_page1.json"))
        )
        async with make_client() as client:
            snapshot = await CatalogSnapshotter(client).snapshot(source)
    assert admin.call_count == 1
    assert snapshot.strategy == PUBLIC
    assert len(snapshot.items) == 3


@pytest.mark.asyncio
async def test_page_derived_catalog(make_client, fixture_text):
    async with respx.mock() as router:
        router.get("https://hexco.test/products.json").mock(return_value=httpx.Response(404))
        router.get("https://hexco.test/sitemap_products_1.xml").mock(
            return_value=httpx.Response(200, text=fixture_text("shopify/hexco_sitemap.xml"))
        )
        product = router.get("https://hexco.test/products/alpha-serum.js").mock(
            return_value=httpx.Response(200, text=fixture_text("shopify/alpha-serum.js"))
        )
        router.get("https://hexco.test/").mock(
            return_value=httpx.Response(200, html=fixture_text("shopify/home_jsonld.html"))
        )
        async with make_client() as client:
            snapshot = await CatalogSnapshotter(client).snapshot(HEXCO)
    assert snapshot.strategy == PAGES
    assert product.call_count == 1
    assert [(i.product_id, i.variant_id, i.price, i.inventory_quantity) for i in snapshot.items] == [
        ("7001", "9001", 39.0, 12),
        ("7001", "9002", 54.0, None),
        ("TOTE-1", None, 25.0, 7),
    ]
    assert snapshot.items[0].category == "Skincare"


@pytest.mark.asyncio
async def test_collection_pages_are_used_without_sitemap(make_client):
    listing = '<a href="/products/lamp">Lamp</a><a href="/products/rug?variant=1">Rug</a><a href="?page=2">Next</a>'
    async with respx.mock() as router:
        router.get("https://deco.test/products.json").mock(return_value=httpx.Response(404))
        router.get("https://deco.test/sitemap_products_1.xml").mock(return_value=httpx.Response(404))
        router.get("https://deco.test/collections/all?page=1").mock(return_value=httpx.Response(200, html=listing))
        router.get("https://deco.test/collections/all?page=2").mock(return_value=httpx.Response(404))
        router.get("https://deco.test/products/lamp.js").mock(
            return_value=httpx.Response(
                200, json={"id": 1, "title": "Lamp", "variants": [{"id": 11, "price": 1250, "inventory_quantity": 3}]}
            )
        )
        router.get("https://deco.test/products/rug.js").mock(return_value=httpx.Response(500))
        router.get("https://deco.test/").mock(return_value=httpx.Response(404))
        async with make_client() as client:
            snapshot = await CatalogSnapshotter(client).snapshot(
                Source(id="deco", kind="storefront", url="deco.test")
            )
    assert snapshot.strategy == PAGES
    assert [(i.product_id, i.price) for i in snapshot.items] == [("1", 12.5)]


@pytest.mark.asyncio
async def test_every_strategy_failing_gives_empty_snapshot(make_client):
    async with respx.mock() as router:
        router.route(host="dead.test").mock(return_value=httpx.Response(404))
        async with make_client() as client:
            snapshot = await CatalogSnapshotter(client).snapshot(
                Source(id="dead", kind="storefront", url="https://dead.test")
            )
    assert snapshot.items == []
    assert snapshot.strategy is None
    assert PUBLIC in snapshot.error and PAGES in snapshot.error
    outcome = outcome_for(snapshot)
    assert not outcome.ok
    assert json.loads(json.dumps(outcome.to_dict()))["items"] == 0


@pytest.mark.asyncio
async def test_snapshot_sources_keeps_order_and_isolates_failures(make_client, fixture_text):
    sources = [Source(id="dead", kind="storefront", url="https://dead.test"), HEXCO]
    async with respx.mock() as router:
        router.route(host="dead.test").mock(return_value=httpx.Response(404))
        router.get("https://hexco.test/products.json").mock(
            return_value=httpx.Response(200, text=fixture_text("shopify/products_page1.json"))
        )
        async with make_client() as client:
            snapshots = await snapshot_sources(CatalogSnapshotter(client), sources, concurrency=2)
    assert [s.source for s in snapshots] == ["dead", "hexco"]
    assert [outcome_for(s).ok for s in snapshots] == [False, True]


@pytest.mark.asyncio
async def test_admin_endpoint_template_is_filled_in(make_client, fixture_text):
    source = Source(
        id="hexco",
        kind="storefront",
        url="https://www.hexco.test",
        token="shpat_secret",
        endpoint="https://{host}/admin/api/{version}/products.json",
    )
    async with respx.mock() as router:
        admin = router.get("https://hexco.test/admin/api/2024-01/products.json").mock(
            return_value=httpx.Response(200, text=fixture_text("shopify/products_page1.json"))
        )
        async with make_client() as client:
            snapshot = await CatalogSnapshotter(client).snapshot(source)
    assert admin.call_count == 1
    assert snapshot.strategy == ADMIN
    assert len(snapshot.items) == 3


@pytest.mark.asyncio
async def test_unknown_template_field_falls_through(make_client, fixture_text):
    source = Source(
        id="hexco", kind="storefront", url="https://hexco.test", token="t", endpoint="https://{shop}/products.json"
    )
    async with respx.mock() as router:
        router.get("https://hexco.test/products.json").mock(
            return_value=httpx.Response(200, text=fixture_text("shopify/products_page1.json"))
        )
        async with make_client() as client:
            snapshot = await CatalogSnapshotter(client).snapshot(source)
    assert snapshot.strategy == PUBLIC


@pytest.mark.asyncio
async def test_page_derived_product_fetches_stay_within_budget(make_client):
    sitemap = "".join(f"<url><loc>https://big.test/products/item-{n:02d}</loc></url>" for n in range(60))

    def product(request):
        handle = request.url.path.rsplit("/", 1)[-1].removesuffix(".js")
        return httpx.Response(200, json={"id": handle, "title": handle, "variants": [{"id": 1, "price": 100}]})

    async with respx.mock() as router:
        router.get("https://big.test/products.json").mock(return_value=httpx.Response(404))
        router.get("https://big.test/sitemap_products_1.xml").mock(
            return_value=httpx.Response(200, text=f"<urlset>{sitemap}</urlset>")
        )
        products = router.get(url__regex=r"https://big\.test/products/[^/]+\.js").mock(side_effect=product)
        router.get("https://big.test/").mock(return_value=httpx.Response(404))
        async with make_client() as client:
            snapshotter = CatalogSnapshotter(client, page_size=10, max_pages=2)
            snapshot = await snapshotter.snapshot(Source(id="big", kind="storefront", url="https://big.test"))
    assert snapshotter.max_products == 20
    assert products.call_count == 20
    assert len(snapshot.items) == 20
    assert snapshot.items[0].product_id == "item-00"
