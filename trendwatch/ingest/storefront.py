"""Catalog snapshots for storefront sources."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from trendwatch.ingest.models import STOREFRONT, CatalogItem, Snapshot, Source, dedupe_items, to_float, to_int
from trendwatch.utils.dates import isoformat, now_utc
from trendwatch.utils.html import has_type, iter_json_ld, parse_html
from trendwatch.utils.http import FetchClient, FetchError, HttpError

logger = logging.getLogger(__name__)

PRODUCT_HANDLE_RE = re.compile(r"/products/([^/?#\"'<>\s]+)")
ADMIN_API_VERSION = "2024-01"
ADMIN_TOKEN_HEADER = "X-Shopify-Access-Token"
ADMIN_ENDPOINT_TEMPLATE = "https://{host}/admin/api/{version}/products.json"

ADMIN = "admin-api"
PUBLIC = "public-json"
PAGES = "page-derived"


class StrategyError(Exception):
    """A catalog strategy yielded nothing usable; the next one is tried."""


@dataclass(slots=True)
class SnapshotOutcome:
    source: str
    ok: bool
    strategy: str | None
    items: int
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "ok": self.ok,
            "strategy": self.strategy,
            "items": self.items,
            "reason": self.reason,
        }


def source_for_host(host: str) -> Source:
    return Source(id=host, kind=STOREFRONT, url=f"https://{host}")


def items_from_product(product: Any, *, cents: bool = False) -> list[CatalogItem]:
    """Flatten one platform product payload into per-variant items."""
    if not isinstance(product, dict) or product.get("id") in (None, ""):
        return []
    product_id = str(product["id"])
    title = str(product.get("title") or product.get("handle") or "")
    category = str(product.get("product_type") or product.get("type") or "")
    variants = product.get("variants")
    if not isinstance(variants, list) or not variants:
        return [CatalogItem(product_id, None, title, category, None, None)]
    items: list[CatalogItem] = []
    for variant in variants:
        if not isinstance(variant, dict):
            continue
        price = to_float(variant.get("price"))
        if cents and price is not None:
            price = round(price / 100, 2)
        variant_id = variant.get("id")
        items.append(
            CatalogItem(
                product_id=product_id,
                variant_id=str(variant_id) if variant_id not in (None, "") else None,
                title=title,
                category=category,
                price=price,
                inventory_quantity=to_int(variant.get("inventory_quantity")),
            )
        )
    return items


def items_from_products_payload(payload: Any) -> list[CatalogItem]:
    if not isinstance(payload, dict):
        raise StrategyError("catalog payload is not an object")
    products = payload.get("products")
    if not isinstance(products, list):
        raise StrategyError("catalog payload has no product list")
    items: list[CatalogItem] = []
    for product in products:
        items.extend(items_from_product(product))
    return items


def items_from_json_ld(node: dict[str, Any]) -> list[CatalogItem]:
    product_id = node.get("productID") or node.get("sku") or node.get("@id") or node.get("url") or node.get("name")
    if not product_id:
        return []
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    price = inventory = None
    if isinstance(offers, dict):
        price = to_float(offers.get("price") or offers.get("lowPrice"))
        level = offers.get("inventoryLevel")
        if isinstance(level, dict):
            level = level.get("value")
        inventory = to_int(level)
    category = node.get("category")
    return [
        CatalogItem(
            product_id=str(product_id),
            variant_id=None,
            title=str(node.get("name") or ""),
            category=str(category) if isinstance(category, str) else "",
            price=price,
            inventory_quantity=inventory,
        )
    ]


class CatalogSnapshotter:
    def __init__(
        self,
        client: FetchClient,
        *,
        page_size: int = 250,
        max_pages: int = 10,
        max_products: int | None = None,
        api_version: str = ADMIN_API_VERSION,
    ) -> None:
        self.client = client
        self.page_size = page_size
        self.max_pages = max_pages
        self.max_products = max_pages * page_size if max_products is None else max_products
        self.api_version = api_version

    async def snapshot(self, source: Source) -> Snapshot:
        """First strategy that yields items wins; all failing gives an empty snapshot."""
        logger.info("Fetching products for %s", source.id)
        errors: list[str] = []
        for name, strategy in self._strategies(source):
            try:
                items = await strategy(source)
            except (StrategyError, FetchError) as exc:
                logger.warning("%s: %s strategy failed: %s", source.id, name, exc)
                errors.append(f"{name}: {exc}")
                continue
            items = dedupe_items(items)
            logger.info("%s: %s items via %s", source.id, len(items), name)
            return Snapshot(source=source.id, fetched_at=isoformat(now_utc()), items=items, strategy=name)
        return Snapshot(
            source=source.id,
            fetched_at=isoformat(now_utc()),
            items=[],
            strategy=None,
            error="; ".join(errors) or "no strategy available",
        )

    def _strategies(self, source: Source) -> list[tuple[str, Callable[[Source], Awaitable[list[CatalogItem]]]]]:
        strategies: list[tuple[str, Callable[[Source], Awaitable[list[CatalogItem]]]]] = []
        if source.token:
            strategies.append((ADMIN, self.fetch_admin))
        strategies.append((PUBLIC, self.fetch_public))
        strategies.append((PAGES, self.fetch_pages))
        return strategies

    def admin_endpoint(self, source: Source) -> str:
        """Configured endpoint template with ``{host}`` and ``{version}`` filled in."""
        template = source.endpoint or ADMIN_ENDPOINT_TEMPLATE
        try:
            return template.format(host=source.host, version=self.api_version)
        except (KeyError, IndexError, ValueError) as exc:
            raise StrategyError(f"bad admin endpoint template {template!r}") from exc

    async def fetch_admin(self, source: Source) -> list[CatalogItem]:
        """Authenticated catalog API, following ``Link: rel=next`` until a short page."""
        url: str | None = self.admin_endpoint(source)
        params: dict[str, Any] | None = {"limit": self.page_size}
        headers = {ADMIN_TOKEN_HEADER: source.token or "", "Accept": "application/json"}
        items: list[CatalogItem] = []
        for _ in range(self.max_pages):
            result = await self.client.fetch(url, params=params, headers=headers)
            payload = result.json()
            page = items_from_products_payload(payload)
            items.extend(page)
            url = result.next_link
            params = None
            if not url or len(payload.get("products") or []) < self.page_size:
                break
        if not items:
            raise StrategyError("admin API returned no products")
        return items

    async def fetch_public(self, source: Source) -> list[CatalogItem]:
        items: list[CatalogItem] = []
        url = f"{source.base_url}/products.json"
        for page in range(1, self.max_pages + 1):
            payload = await self.client.fetch_json(url, params={"limit": self.page_size, "page": page})
            items.extend(items_from_products_payload(payload))
            if len(payload.get("products") or []) < self.page_size:
                break
        if not items:
            raise StrategyError("public endpoint returned no products")
        return items

    async def fetch_pages(self, source: Source) -> list[CatalogItem]:
        """Per-product JSON for handles found on sitemap or listing pages, plus home-page JSON-LD."""
        base_url = source.base_url
        handles = await self._discover_product_handles(base_url)
        if len(handles) > self.max_products:
            logger.info("%s: %s product handles, fetching the first %s", base_url, len(handles), self.max_products)
            handles = handles[: self.max_products]
        products = await asyncio.gather(*(self._fetch_product(base_url, handle) for handle in handles))
        items = [item for product in products for item in product]
        items.extend(await self._home_page_products(base_url))
        if not items:
            raise StrategyError("no product data found on storefront pages")
        return items

    async def _discover_product_handles(self, base_url: str) -> list[str]:
        try:
            result = await self.client.fetch(f"{base_url}/sitemap_products_1.xml")
        except FetchError:
            logger.info("Sitemap fetch failed for %s, falling back to collections", base_url)
            return await self._discover_via_collections(base_url)
        handles = _handles(result.body)
        if not handles:
            return await self._discover_via_collections(base_url)
        return handles

    async def _discover_via_collections(self, base_url: str) -> list[str]:
        handles: set[str] = set()
        for page in range(1, self.max_pages + 1):
            try:
                result = await self.client.fetch(f"{base_url}/collections/all", params={"page": page})
            except HttpError as exc:
                if exc.status == 404:
                    break
                raise
            found = set(_handles(result.body))
            if not found - handles:
                break
            handles |= found
            if "next" not in result.body.lower():
                break
        return sorted(handles)

    async def _fetch_product(self, base_url: str, handle: str) -> list[CatalogItem]:
        product_url = f"{base_url}/products/{handle}.js"
        try:
            result = await self.client.fetch(product_url, headers={"Accept": "application/json"})
            data = result.json()
        except FetchError as exc:
            logger.warning("Product %s unavailable: %s", product_url, exc)
            return []
        # product .js payloads carry prices in cents
        return items_from_product(data, cents=True)

    async def _home_page_products(self, base_url: str) -> list[CatalogItem]:
        try:
            result = await self.client.fetch(f"{base_url}/")
        except FetchError as exc:
            logger.info("Home page unavailable for %s: %s", base_url, exc)
            return []
        items: list[CatalogItem] = []
        for node in iter_json_ld(parse_html(result.body)):
            if has_type(node, "Product"):
                items.extend(items_from_json_ld(node))
        return items


def _handles(text: str) -> list[str]:
    return sorted({match.group(1) for match in PRODUCT_HANDLE_RE.finditer(text or "")})


async def snapshot_sources(
    snapshotter: CatalogSnapshotter,
    sources: Iterable[Source],
    *,
    concurrency: int = 3,
) -> list[Snapshot]:
    """Snapshot every source with at most ``concurrency`` in flight; results keep input order."""
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(source: Source) -> Snapshot:
        async with semaphore:
            return await snapshotter.snapshot(source)

    return list(await asyncio.gather(*(_run(source) for source in sources)))


def outcome_for(snapshot: Snapshot) -> SnapshotOutcome:
    return SnapshotOutcome(
        source=snapshot.source,
        ok=snapshot.error is None,
        strategy=snapshot.strategy,
        items=len(snapshot.items),
        reason=snapshot.error,
    )
