"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping
from urllib.parse import urlparse

STOREFRONT = "storefront"
TREND = "trend"
NEWS = "news"
SOURCE_KINDS = (STOREFRONT, TREND, NEWS)


def normalize_host(value: str) -> str:
    """Lowercase hostname without scheme, port or leading ``www.``."""
    value = value.strip()
    if "://" not in value:
        value = f"https://{value}"
    host = (urlparse(value).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


@dataclass(frozen=True, slots=True)
class Source:
    id: str
    kind: str
    url: str
    token: str | None = None
    endpoint: str | None = None

    @property
    def host(self) -> str:
        return normalize_host(self.url)

    @property
    def base_url(self) -> str:
        url = self.url.strip().rstrip("/")
        if "://" not in url:
            url = f"https://{url}"
        return url


@dataclass(slots=True)
class CatalogItem:
    product_id: str
    variant_id: str | None
    title: str
    category: str
    price: float | None
    inventory_quantity: int | None

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.product_id, self.variant_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "title": self.title,
            "category": self.category,
            "price": self.price,
            "inventoryQuantity": self.inventory_quantity,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CatalogItem | None":
        if not isinstance(data, Mapping):
            return None
        product_id = _first(data, "productId", "product_id")
        if product_id in (None, ""):
            return None
        variant_id = _first(data, "variantId", "variant_id")
        return cls(
            product_id=str(product_id),
            variant_id=str(variant_id) if variant_id not in (None, "") else None,
            title=str(data.get("title") or ""),
            category=str(data.get("category") or ""),
            price=to_float(data.get("price")),
            inventory_quantity=to_int(_first(data, "inventoryQuantity", "inventory_quantity")),
        )


@dataclass(slots=True)
class Snapshot:
    source: str
    fetched_at: str
    items: list[CatalogItem] = field(default_factory=list)
    strategy: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "fetchedAt": self.fetched_at,
            "strategy": self.strategy,
            "error": self.error,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot | None":
        if not isinstance(data, Mapping):
            return None
        raw_items = data.get("items")
        if not isinstance(raw_items, list):
            raw_items = []
        parsed = (CatalogItem.from_dict(item) for item in raw_items)
        return cls(
            source=str(data.get("source") or ""),
            fetched_at=str(_first(data, "fetchedAt", "fetched_at") or ""),
            items=dedupe_items(item for item in parsed if item is not None),
            strategy=data.get("strategy"),
            error=data.get("error"),
        )


def dedupe_items(items: Iterable[CatalogItem]) -> list[CatalogItem]:
    """Keep the first item per (product id, variant id)."""
    seen: set[tuple[str, str | None]] = set()
    unique: list[CatalogItem] = []
    for item in items:
        if item.key in seen:
            continue
        seen.add(item.key)
        unique.append(item)
    return unique


def to_float(value: Any) -> float | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        result = float(str(value).replace("$", "").replace(",", "").strip())
    except (TypeError, ValueError):
        return None
    if result != result or result in (float("inf"), float("-inf")):
        return None
    return result


def to_int(value: Any) -> int | None:
    number = to_float(value)
    if number is None:
        return None
    return int(number)


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None
