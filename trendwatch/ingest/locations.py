"""Store location enrichment: which region a storefront ships from."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from trendwatch.logic.regions import CONFIDENCE_RANK, RegionAttributor, RegionSignal, default_attributor
from trendwatch.store.files import STORE_METADATA, OutputStore
from trendwatch.utils.dates import isoformat, now_utc
from trendwatch.utils.html import iter_json_ld, parse_html, visible_text
from trendwatch.utils.http import FetchClient, FetchError

logger = logging.getLogger(__name__)

PROBE_PATHS = ("/pages/contact", "/pages/about", "/contact", "/about", "/")


@dataclass(slots=True)
class StoreLocation:
    host: str
    region: str | None
    confidence: str | None
    page: str | None
    checked_at: str

    @property
    def resolved(self) -> bool:
        return bool(self.region) and not self.region.endswith("UNKNOWN")

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "region": self.region,
            "confidence": self.confidence,
            "page": self.page,
            "checkedAt": self.checked_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StoreLocation | None":
        if not isinstance(data, Mapping) or not data.get("host"):
            return None
        return cls(
            host=str(data["host"]),
            region=data.get("region") or None,
            confidence=data.get("confidence") or None,
            page=data.get("page") or None,
            checked_at=str(data.get("checkedAt") or ""),
        )


def _addresses(node: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    if node.get("@type") == "PostalAddress":
        return [node]
    found: list[Mapping[str, Any]] = []
    for key in ("address", "location"):
        value = node.get(key)
        values = value if isinstance(value, list) else [value]
        for entry in values:
            if isinstance(entry, Mapping):
                nested = entry.get("address")
                found.append(nested if isinstance(nested, Mapping) else entry)
    return found


class StoreLocator:
    def __init__(self, client: FetchClient, *, attributor: RegionAttributor | None = None) -> None:
        self.client = client
        self.attributor = attributor or default_attributor()

    async def locate(self, host: str) -> StoreLocation:
        """Probe contact and about pages; structured addresses beat page text."""
        best: tuple[RegionSignal, str] | None = None
        for path in PROBE_PATHS:
            url = f"https://{host}{path}"
            try:
                result = await self.client.fetch(url)
            except FetchError as exc:
                logger.debug("No location page at %s: %s", url, exc)
                continue
            soup = parse_html(result.body)
            for node in iter_json_ld(soup):
                for address in _addresses(node):
                    signal = self.attributor.attribute_address(address)
                    if signal and signal.detected:
                        return self._location(host, signal, url)
            signal = self.attributor.attribute(visible_text(soup))
            if signal is None:
                continue
            if signal.detected:
                return self._location(host, signal, url)
            if best is None or CONFIDENCE_RANK[signal.confidence] > CONFIDENCE_RANK[best[0].confidence]:
                best = (signal, url)
        if best is not None:
            return self._location(host, *best)
        return StoreLocation(host, None, None, None, isoformat(now_utc()))

    def _location(self, host: str, signal: RegionSignal, url: str) -> StoreLocation:
        logger.info("%s located in %s (%s)", host, signal.region, signal.confidence)
        return StoreLocation(host, signal.region, signal.confidence, url, isoformat(now_utc()))


def load_locations(store: OutputStore) -> dict[str, StoreLocation]:
    data = store.load_json(STORE_METADATA)
    entries = data.get("stores") if isinstance(data, Mapping) else None
    locations: dict[str, StoreLocation] = {}
    for entry in entries if isinstance(entries, list) else []:
        location = StoreLocation.from_dict(entry)
        if location is not None:
            locations[location.host] = location
    return locations


async def enrich_locations(
    store: OutputStore,
    locator: StoreLocator,
    hosts: Iterable[str],
) -> dict[str, StoreLocation]:
    """Resolve store regions, re-probing only hosts without a resolved region."""
    locations = load_locations(store)
    for host in sorted({h.lower() for h in hosts if h}):
        cached = locations.get(host)
        if cached is not None and cached.resolved:
            continue
        locations[host] = await locator.locate(host)
    store.save_json(
        STORE_METADATA,
        {
            "updatedAt": isoformat(now_utc()),
            "count": len(locations),
            "stores": [locations[host].to_dict() for host in sorted(locations)],
        },
    )
    return locations


def region_for(locations: Mapping[str, StoreLocation], host: str) -> str | None:
    location = locations.get(host.lower())
    return location.region if location else None
