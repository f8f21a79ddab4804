"""Best-effort mapping from free-text location signals to region codes."""

from __future__ import annotations

import functools
import pathlib
import re
from dataclasses import dataclass
from typing import Any, Mapping

import yaml

REGIONS_PATH = pathlib.Path(__file__).with_name("regions.yml")
COUNTRY_PRIORITY = ("US", "CA", "MX")
UNKNOWN_REGION = "UNKNOWN"

HIGH = "high"
MEDIUM = "medium"
LOW = "low"
CONFIDENCE_RANK = {LOW: 0, MEDIUM: 1, HIGH: 2}

ZIP_RE = re.compile(r"\b\d{5}\b")
STATE_ZIP_RE = re.compile(r"\b([A-Z]{2})\s+\d{5}(?:-\d{4})?\b")
WHITESPACE_RE = re.compile(r"\s+")

COUNTRY_ALIASES = {
    "us": "US",
    "usa": "US",
    "united states": "US",
    "united states of america": "US",
    "ca": "CA",
    "can": "CA",
    "canada": "CA",
    "mx": "MX",
    "mex": "MX",
    "mexico": "MX",
    "méxico": "MX",
}


@dataclass(frozen=True, slots=True)
class RegionSignal:
    region: str
    confidence: str
    source_text: str

    @property
    def country(self) -> str | None:
        prefix, _, _ = self.region.partition("-")
        return prefix if prefix != UNKNOWN_REGION else None

    @property
    def detected(self) -> bool:
        return not self.region.endswith(UNKNOWN_REGION)

    def to_dict(self) -> dict[str, str]:
        return {"region": self.region, "confidence": self.confidence, "source": self.source_text}


def normalize_text(text: str | None) -> str:
    return WHITESPACE_RE.sub(" ", (text or "").lower()).strip()


def unknown_for(country: str) -> str:
    return f"{country}-{UNKNOWN_REGION}"


@functools.lru_cache(maxsize=1)
def load_region_table(path: pathlib.Path = REGIONS_PATH) -> dict[str, dict[str, list[str]]]:
    data = yaml.safe_load(path.read_text()) or {}
    return {
        str(country): {str(code): [normalize_text(a) for a in aliases] for code, aliases in regions.items()}
        for country, regions in data.items()
    }


class RegionAttributor:
    """Dictionary match first, then a bare-ZIP hint; never guesses a region from a ZIP."""

    def __init__(
        self,
        table: Mapping[str, Mapping[str, list[str]]] | None = None,
        *,
        priority: tuple[str, ...] = COUNTRY_PRIORITY,
    ) -> None:
        self.table = table if table is not None else load_region_table()
        self.priority = tuple(c for c in priority if c in self.table) + tuple(
            c for c in self.table if c not in priority
        )
        self._patterns: dict[str, list[tuple[re.Pattern[str], str]]] = {}
        for country in self.priority:
            aliases = [
                (alias, code)
                for code, names in self.table[country].items()
                for alias in names
            ]
            self._patterns[country] = [
                (re.compile(rf"(?<!\w){re.escape(alias)}(?!\w)"), code) for alias, code in aliases
            ]

    def attribute(self, text: str | None) -> RegionSignal | None:
        if not text:
            return None
        normalized = normalize_text(text)
        for country in self.priority:
            code = self._last_match(country, normalized)
            if code:
                return RegionSignal(f"{country}-{code}", MEDIUM, text)
        us_codes = self.table.get("US", {})
        for match in STATE_ZIP_RE.finditer(text):
            if match.group(1) in us_codes:
                return RegionSignal(f"US-{match.group(1)}", MEDIUM, text)
        if ZIP_RE.search(text):
            return RegionSignal(unknown_for("US"), LOW, text)
        return None

    def _last_match(self, country: str, normalized: str) -> str | None:
        """Alias ending last in the text; the longer alias wins at the same end.

        Addresses read street, city, region, so the trailing name is the region.
        """
        best: tuple[int, int, str] | None = None
        for pattern, code in self._patterns[country]:
            for match in pattern.finditer(normalized):
                candidate = (match.end(), match.end() - match.start(), code)
                if best is None or candidate[:2] > best[:2]:
                    best = candidate
        return best[2] if best else None

    def attribute_address(self, address: Mapping[str, Any]) -> RegionSignal | None:
        """Structured (schema.org PostalAddress-like) data wins over free text."""
        region_value = _text_value(address.get("addressRegion"))
        country = self.resolve_country(_text_value(address.get("addressCountry")))
        source_text = ", ".join(
            part
            for part in (
                _text_value(address.get("streetAddress")),
                _text_value(address.get("addressLocality")),
                region_value,
                _text_value(address.get("postalCode")),
                _text_value(address.get("addressCountry")),
            )
            if part
        )
        if region_value:
            region = self.resolve_region_name(region_value, country=country)
            if region:
                return RegionSignal(region, HIGH, source_text)
        if not source_text:
            return None
        return self.attribute(source_text)

    def resolve_country(self, value: str | None) -> str | None:
        if not value:
            return None
        normalized = normalize_text(value)
        if value.upper() in self.table:
            return value.upper()
        return COUNTRY_ALIASES.get(normalized)

    def resolve_region_name(self, value: str, *, country: str | None = None) -> str | None:
        """Exact lookup of a region name or code, e.g. "Texas", "TX" or "US-TX"."""
        normalized = normalize_text(value)
        if not normalized:
            return None
        countries = (country,) if country in self.table else self.priority
        prefix, sep, suffix = value.strip().upper().partition("-")
        if sep and prefix in self.table and suffix in self.table[prefix]:
            return f"{prefix}-{suffix}"
        for candidate in countries:
            regions = self.table[candidate]
            if value.strip().upper() in regions:
                return f"{candidate}-{value.strip().upper()}"
            for code, aliases in regions.items():
                if normalized in aliases:
                    return f"{candidate}-{code}"
        return None


def _text_value(value: Any) -> str:
    if isinstance(value, Mapping):
        value = value.get("name") or value.get("@id") or ""
    if value is None:
        return ""
    return str(value).strip()


@functools.lru_cache(maxsize=1)
def default_attributor() -> RegionAttributor:
    return RegionAttributor()


def attribute(text: str | None) -> RegionSignal | None:
    return default_attributor().attribute(text)
