"""HTML parsing helpers."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterator

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

WHITESPACE_RE = re.compile(r"\s+")


def parse_html(markup: str | None) -> BeautifulSoup:
    return BeautifulSoup(markup or "", "html.parser")


def iter_json_ld(soup: BeautifulSoup) -> Iterator[dict[str, Any]]:
    """Every JSON-LD object on the page, with lists and ``@graph`` flattened.

    Blocks that fail to decode are skipped.
    """
    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text() or ""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        yield from _flatten(data)


def _flatten(data: Any) -> Iterator[dict[str, Any]]:
    if isinstance(data, list):
        for entry in data:
            yield from _flatten(entry)
    elif isinstance(data, dict):
        yield data
        if isinstance(data.get("@graph"), list):
            yield from _flatten(data["@graph"])


def has_type(node: dict[str, Any], name: str) -> bool:
    kind = node.get("@type")
    if isinstance(kind, list):
        return name in kind
    return kind == name


def visible_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return WHITESPACE_RE.sub(" ", soup.get_text(" ")).strip()
