"""Ingestion helpers."""

from __future__ import annotations

import os
import pathlib
from typing import Mapping

import yaml

from trendwatch.config import PACKAGED_SOURCES, ConfigError
from trendwatch.ingest.models import NEWS, SOURCE_KINDS, STOREFRONT, TREND, Source

DEFAULT_TOKEN_ENV = {TREND: "SERP_API_KEY", NEWS: "NEWS_API_KEY"}


def load_sources(
    path: pathlib.Path = PACKAGED_SOURCES,
    *,
    environ: Mapping[str, str] | None = None,
) -> list[Source]:
    """Load the configured sources, resolving credentials from the environment.

    Storefront credentials are optional. Trend and news sources have no
    unauthenticated fallback, so a missing key is a configuration error.
    """
    env = os.environ if environ is None else environ
    try:
        data = yaml.safe_load(pathlib.Path(path).read_text()) or []
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read sources from {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("sources") or []
    if not isinstance(data, list):
        raise ConfigError(f"Sources file {path} must contain a list")
    sources: list[Source] = []
    seen: set[str] = set()
    for entry in data:
        source = _build_source(entry, env)
        if source.id in seen:
            raise ConfigError(f"Duplicate source id {source.id!r}")
        seen.add(source.id)
        sources.append(source)
    return sources


def _build_source(entry: object, env: Mapping[str, str]) -> Source:
    if not isinstance(entry, dict) or not entry.get("id") or not entry.get("url"):
        raise ConfigError(f"Source entries need an id and a url: {entry!r}")
    kind = entry.get("kind", STOREFRONT)
    if kind not in SOURCE_KINDS:
        raise ConfigError(f"Unknown source kind {kind!r} for {entry['id']}")
    token_env = entry.get("token_env") or DEFAULT_TOKEN_ENV.get(kind)
    token = env.get(token_env) if token_env else None
    if kind != STOREFRONT and not token:
        raise ConfigError(f"Source {entry['id']} requires {token_env} to be set")
    return Source(
        id=str(entry["id"]),
        kind=kind,
        url=str(entry["url"]),
        token=token or None,
        endpoint=entry.get("endpoint"),
    )
