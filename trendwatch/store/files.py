"""Append-only, timestamped JSON artifact store on the local filesystem."""

from __future__ import annotations

import json
import logging
import os
import pathlib
import re
import tempfile
from datetime import datetime
from typing import Any, Iterable

from trendwatch.ingest.models import Snapshot, normalize_host
from trendwatch.utils.dates import file_stamp, now_utc

logger = logging.getLogger(__name__)

LATEST = "latest.json"
STAMPED_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z_\d{3}\.json$")
SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")

SNAPSHOTS = "snapshots"
SUMMARIES = "summaries"
AGGREGATED = "aggregated"
RANKED = "ranked"
REGISTRY = "registry/hosts.json"
STORE_METADATA = "metadata/stores.json"


def slugify(value: str) -> str:
    return SLUG_RE.sub("_", value.strip()).strip("_") or "source"


class OutputStore:
    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = pathlib.Path(root)

    # -- writing ---------------------------------------------------------

    def write(
        self,
        key: str,
        payload: Any,
        *,
        when: datetime | None = None,
        latest: bool = False,
    ) -> pathlib.Path:
        """Write ``payload`` as a new stamped file under ``key``; never overwrites."""
        directory = self.root / key
        directory.mkdir(parents=True, exist_ok=True)
        path = self._next_path(directory, when or now_utc())
        body = _dumps(payload)
        _atomic_write(path, body)
        if latest:
            _atomic_write(directory / LATEST, body)
        logger.info("Wrote %s", path)
        return path

    def write_snapshot(self, snapshot: Snapshot, *, when: datetime | None = None) -> pathlib.Path:
        return self.write(self.snapshot_key(snapshot.source), snapshot.to_dict(), when=when)

    def save_json(self, relative: str, payload: Any) -> pathlib.Path:
        """Overwrite a fixed-name document (registry, metadata caches)."""
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(path, _dumps(payload))
        return path

    # -- reading ---------------------------------------------------------

    def load_json(self, relative: str) -> Any | None:
        return read_json(self.root / relative)

    def read_latest(self, key: str) -> Any | None:
        return read_json(self.root / key / LATEST)

    def list_stamped(self, key: str) -> list[pathlib.Path]:
        directory = self.root / key
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.is_file() and STAMPED_RE.match(p.name))

    def snapshot_key(self, source_id: str) -> str:
        return f"{SNAPSHOTS}/{slugify(source_id)}"

    def snapshot_sources(self) -> list[str]:
        directory = self.root / SNAPSHOTS
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_dir())

    def list_latest_two(self, source_id: str) -> list[Snapshot]:
        """The two most recent snapshots for a source, oldest first; fewer if unavailable."""
        paths = self.list_stamped(self.snapshot_key(source_id))[-2:]
        snapshots: list[Snapshot] = []
        for path in paths:
            snapshot = Snapshot.from_dict(read_json(path))
            if snapshot is None:
                logger.warning("Unreadable snapshot %s", path)
                continue
            snapshots.append(snapshot)
        return snapshots

    # -- registry --------------------------------------------------------

    def load_registry(self) -> list[str]:
        data = self.load_json(REGISTRY)
        if not isinstance(data, list):
            return []
        return _hosts(str(host) for host in data if host)

    def merge_registry(self, hosts: Iterable[str]) -> list[str]:
        """Union ``hosts`` into the registry; it only ever grows."""
        merged = _hosts([*self.load_registry(), *hosts])
        self.save_json(REGISTRY, merged)
        return merged

    # -- retention -------------------------------------------------------

    def prune(self, directory: str | os.PathLike[str], keep: int) -> list[pathlib.Path]:
        """Delete all but the ``keep`` most recently modified files; the latest pointer stays."""
        path = pathlib.Path(directory)
        if not path.is_absolute():
            path = self.root / path
        if not path.is_dir():
            return []
        files = [p for p in path.iterdir() if p.is_file() and p.name != LATEST]
        files.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
        removed = files[max(keep, 0):]
        for stale in removed:
            stale.unlink()
        if removed:
            logger.info("Pruned %s files from %s", len(removed), path)
        return removed

    def prune_snapshots(self, keep: int) -> list[pathlib.Path]:
        removed: list[pathlib.Path] = []
        for source in self.snapshot_sources():
            removed.extend(self.prune(f"{SNAPSHOTS}/{source}", keep))
        return removed

    def _next_path(self, directory: pathlib.Path, when: datetime) -> pathlib.Path:
        stamp = file_stamp(when)
        sequence = 0
        while (directory / f"{stamp}_{sequence:03d}.json").exists():
            sequence += 1
        return directory / f"{stamp}_{sequence:03d}.json"


def _hosts(values: Iterable[str]) -> list[str]:
    return sorted({host for host in (normalize_host(value) for value in values if value) if host})


def read_json(path: pathlib.Path) -> Any | None:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Invalid JSON in %s: %s", path, exc)
        return None


def _dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)


def _atomic_write(path: pathlib.Path, body: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(body)
        os.replace(tmp_name, path)
    except BaseException:
        pathlib.Path(tmp_name).unlink(missing_ok=True)
        raise
