"""Per-run diagnostics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunReport:
    started_at: str
    failures: list[dict[str, str]] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    outputs: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def fail(self, unit: str, stage: str, reason: object) -> None:
        logger.warning("%s failed at %s: %s", unit, stage, reason)
        self.failures.append({"unit": unit, "stage": stage, "reason": str(reason)})

    def extend(self, failures: list[dict[str, str]]) -> None:
        self.failures.extend(failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at,
            "ok": self.ok,
            "counts": dict(sorted(self.counts.items())),
            "outputs": dict(sorted(self.outputs.items())),
            "failures": self.failures,
        }
