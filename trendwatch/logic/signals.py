"""Scoring math shared by the aggregator: normalization, weights, trend labels."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Sequence

import numpy as np

RISING_THRESHOLD = float(os.environ.get("RISING_THRESHOLD", 0.10))
CONSTANT_COLUMN_SCORE = 50.0
WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    trend: float = 0.6
    sales: float = 0.3
    revenue: float = 0.1

    def validate(self) -> None:
        for name in ("trend", "sales", "revenue"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"Weight {name} must be a non-negative number, got {value}")
        total = self.trend + self.sales + self.revenue
        if not math.isclose(total, 1.0, abs_tol=WEIGHT_TOLERANCE):
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.6f}")


def percent_change(new: float | None, old: float | None) -> float | None:
    if new is None or old in (None, 0):
        return None
    return (new - old) / old


def normalized(values: Sequence[float]) -> list[float]:
    """Min/max rescale to 0-100; a constant column maps to the midpoint."""
    if not values:
        return []
    arr = np.array(values, dtype=float)
    arr = np.where(np.isfinite(arr), arr, 0.0)
    min_v = arr.min()
    max_v = arr.max()
    if math.isclose(min_v, max_v):
        return [CONSTANT_COLUMN_SCORE for _ in arr]
    scaled = (arr - min_v) / (max_v - min_v) * 100.0
    return np.clip(scaled, 0.0, 100.0).tolist()


def clamp_score(value: float) -> float:
    return min(100.0, max(0.0, value))


def trend_label(previous: float | None, current: float) -> str:
    if previous is None:
        return "new"
    if previous == 0:
        return "rising" if current > 0 else "stable"
    change = percent_change(current, previous)
    if change >= RISING_THRESHOLD:
        return "rising"
    if change <= -RISING_THRESHOLD:
        return "falling"
    return "stable"
