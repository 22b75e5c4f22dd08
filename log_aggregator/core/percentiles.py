"""Capped-sample percentile estimation."""

from __future__ import annotations

import math
from typing import List, Optional

from ..config import DEFAULT_PERCENTILE_CAP


def interpolated_percentile(sorted_values: List[float], p: float) -> float:
    """Linear interpolation between closest ranks, rank = p/100 * (n - 1)."""

    if not sorted_values:
        return 0.0
    if p <= 0:
        return float(sorted_values[0])
    if p >= 100:
        return float(sorted_values[-1])

    rank = (p / 100.0) * (len(sorted_values) - 1)
    lower = int(math.floor(rank))
    upper = min(lower + 1, len(sorted_values) - 1)
    fraction = rank - lower
    low_value = float(sorted_values[lower])
    high_value = float(sorted_values[upper])
    return low_value + (high_value - low_value) * fraction


class BoundedPercentileEstimator:
    """Percentiles over the first ``capacity`` values observed.

    Values offered after the cap is reached are dropped, not reservoir sampled,
    so for very hot keys the result describes the early part of the stream.
    Callers serialize ``add_sample`` per estimator; the owning entry's lock does
    that in the aggregate tables.
    """

    __slots__ = ("capacity", "_values", "_observed", "_sorted")

    def __init__(self, capacity: int = DEFAULT_PERCENTILE_CAP) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._values: List[float] = []
        self._observed = 0
        self._sorted: Optional[List[float]] = None

    def add_sample(self, value: float) -> None:
        self._observed += 1
        if len(self._values) < self.capacity:
            self._values.append(value)
            self._sorted = None

    def percentile(self, p: float) -> float:
        if not self._values:
            return 0.0
        if self._sorted is None:
            self._sorted = sorted(self._values)
        return interpolated_percentile(self._sorted, p)

    def reset(self) -> None:
        self._values = []
        self._observed = 0
        self._sorted = None

    @property
    def count(self) -> int:
        """Number of retained values."""
        return len(self._values)

    @property
    def observed(self) -> int:
        """Number of values offered, retained or not."""
        return self._observed

    @property
    def at_capacity(self) -> bool:
        return len(self._values) >= self.capacity

    def __len__(self) -> int:
        return len(self._values)
