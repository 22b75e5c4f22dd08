"""Running totals with optional extrema."""

from __future__ import annotations

from typing import Any, Dict, Optional


class MetricStats:
    """Total, count and min/max of one measurement.

    Min and max stay ``None`` until the first observation, so an empty metric
    reports "no data" instead of a sentinel.
    """

    __slots__ = ("total", "count", "minimum", "maximum")

    def __init__(self) -> None:
        self.total = 0
        self.count = 0
        self.minimum: Optional[int] = None
        self.maximum: Optional[int] = None

    def add(self, value: Optional[int]) -> None:
        if value is None:
            return
        self.total += value
        self.count += 1
        if self.minimum is None or value < self.minimum:
            self.minimum = value
        if self.maximum is None or value > self.maximum:
            self.maximum = value

    @property
    def has_data(self) -> bool:
        return self.count > 0

    @property
    def average(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total / self.count

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "count": self.count,
            "min": self.minimum,
            "max": self.maximum,
            "avg": self.average,
        }
