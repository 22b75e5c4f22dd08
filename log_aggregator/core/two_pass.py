"""Two-pass aggregation for dimensions with unbounded cardinality."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, FrozenSet, List, Optional

from ..config import (
    DEFAULT_PERCENTILE_CAP,
    DEFAULT_SIGNIFICANCE_VALUE,
    SIGNIFICANCE_RULES,
    SIGNIFICANCE_THRESHOLD,
    SIGNIFICANCE_TOP_N,
)
from ..utils.logging_utils import get_logger
from .entry import Transform, TruncationCheck
from .events import LogEvent
from .keys import OVERFLOW_KEY, AggregateKey
from .table import KeyedAggregateTable

LOGGER = get_logger("core.two_pass")

KeyExtractor = Callable[[LogEvent], Optional[AggregateKey]]


@dataclass(frozen=True)
class SignificancePolicy:
    """Chooses which census keys keep their own entry."""

    rule: str = SIGNIFICANCE_TOP_N
    value: int = DEFAULT_SIGNIFICANCE_VALUE

    def __post_init__(self) -> None:
        if self.rule not in SIGNIFICANCE_RULES:
            raise ValueError(f"Unknown significance rule {self.rule!r}")
        if self.value < 0:
            raise ValueError("significance value must not be negative")

    def select(self, frequencies: Dict[AggregateKey, int]) -> FrozenSet[AggregateKey]:
        if self.rule == SIGNIFICANCE_THRESHOLD:
            return frozenset(key for key, freq in frequencies.items() if freq >= self.value)

        ranked = sorted(frequencies.items(), key=lambda item: item[0].sort_fields())
        ranked.sort(key=lambda item: item[1], reverse=True)
        return frozenset(key for key, _ in ranked[: self.value])


@dataclass(frozen=True)
class ReconciliationResult:
    census_total: int
    aggregated_total: int
    warning: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.census_total == self.aggregated_total

    def as_dict(self) -> dict:
        return {
            "census_total": self.census_total,
            "aggregated_total": self.aggregated_total,
            "matched": self.matched,
            "warning": self.warning,
        }


class TwoPassAggregator:
    """Frequency census first, then aggregation with an overflow bucket.

    Pass one only counts keys. After :meth:`finish_census`, pass two merges
    events of significant keys into their own entries and everything else into
    a single entry under ``OVERFLOW_KEY``.
    """

    def __init__(
        self,
        name: str,
        extractor: KeyExtractor,
        *,
        policy: Optional[SignificancePolicy] = None,
        percentile_cap: int = DEFAULT_PERCENTILE_CAP,
        retain_samples: bool = True,
        transform: Optional[Transform] = None,
        truncation_check: Optional[TruncationCheck] = None,
    ) -> None:
        self.name = name
        self.extractor = extractor
        self.policy = policy or SignificancePolicy()
        self.table = KeyedAggregateTable(
            name,
            percentile_cap=percentile_cap,
            retain_samples=retain_samples,
            transform=transform,
            truncation_check=truncation_check,
        )
        self._census: Counter = Counter()
        self._census_lock = Lock()
        self._significant: Optional[FrozenSet[AggregateKey]] = None

    # ------------------------------------------------------------------
    # Pass one

    def observe(self, event: LogEvent) -> Optional[AggregateKey]:
        key = self.extractor(event)
        if key is None:
            return None
        with self._census_lock:
            self._census[key] += 1
        return key

    def finish_census(self) -> FrozenSet[AggregateKey]:
        with self._census_lock:
            frequencies = dict(self._census)
        self._significant = self.policy.select(frequencies)
        LOGGER.info(
            "%s census complete: %d distinct keys, %d significant, %d events",
            self.name,
            len(frequencies),
            len(self._significant),
            sum(frequencies.values()),
        )
        return self._significant

    @property
    def census_total(self) -> int:
        with self._census_lock:
            return sum(self._census.values())

    @property
    def census_finished(self) -> bool:
        return self._significant is not None

    @property
    def significant_keys(self) -> FrozenSet[AggregateKey]:
        return self._significant or frozenset()

    def census_frequencies(self) -> List[tuple]:
        with self._census_lock:
            return self._census.most_common()

    # ------------------------------------------------------------------
    # Pass two

    def merge(self, event: LogEvent, raw_text: Optional[str] = None) -> Optional[AggregateKey]:
        if self._significant is None:
            raise RuntimeError(f"{self.name}: finish_census() must run before merge()")
        key = self.extractor(event)
        if key is None:
            return None
        target = key if key in self._significant else OVERFLOW_KEY
        self.table.merge(target, event, raw_text)
        return target

    def reconcile(self) -> ReconciliationResult:
        census_total = self.census_total
        aggregated_total = self.table.total_count()
        if census_total == aggregated_total:
            return ReconciliationResult(census_total, aggregated_total)

        warning = (
            f"{self.name}: second pass aggregated {aggregated_total} events but the "
            f"census counted {census_total}"
        )
        LOGGER.warning(warning)
        return ReconciliationResult(census_total, aggregated_total, warning)
