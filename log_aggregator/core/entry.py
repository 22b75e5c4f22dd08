"""Per-key running statistics."""

from __future__ import annotations

from collections import Counter
from threading import Lock
from typing import Any, Callable, Dict, Optional

from ..config import DEFAULT_PERCENTILE_CAP
from .events import LogEvent
from .metrics import MetricStats
from .percentiles import BoundedPercentileEstimator
from .sampling import SampleRecord, SampleSelector

Transform = Callable[[str], str]
TruncationCheck = Callable[[str], bool]

TIMING_COMMIT = "commit_ms"
TIMING_ACTIVE = "time_active_ms"
TIMING_INACTIVE = "time_inactive_ms"


def _identity(text: str) -> str:
    return text


def _ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


def _micros_to_millis(value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    return value // 1000


class AggregateEntry:
    """Statistics for one key, folded one event at a time.

    ``merge`` holds the entry lock for the whole fold so concurrent merges of
    the same key serialize; merges of different keys never contend here.
    """

    def __init__(
        self,
        *,
        percentile_cap: int = DEFAULT_PERCENTILE_CAP,
        retain_sample: bool = True,
    ) -> None:
        self._lock = Lock()
        self.retain_sample = retain_sample

        self.count = 0
        self.replanned_count = 0
        self.multi_planner_count = 0

        self.duration = MetricStats()
        self.keys_examined = MetricStats()
        self.docs_examined = MetricStats()
        self.returned = MetricStats()
        self.response_length = MetricStats()
        self.shards = MetricStats()
        self.storage_bytes_read = MetricStats()
        self.storage_bytes_written = MetricStats()
        self.planning_time = MetricStats()
        self.timings: Dict[str, MetricStats] = {
            TIMING_COMMIT: MetricStats(),
            TIMING_ACTIVE: MetricStats(),
            TIMING_INACTIVE: MetricStats(),
        }

        self.duration_percentiles = BoundedPercentileEstimator(percentile_cap)
        self.keys_examined_percentiles = BoundedPercentileEstimator(percentile_cap)
        self.docs_examined_percentiles = BoundedPercentileEstimator(percentile_cap)
        self.planning_time_percentiles = BoundedPercentileEstimator(percentile_cap)

        self.read_preferences: Counter = Counter()
        self.replan_reasons: Counter = Counter()
        self.hosts: Counter = Counter()
        self.labels: Dict[str, Any] = {}

        self._selector = SampleSelector()

    # ------------------------------------------------------------------
    # Folding

    def merge(
        self,
        event: LogEvent,
        raw_text: Optional[str] = None,
        transform: Optional[Transform] = None,
        truncation_check: Optional[TruncationCheck] = None,
    ) -> None:
        with self._lock:
            self.count += 1

            self.keys_examined.add(event.keys_examined)
            self.docs_examined.add(event.docs_examined)
            self.returned.add(event.docs_returned)
            self.response_length.add(event.response_length)
            self.shards.add(event.shard_count)
            if event.keys_examined is not None:
                self.keys_examined_percentiles.add_sample(event.keys_examined)
            if event.docs_examined is not None:
                self.docs_examined_percentiles.add_sample(event.docs_examined)
            if event.replanned:
                self.replanned_count += 1
            if event.from_multi_planner:
                self.multi_planner_count += 1

            self.duration.add(event.duration_ms)
            if event.duration_ms is not None:
                self.duration_percentiles.add_sample(event.duration_ms)
            self.storage_bytes_read.add(event.storage_bytes_read)
            self.storage_bytes_written.add(event.storage_bytes_written)
            self.planning_time.add(event.planning_time_micros)
            if event.planning_time_micros is not None:
                self.planning_time_percentiles.add_sample(event.planning_time_micros)

            txn = event.transaction
            if txn is not None:
                self.timings[TIMING_COMMIT].add(_micros_to_millis(txn.commit_duration_micros))
                self.timings[TIMING_ACTIVE].add(_micros_to_millis(txn.time_active_micros))
                self.timings[TIMING_INACTIVE].add(_micros_to_millis(txn.time_inactive_micros))

            if event.read_preference:
                self.read_preferences[event.read_preference] += 1
            if event.replan_reason:
                self.replan_reasons[event.replan_reason] += 1
            if event.driver is not None and event.driver.host:
                self.hosts[event.driver.host] += 1

            if event.error_message and "error_message" not in self.labels:
                self.labels["error_message"] = event.error_message
            if event.error_code is not None and "error_code" not in self.labels:
                self.labels["error_code"] = event.error_code
            if event.sanitized_filter and "sanitized_filter" not in self.labels:
                self.labels["sanitized_filter"] = event.sanitized_filter

        # The selector carries its own lock; only accepted candidates pay for
        # the transform.
        if self.retain_sample and raw_text is not None:
            self._selector.consider(
                event.duration_ms, raw_text, transform or _identity, truncation_check
            )

    # ------------------------------------------------------------------
    # Derived values

    @property
    def sample(self) -> Optional[SampleRecord]:
        return self._selector.sample

    @property
    def sample_transforms(self) -> int:
        return self._selector.transform_calls

    @property
    def avg_duration(self) -> float:
        return self.duration.average

    @property
    def min_duration(self) -> Optional[int]:
        return self.duration.minimum

    @property
    def max_duration(self) -> Optional[int]:
        return self.duration.maximum

    @property
    def total_duration(self) -> int:
        return self.duration.total

    @property
    def total_keys_examined(self) -> int:
        return self.keys_examined.total

    @property
    def total_docs_examined(self) -> int:
        return self.docs_examined.total

    @property
    def total_returned(self) -> int:
        return self.returned.total

    @property
    def total_response_length(self) -> int:
        return self.response_length.total

    @property
    def total_shards(self) -> int:
        return self.shards.total

    # Averages divide by the events that reported the field, not by count.

    @property
    def avg_keys_examined(self) -> float:
        return self.keys_examined.average

    @property
    def avg_docs_examined(self) -> float:
        return self.docs_examined.average

    @property
    def avg_returned(self) -> float:
        return self.returned.average

    @property
    def avg_response_length(self) -> float:
        return self.response_length.average

    @property
    def avg_shards(self) -> float:
        return self.shards.average

    @property
    def avg_planning_time_micros(self) -> float:
        return self.planning_time.average

    @property
    def keys_examined_per_returned(self) -> float:
        return _ratio(self.total_keys_examined, self.total_returned)

    @property
    def docs_examined_per_returned(self) -> float:
        return _ratio(self.total_docs_examined, self.total_returned)

    @property
    def replanned_ratio(self) -> float:
        return _ratio(self.replanned_count, self.count)

    @property
    def p95_duration(self) -> float:
        return self.duration_percentiles.percentile(95)

    @property
    def at_capacity(self) -> bool:
        return any(
            estimator.at_capacity
            for estimator in (
                self.duration_percentiles,
                self.keys_examined_percentiles,
                self.docs_examined_percentiles,
                self.planning_time_percentiles,
            )
        )

    def as_dict(self) -> Dict[str, Any]:
        sample = self.sample
        payload: Dict[str, Any] = {
            "count": self.count,
            "duration": self.duration.as_dict(),
            "p50_duration_ms": self.duration_percentiles.percentile(50),
            "p95_duration_ms": self.p95_duration,
            "total_keys_examined": self.total_keys_examined,
            "total_docs_examined": self.total_docs_examined,
            "total_returned": self.total_returned,
            "total_response_length": self.total_response_length,
            "total_shards": self.total_shards,
            "avg_keys_examined": self.avg_keys_examined,
            "avg_docs_examined": self.avg_docs_examined,
            "avg_returned": self.avg_returned,
            "avg_response_length": self.avg_response_length,
            "avg_shards": self.avg_shards,
            "p95_keys_examined": self.keys_examined_percentiles.percentile(95),
            "p95_docs_examined": self.docs_examined_percentiles.percentile(95),
            "keys_examined_per_returned": self.keys_examined_per_returned,
            "docs_examined_per_returned": self.docs_examined_per_returned,
            "storage_bytes_read": self.storage_bytes_read.as_dict(),
            "storage_bytes_written": self.storage_bytes_written.as_dict(),
            "planning_time_micros": self.planning_time.as_dict(),
            "p95_planning_time_micros": self.planning_time_percentiles.percentile(95),
            "replanned_count": self.replanned_count,
            "replanned_ratio": self.replanned_ratio,
            "multi_planner_count": self.multi_planner_count,
            "timings": {name: stats.as_dict() for name, stats in self.timings.items()},
            "read_preferences": dict(self.read_preferences),
            "replan_reasons": dict(self.replan_reasons),
            "hosts": dict(self.hosts),
            "labels": dict(self.labels),
            "percentiles_at_capacity": self.at_capacity,
            "sample": sample.text if sample is not None else None,
            "sample_duration_ms": sample.duration_ms if sample is not None else None,
            "sample_truncated": sample.truncated if sample is not None else None,
        }
        return payload
