"""Aggregation engine routing events into the keyed tables."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import AggregationSettings
from ..redaction.transformer import FieldTransformer
from ..utils.logging_utils import get_logger
from .entry import AggregateEntry
from .events import LogEvent
from .keys import (
    AggregateKey,
    driver_key,
    error_code_key,
    index_usage_key,
    key_as_dict,
    namespace_key,
    plan_cache_key,
    query_hash_key,
    transaction_key,
)
from .namespaces import namespace_allowed
from .slow_planning import SlowPlanningRecord, SlowPlanningTracker
from .table import KeyedAggregateTable
from .two_pass import ReconciliationResult, SignificancePolicy, TwoPassAggregator

LOGGER = get_logger("core.engine")

TABLE_NAMESPACES = "namespaces"
TABLE_QUERY_HASHES = "query_hashes"
TABLE_PLAN_CACHE = "plan_cache"
TABLE_INDEX_USAGE = "index_usage"
TABLE_ERRORS = "error_codes"
TABLE_TRANSACTIONS = "transactions"
TABLE_DRIVERS = "drivers"

TABLE_NAMES = (
    TABLE_NAMESPACES,
    TABLE_QUERY_HASHES,
    TABLE_PLAN_CACHE,
    TABLE_INDEX_USAGE,
    TABLE_ERRORS,
    TABLE_TRANSACTIONS,
    TABLE_DRIVERS,
)

Row = Tuple[AggregateKey, AggregateEntry]


@dataclass
class AggregationReport:
    """Read-only outcome of one aggregation run."""

    tables: Dict[str, KeyedAggregateTable]
    warnings: List[str] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    reconciliation: Optional[ReconciliationResult] = None
    slow_planning: List[SlowPlanningRecord] = field(default_factory=list)

    def report_view(self, name: str, sort_key="count") -> List[Row]:
        return self.tables[name].report_view(sort_key)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        """Flatten one table's report view into dictionaries."""

        flattened: List[Dict[str, Any]] = []
        for key, entry in self.report_view(name):
            row = key_as_dict(key)
            row.update(entry.as_dict())
            flattened.append(row)
        return flattened

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tables": {name: self.rows(name) for name in self.tables},
            "warnings": list(self.warnings),
            "stats": dict(self.stats),
            "reconciliation": self.reconciliation.as_dict() if self.reconciliation else None,
            "slow_planning": [record.as_dict() for record in self.slow_planning],
        }


class AggregationEngine:
    """Owns the keyed tables and the two-pass driver aggregator.

    Usage is ``census`` for every event, ``finish_census`` once, ``submit`` for
    every event again and finally ``finalize``. ``submit`` is safe to call from
    several threads.
    """

    def __init__(
        self,
        config: Optional[AggregationSettings] = None,
        *,
        transformer: Optional[FieldTransformer] = None,
    ) -> None:
        self.config = config or AggregationSettings()
        self.transformer = transformer or FieldTransformer()
        transform = self.transformer.transform_for(self.config.redaction_enabled)

        def make_table(name: str) -> KeyedAggregateTable:
            return KeyedAggregateTable(
                name,
                percentile_cap=self.config.percentile_cap,
                retain_samples=self.config.sample_retention_enabled,
                transform=transform,
                truncation_check=self.transformer.is_truncated,
            )

        self.tables: Dict[str, KeyedAggregateTable] = {
            TABLE_NAMESPACES: make_table(TABLE_NAMESPACES),
            TABLE_QUERY_HASHES: make_table(TABLE_QUERY_HASHES),
            TABLE_PLAN_CACHE: make_table(TABLE_PLAN_CACHE),
            TABLE_INDEX_USAGE: make_table(TABLE_INDEX_USAGE),
            TABLE_ERRORS: make_table(TABLE_ERRORS),
            TABLE_TRANSACTIONS: make_table(TABLE_TRANSACTIONS),
        }
        self.drivers = TwoPassAggregator(
            TABLE_DRIVERS,
            driver_key,
            policy=SignificancePolicy(self.config.significance_rule, self.config.significance_value),
            percentile_cap=self.config.percentile_cap,
            retain_samples=self.config.sample_retention_enabled,
            transform=transform,
            truncation_check=self.transformer.is_truncated,
        )
        self.tables[TABLE_DRIVERS] = self.drivers.table
        self.slow_planning = SlowPlanningTracker(self.config.slow_planning_limit)

        self._routes: List[Tuple[str, Callable[[LogEvent], Optional[AggregateKey]]]] = [
            (TABLE_QUERY_HASHES, query_hash_key),
            (TABLE_PLAN_CACHE, plan_cache_key),
            (TABLE_INDEX_USAGE, index_usage_key),
            (TABLE_ERRORS, error_code_key),
            (TABLE_TRANSACTIONS, transaction_key),
        ]
        self._stats: Counter = Counter()
        self._stats_lock = Lock()
        self._finalized = False
        self._report: Optional[AggregationReport] = None

    def _bump(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def _accepts(self, event: LogEvent) -> bool:
        if not event.namespace:
            return True
        return namespace_allowed(event.namespace, self.config.namespace_filters)

    # ------------------------------------------------------------------
    # Pass one

    def census(self, event: LogEvent) -> None:
        if self.drivers.census_finished:
            raise RuntimeError("census is closed")
        if not self._accepts(event):
            return
        self.drivers.observe(event)
        self._bump("census_events")

    def finish_census(self) -> None:
        self.drivers.finish_census()

    # ------------------------------------------------------------------
    # Pass two

    def submit(self, event: LogEvent, raw_text: Optional[str] = None) -> None:
        if self._finalized:
            raise RuntimeError("engine is finalized; no further events accepted")
        if not self.drivers.census_finished:
            raise RuntimeError("finish_census() must run before submit()")

        if not self._accepts(event):
            self._bump("filtered_by_namespace")
            return
        self._bump("submitted")

        if event.namespace:
            self.tables[TABLE_NAMESPACES].merge(namespace_key(event), event, raw_text)
            self.slow_planning.offer(event)
        for table_name, extractor in self._routes:
            key = extractor(event)
            if key is not None:
                self.tables[table_name].merge(key, event, raw_text)
        self.drivers.merge(event, raw_text)

    def finalize(self) -> AggregationReport:
        if self._report is not None:
            return self._report
        self._finalized = True

        reconciliation = self.drivers.reconcile()
        warnings: List[str] = []
        if reconciliation.warning:
            warnings.append(reconciliation.warning)

        with self._stats_lock:
            stats = dict(self._stats)
        for name, table in self.tables.items():
            stats[f"{name}_keys"] = len(table)
        stats["collection_scan_operations"] = sum(
            entry.count
            for key, entry in self.tables[TABLE_INDEX_USAGE].entries()
            if key.is_collection_scan
        )

        self._report = AggregationReport(
            tables=dict(self.tables),
            warnings=warnings,
            stats=stats,
            reconciliation=reconciliation,
            slow_planning=self.slow_planning.top(),
        )
        LOGGER.info(
            "Aggregation finalized: %d events, %d namespaces, %d query shapes",
            stats.get("submitted", 0),
            stats[f"{TABLE_NAMESPACES}_keys"],
            stats[f"{TABLE_QUERY_HASHES}_keys"],
        )
        return self._report

    @property
    def finalized(self) -> bool:
        return self._finalized
