"""Parquet serialization of aggregation reports."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from ..core.engine import (
    TABLE_DRIVERS,
    TABLE_ERRORS,
    TABLE_NAMESPACES,
    TABLE_INDEX_USAGE,
    TABLE_PLAN_CACHE,
    TABLE_QUERY_HASHES,
    TABLE_TRANSACTIONS,
    AggregationReport,
)
from ..core.entry import TIMING_ACTIVE, TIMING_COMMIT, TIMING_INACTIVE, AggregateEntry
from ..core.keys import AggregateKey, OverflowKey, key_as_dict
from ..utils.logging_utils import get_logger

LOGGER = get_logger("report.parquet_writer")

ENTRY_FIELDS = [
    ("rank", pa.int32()),
    ("count", pa.int64()),
    ("duration_count", pa.int64()),
    ("total_duration_ms", pa.int64()),
    ("min_duration_ms", pa.int64()),
    ("max_duration_ms", pa.int64()),
    ("avg_duration_ms", pa.float64()),
    ("p50_duration_ms", pa.float64()),
    ("p95_duration_ms", pa.float64()),
    ("total_keys_examined", pa.int64()),
    ("total_docs_examined", pa.int64()),
    ("total_returned", pa.int64()),
    ("total_response_length", pa.int64()),
    ("total_shards", pa.int64()),
    ("avg_keys_examined", pa.float64()),
    ("avg_docs_examined", pa.float64()),
    ("avg_returned", pa.float64()),
    ("p95_keys_examined", pa.float64()),
    ("p95_docs_examined", pa.float64()),
    ("keys_examined_per_returned", pa.float64()),
    ("docs_examined_per_returned", pa.float64()),
    ("storage_bytes_read", pa.int64()),
    ("storage_bytes_written", pa.int64()),
    ("avg_planning_time_micros", pa.float64()),
    ("p95_planning_time_micros", pa.float64()),
    ("replanned_count", pa.int64()),
    ("multi_planner_count", pa.int64()),
    ("avg_commit_ms", pa.float64()),
    ("avg_time_active_ms", pa.float64()),
    ("avg_time_inactive_ms", pa.float64()),
    ("read_preferences", pa.string()),
    ("replan_reasons", pa.string()),
    ("hosts", pa.string()),
    ("error_message", pa.string()),
    ("error_code", pa.int64()),
    ("sanitized_filter", pa.string()),
    ("percentiles_at_capacity", pa.bool_()),
    ("sample", pa.string()),
    ("sample_duration_ms", pa.int64()),
    ("sample_truncated", pa.bool_()),
]

KEY_FIELDS: Dict[str, List[tuple]] = {
    TABLE_NAMESPACES: [
        ("namespace", pa.string()),
        ("operation", pa.string()),
    ],
    TABLE_QUERY_HASHES: [
        ("query_hash", pa.string()),
        ("namespace", pa.string()),
        ("operation", pa.string()),
    ],
    TABLE_PLAN_CACHE: [
        ("namespace", pa.string()),
        ("operation", pa.string()),
        ("query_hash", pa.string()),
        ("plan_summary", pa.string()),
        ("plan_cache_key", pa.string()),
    ],
    TABLE_INDEX_USAGE: [
        ("namespace", pa.string()),
        ("plan_summary", pa.string()),
        ("collection_scan", pa.bool_()),
    ],
    TABLE_ERRORS: [
        ("code", pa.string()),
    ],
    TABLE_TRANSACTIONS: [
        ("txn_retry_counter", pa.int64()),
        ("termination_cause", pa.string()),
        ("commit_type", pa.string()),
        ("descriptor", pa.string()),
    ],
    TABLE_DRIVERS: [
        ("driver_name", pa.string()),
        ("driver_version", pa.string()),
        ("compressors", pa.string()),
        ("os_type", pa.string()),
        ("platform", pa.string()),
        ("server_version", pa.string()),
        ("overflow", pa.bool_()),
    ],
}

REPORT_SCHEMAS: Dict[str, pa.Schema] = {
    name: pa.schema(fields + ENTRY_FIELDS) for name, fields in KEY_FIELDS.items()
}

SLOW_PLANNING = "slow_planning"

SLOW_PLANNING_SCHEMA = pa.schema(
    [
        ("rank", pa.int32()),
        ("planning_time_micros", pa.int64()),
        ("namespace", pa.string()),
        ("operation", pa.string()),
        ("plan_summary", pa.string()),
        ("query_hash", pa.string()),
        ("sanitized_filter", pa.string()),
        ("timestamp", pa.string()),
    ]
)


def _counter_json(counter) -> Optional[str]:
    if not counter:
        return None
    return json.dumps(dict(counter.most_common()), separators=(",", ":"))


def _key_columns(table_name: str, key: AggregateKey) -> Dict[str, Any]:
    if isinstance(key, OverflowKey):
        # Only the driver table collapses keys; the label stands in for the name.
        return {"driver_name": key.label, "overflow": True}
    columns = key_as_dict(key)
    if table_name == TABLE_DRIVERS:
        columns["overflow"] = False
    return columns


def entry_columns(entry: AggregateEntry) -> Dict[str, Any]:
    sample = entry.sample
    return {
        "count": entry.count,
        "duration_count": entry.duration.count,
        "total_duration_ms": entry.duration.total,
        "min_duration_ms": entry.duration.minimum,
        "max_duration_ms": entry.duration.maximum,
        "avg_duration_ms": entry.avg_duration,
        "p50_duration_ms": entry.duration_percentiles.percentile(50),
        "p95_duration_ms": entry.p95_duration,
        "total_keys_examined": entry.total_keys_examined,
        "total_docs_examined": entry.total_docs_examined,
        "total_returned": entry.total_returned,
        "total_response_length": entry.total_response_length,
        "total_shards": entry.total_shards,
        "avg_keys_examined": entry.avg_keys_examined,
        "avg_docs_examined": entry.avg_docs_examined,
        "avg_returned": entry.avg_returned,
        "p95_keys_examined": entry.keys_examined_percentiles.percentile(95),
        "p95_docs_examined": entry.docs_examined_percentiles.percentile(95),
        "keys_examined_per_returned": entry.keys_examined_per_returned,
        "docs_examined_per_returned": entry.docs_examined_per_returned,
        "storage_bytes_read": entry.storage_bytes_read.total,
        "storage_bytes_written": entry.storage_bytes_written.total,
        "avg_planning_time_micros": entry.avg_planning_time_micros,
        "p95_planning_time_micros": entry.planning_time_percentiles.percentile(95),
        "replanned_count": entry.replanned_count,
        "multi_planner_count": entry.multi_planner_count,
        "avg_commit_ms": entry.timings[TIMING_COMMIT].average,
        "avg_time_active_ms": entry.timings[TIMING_ACTIVE].average,
        "avg_time_inactive_ms": entry.timings[TIMING_INACTIVE].average,
        "read_preferences": _counter_json(entry.read_preferences),
        "replan_reasons": _counter_json(entry.replan_reasons),
        "hosts": _counter_json(entry.hosts),
        "error_message": entry.labels.get("error_message"),
        "error_code": entry.labels.get("error_code"),
        "sanitized_filter": entry.labels.get("sanitized_filter"),
        "percentiles_at_capacity": entry.at_capacity,
        "sample": sample.text if sample is not None else None,
        "sample_duration_ms": sample.duration_ms if sample is not None else None,
        "sample_truncated": sample.truncated if sample is not None else None,
    }


def report_rows(report: AggregationReport, table_name: str) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for rank, (key, entry) in enumerate(report.report_view(table_name), start=1):
        row = _key_columns(table_name, key)
        row.update(entry_columns(entry))
        row["rank"] = rank
        rows.append(row)
    return rows


def slow_planning_rows(report: AggregationReport) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for rank, record in enumerate(report.slow_planning, start=1):
        row = record.as_dict()
        row["rank"] = rank
        rows.append(row)
    return rows


class ParquetTableWriter:
    """Minimal batching wrapper around :class:`pyarrow.parquet.ParquetWriter`."""

    def __init__(self, destination: Path, schema: pa.Schema, *, compression: str) -> None:
        self.destination = Path(destination)
        self.schema = schema
        self.compression = compression
        self._writer: Optional[pq.ParquetWriter] = None
        self._rows_written = 0

    def write_rows(self, rows: List[Dict[str, Any]]) -> None:
        table = pa.Table.from_pylist(rows, schema=self.schema)
        if self._writer is None:
            self.destination.parent.mkdir(parents=True, exist_ok=True)
            self._writer = pq.ParquetWriter(
                self.destination, self.schema, compression=self.compression
            )
        self._writer.write_table(table)
        self._rows_written += int(table.num_rows)
        LOGGER.debug(
            "Appended %d rows to %s (total=%d)",
            table.num_rows,
            self.destination,
            self._rows_written,
        )

    def finalize(self) -> Dict[str, Any]:
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        return {"rows_written": self._rows_written, "path": str(self.destination)}


def _write_file(
    destination: Path,
    schema: pa.Schema,
    rows: List[Dict[str, Any]],
    *,
    compression: str,
    batch_size: int,
) -> Dict[str, Any]:
    writer = ParquetTableWriter(destination, schema, compression=compression)
    try:
        if not rows:
            writer.write_rows([])
        for start in range(0, len(rows), batch_size):
            writer.write_rows(rows[start : start + batch_size])
    finally:
        result = writer.finalize()
    return result


def write_report(
    report: AggregationReport,
    destination: Path,
    *,
    compression: str = "snappy",
    batch_size: int = 1000,
) -> Dict[str, Dict[str, Any]]:
    """Write one Parquet file per report table under *destination*.

    Empty tables still produce a file with the table's schema so readers can
    register every view unconditionally. The slow-planning list is written
    alongside as ``slow_planning.parquet``.
    """

    root = Path(destination)
    results: Dict[str, Dict[str, Any]] = {}
    for table_name, schema in REPORT_SCHEMAS.items():
        if table_name not in report.tables:
            continue
        results[table_name] = _write_file(
            root / f"{table_name}.parquet",
            schema,
            report_rows(report, table_name),
            compression=compression,
            batch_size=batch_size,
        )
        LOGGER.info(
            "Wrote %d %s rows to %s",
            results[table_name]["rows_written"],
            table_name,
            results[table_name]["path"],
        )

    results[SLOW_PLANNING] = _write_file(
        root / f"{SLOW_PLANNING}.parquet",
        SLOW_PLANNING_SCHEMA,
        slow_planning_rows(report),
        compression=compression,
        batch_size=batch_size,
    )
    return results
