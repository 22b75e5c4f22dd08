"""DuckDB-backed queries over exported report tables."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import settings
from ..core.engine import TABLE_NAMES
from ..report.parquet_writer import SLOW_PLANNING
from ..report.manifest import MANIFEST_NAME, load_manifest
from ..utils.logging_utils import get_logger

try:
    import duckdb  # type: ignore
except ImportError as exc:  # pragma: no cover - optional dependency
    raise RuntimeError(
        "DuckDB is required for report analytics (pip install duckdb)."
    ) from exc

LOGGER = get_logger("analytics.duckdb")

VIEW_NAMES = TABLE_NAMES + (SLOW_PLANNING,)

_NAMESPACE_ORDERING = {
    "count": '"count"',
    "avg": "avg_duration_ms",
    "max": "max_duration_ms",
    "p95": "p95_duration_ms",
    "total": "total_duration_ms",
}


def _quote_path(path: str) -> str:
    return "'" + path.replace("'", "''") + "'"


class DuckDBService:
    """Thin wrapper providing summary queries over exported Parquet reports."""

    def __init__(self, *, dataset_root: Path | None = None, eager: bool = True) -> None:
        self.dataset_root = Path(dataset_root) if dataset_root else settings.output_root
        self._conn = duckdb.connect(database=":memory:")
        self._available_views: Dict[str, bool] = {}
        if eager:
            self.refresh()

    @property
    def connection(self) -> "duckdb.DuckDBPyConnection":
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "DuckDBService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # View registration

    def refresh(self) -> None:
        """Re-scan the report directory and register one view per table."""

        LOGGER.debug("Refreshing DuckDB views under %s", self.dataset_root)
        reports = self.dataset_root / "reports"
        for name in VIEW_NAMES:
            target = reports / f"{name}.parquet"
            self._register_parquet_view(name, target if target.exists() else None)

    def _register_parquet_view(self, name: str, target: Optional[Path]) -> None:
        if target is not None:
            self._conn.execute(
                f"CREATE OR REPLACE VIEW {name} AS SELECT * FROM read_parquet({_quote_path(str(target.resolve()))})"
            )
            self._available_views[name] = True
            LOGGER.debug("Registered view %s from %s", name, target)
        else:
            self._conn.execute(f"DROP VIEW IF EXISTS {name}")
            self._available_views[name] = False

    def has_view(self, name: str) -> bool:
        return self._available_views.get(name, False)

    def _rows(self, query: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        cursor = self._conn.execute(query, params or [])
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Summaries

    def get_namespace_summary(self, *, limit: int = 10, order_by: str = "count") -> List[Dict[str, Any]]:
        """Top namespace/operation rows ordered by *order_by*."""

        if not self.has_view("namespaces"):
            return []
        column = _NAMESPACE_ORDERING.get(order_by)
        if column is None:
            raise ValueError(f"Unsupported ordering {order_by!r}")
        return self._rows(
            f"""
            SELECT namespace, operation, "count", avg_duration_ms, max_duration_ms,
                   p95_duration_ms, avg_docs_examined, avg_returned
            FROM namespaces
            ORDER BY {column} DESC NULLS LAST, namespace, operation
            LIMIT ?
            """,
            [limit],
        )

    def get_query_hash_summary(self, *, limit: int = 10) -> List[Dict[str, Any]]:
        if not self.has_view("query_hashes"):
            return []
        return self._rows(
            """
            SELECT query_hash, namespace, operation, "count", avg_duration_ms,
                   p95_duration_ms, keys_examined_per_returned, docs_examined_per_returned,
                   sanitized_filter
            FROM query_hashes
            ORDER BY "count" DESC, namespace, operation, query_hash
            LIMIT ?
            """,
            [limit],
        )

    def get_plan_cache_summary(self, *, limit: int = 10) -> List[Dict[str, Any]]:
        if not self.has_view("plan_cache"):
            return []
        return self._rows(
            """
            SELECT namespace, plan_summary, plan_cache_key, "count", avg_duration_ms,
                   replanned_count, avg_planning_time_micros
            FROM plan_cache
            ORDER BY "count" DESC, namespace, plan_summary
            LIMIT ?
            """,
            [limit],
        )

    def get_index_usage_summary(
        self, *, limit: int = 10, collection_scans_only: bool = False
    ) -> List[Dict[str, Any]]:
        """Plan choices per namespace, busiest first."""

        if not self.has_view("index_usage"):
            return []
        where = "WHERE collection_scan" if collection_scans_only else ""
        return self._rows(
            f"""
            SELECT namespace, plan_summary, collection_scan, "count", avg_duration_ms,
                   p95_duration_ms, avg_keys_examined, avg_docs_examined, avg_returned
            FROM index_usage
            {where}
            ORDER BY "count" DESC, namespace, plan_summary
            LIMIT ?
            """,
            [limit],
        )

    def get_slow_planning_summary(self, *, limit: int = 10) -> List[Dict[str, Any]]:
        if not self.has_view(SLOW_PLANNING):
            return []
        return self._rows(
            """
            SELECT "rank", planning_time_micros, namespace, operation, plan_summary,
                   query_hash, sanitized_filter
            FROM slow_planning
            ORDER BY "rank"
            LIMIT ?
            """,
            [limit],
        )

    def get_error_summary(self, *, limit: int = 10) -> List[Dict[str, Any]]:
        if not self.has_view("error_codes"):
            return []
        return self._rows(
            """
            SELECT code, "count", error_code, error_message
            FROM error_codes
            ORDER BY "count" DESC, code
            LIMIT ?
            """,
            [limit],
        )

    def get_transaction_summary(self, *, limit: int = 10) -> List[Dict[str, Any]]:
        if not self.has_view("transactions"):
            return []
        return self._rows(
            """
            SELECT descriptor, "count", avg_duration_ms, avg_commit_ms,
                   avg_time_active_ms, avg_time_inactive_ms
            FROM transactions
            ORDER BY "count" DESC, descriptor
            LIMIT ?
            """,
            [limit],
        )

    def get_driver_summary(self, *, limit: int = 10) -> List[Dict[str, Any]]:
        if not self.has_view("drivers"):
            return []
        return self._rows(
            """
            SELECT driver_name, driver_version, compressors, os_type, platform,
                   "count", overflow
            FROM drivers
            ORDER BY overflow, "count" DESC, driver_name, driver_version
            LIMIT ?
            """,
            [limit],
        )

    def get_overview(self) -> Dict[str, Any]:
        """Row counts per table plus overall namespace totals."""

        overview: Dict[str, Any] = {"tables": {}}
        for name in VIEW_NAMES:
            if not self.has_view(name):
                continue
            (rows,) = self._conn.execute(f"SELECT COUNT(*) FROM {name}").fetchone()
            overview["tables"][name] = int(rows)
        if self.has_view("namespaces"):
            totals = self._rows(
                """
                SELECT COALESCE(SUM("count"), 0) AS operations,
                       COALESCE(SUM(total_duration_ms), 0) AS total_duration_ms,
                       COALESCE(SUM(total_docs_examined), 0) AS total_docs_examined
                FROM namespaces
                """
            )
            overview.update(totals[0])
        return overview

    def get_manifest_info(self) -> Dict[str, Any] | None:
        return load_manifest(self.dataset_root / MANIFEST_NAME)
