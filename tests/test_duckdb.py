# ==============================================
# Tests for the DuckDB report queries
# ==============================================

import json

import pytest

pytest.importorskip("duckdb")

from conftest import slow_query_line, write_lines  # noqa: E402
from log_aggregator.analytics.duckdb_service import DuckDBService  # noqa: E402
from log_aggregator.ingest.pipeline import analyze_logs  # noqa: E402


@pytest.fixture
def dataset(log_file, tmp_path, config):
    out = tmp_path / "out"
    analyze_logs([log_file], output_root=out, config=config)
    return out


def test_views_registered(dataset):
    with DuckDBService(dataset_root=dataset) as service:
        assert service.has_view("namespaces")
        assert service.has_view("drivers")


def test_namespace_summary(dataset):
    with DuckDBService(dataset_root=dataset) as service:
        rows = service.get_namespace_summary(limit=5)
        assert [row["namespace"] for row in rows] == ["shop.orders", "shop.users"]
        assert rows[0]["count"] == 2
        assert rows[0]["max_duration_ms"] == 300

        by_max = service.get_namespace_summary(order_by="max")
        assert by_max[0]["namespace"] == "shop.orders"

        with pytest.raises(ValueError):
            service.get_namespace_summary(order_by="bogus")


def test_other_summaries(dataset):
    with DuckDBService(dataset_root=dataset) as service:
        assert len(service.get_query_hash_summary()) == 2
        assert len(service.get_plan_cache_summary()) == 2
        assert service.get_error_summary() == []
        assert service.get_transaction_summary()[0]["count"] == 1
        drivers = service.get_driver_summary()
        assert drivers[0]["driver_name"] == "nodejs"
        assert drivers[0]["overflow"] is False


def test_overview_and_manifest(dataset):
    with DuckDBService(dataset_root=dataset) as service:
        overview = service.get_overview()
        assert overview["tables"]["namespaces"] == 2
        assert overview["operations"] == 3
        assert service.get_manifest_info()["runs"][0]["run_id"] == 1


def test_missing_reports(tmp_path):
    with DuckDBService(dataset_root=tmp_path) as service:
        assert not service.has_view("namespaces")
        assert service.get_namespace_summary() == []
        assert service.get_overview() == {"tables": {}}
        assert service.get_manifest_info() is None


def test_index_usage_and_slow_planning(tmp_path, config):
    log = write_lines(
        tmp_path / "planning.log",
        [
            slow_query_line(plan_summary="COLLSCAN", extra_attr={"planningTimeMicros": 800}),
            slow_query_line(plan_summary="COLLSCAN", extra_attr={"planningTimeMicros": 12000}),
            slow_query_line(extra_attr={"planningTimeMicros": 50}),
        ],
    )
    out = tmp_path / "out"
    analyze_logs([log], output_root=out, config=config)
    with DuckDBService(dataset_root=out) as service:
        usage = service.get_index_usage_summary()
        assert [(row["plan_summary"], row["count"], row["collection_scan"]) for row in usage] == [
            ("COLLSCAN", 2, True),
            ("IXSCAN { status: 1 }", 1, False),
        ]
        assert len(service.get_index_usage_summary(collection_scans_only=True)) == 1

        planning = service.get_slow_planning_summary(limit=2)
        assert [row["planning_time_micros"] for row in planning] == [12000, 800]
        assert [row["rank"] for row in planning] == [1, 2]
        assert json.loads(planning[0]["sanitized_filter"]) == {"status": "A"}

        shapes = service.get_query_hash_summary()
        assert json.loads(shapes[0]["sanitized_filter"]) == {"status": "A"}
        assert service.get_overview()["tables"]["slow_planning"] == 3
