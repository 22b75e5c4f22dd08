# ==============================================
# Tests for the aggregation engine
# ==============================================

import json

import pytest

from log_aggregator.config import AggregationSettings
from log_aggregator.core.engine import (
    TABLE_DRIVERS,
    TABLE_ERRORS,
    TABLE_INDEX_USAGE,
    TABLE_NAMES,
    TABLE_NAMESPACES,
    TABLE_PLAN_CACHE,
    TABLE_QUERY_HASHES,
    TABLE_TRANSACTIONS,
    AggregationEngine,
)
from log_aggregator.core.keys import OVERFLOW_KEY, ErrorCodeKey, IndexUsageKey, NamespaceKey
from log_aggregator.core.namespaces import namespace_allowed


def _drive(engine, events):
    """Run both passes over (event, raw_text) pairs and finalize."""

    for event, _ in events:
        engine.census(event)
    engine.finish_census()
    for event, raw in events:
        engine.submit(event, raw)
    return engine.finalize()


# ==============================================
# Routing
# ==============================================


class TestRouting:
    def test_query_event_lands_in_query_tables(self, make_event):
        event = make_event(query_hash="ABCD", plan_cache_key="PCK", plan_summary="COLLSCAN", duration_ms=5)
        report = _drive(AggregationEngine(), [(event, "raw")])

        assert len(report.tables[TABLE_NAMESPACES]) == 1
        assert len(report.tables[TABLE_QUERY_HASHES]) == 1
        assert len(report.tables[TABLE_PLAN_CACHE]) == 1
        assert len(report.tables[TABLE_ERRORS]) == 0
        assert len(report.tables[TABLE_TRANSACTIONS]) == 0
        assert len(report.tables[TABLE_DRIVERS]) == 0

    def test_event_without_hash_skips_hash_tables(self, make_event):
        report = _drive(AggregationEngine(), [(make_event(), None)])
        assert len(report.tables[TABLE_NAMESPACES]) == 1
        assert len(report.tables[TABLE_QUERY_HASHES]) == 0
        assert len(report.tables[TABLE_PLAN_CACHE]) == 0

    def test_errors_grouped_by_code_name(self, make_event):
        events = [
            (make_event(error_code=11000, error_code_name="DuplicateKey"), None),
            (make_event(error_code=11000, error_code_name="DuplicateKey"), None),
            (make_event(error_code=50), None),
        ]
        report = _drive(AggregationEngine(), events)
        errors = report.tables[TABLE_ERRORS]
        assert errors.get(ErrorCodeKey("DuplicateKey")).count == 2
        assert errors.get(ErrorCodeKey("50")).count == 1

    def test_transactions_and_drivers_skip_namespace_table(self, txn_event, driver_event):
        report = _drive(AggregationEngine(), [(txn_event(), "txn"), (driver_event(), "meta")])
        assert len(report.tables[TABLE_NAMESPACES]) == 0
        assert report.tables[TABLE_TRANSACTIONS].total_count() == 1
        assert report.tables[TABLE_DRIVERS].total_count() == 1

    def test_index_usage_by_plan_summary(self, make_event):
        events = [
            (make_event(plan_summary="COLLSCAN"), None),
            (make_event(plan_summary="COLLSCAN"), None),
            (make_event(plan_summary="IXSCAN { status: 1 }"), None),
            (make_event(namespace="shop.users", plan_summary="COLLSCAN"), None),
            (make_event(), None),
        ]
        report = _drive(AggregationEngine(), events)
        usage = report.tables[TABLE_INDEX_USAGE]
        assert usage.get(IndexUsageKey("shop.orders", "COLLSCAN")).count == 2
        assert usage.get(IndexUsageKey("shop.orders", "IXSCAN { status: 1 }")).count == 1
        assert usage.total_count() == 4
        assert report.stats["collection_scan_operations"] == 3
        rows = report.rows(TABLE_INDEX_USAGE)
        assert rows[0]["plan_summary"] == "COLLSCAN"
        assert rows[0]["collection_scan"] is True

    def test_slow_planning_tracked_for_accepted_events(self, make_event):
        config = AggregationSettings(slow_planning_limit=2, namespace_filters=("shop",))
        events = [
            (make_event(planning_time_micros=100), None),
            (make_event(planning_time_micros=900), None),
            (make_event(planning_time_micros=50), None),
            (make_event(namespace="other.coll", planning_time_micros=99999), None),
        ]
        report = _drive(AggregationEngine(config), events)
        assert [r.planning_time_micros for r in report.slow_planning] == [900, 100]
        assert report.as_dict()["slow_planning"][0]["planning_time_micros"] == 900

    def test_all_tables_present(self):
        report = _drive(AggregationEngine(), [])
        assert tuple(report.tables) == TABLE_NAMES
        assert report.warnings == []
        assert report.reconciliation.matched


# ==============================================
# Namespace filtering
# ==============================================


class TestNamespaceFiltering:
    def test_config_database_always_excluded(self, make_event):
        report = _drive(
            AggregationEngine(),
            [(make_event(namespace="config.system.sessions"), None), (make_event(), None)],
        )
        namespaces = report.tables[TABLE_NAMESPACES]
        assert NamespaceKey("config.system.sessions", "find") not in namespaces
        assert report.stats["filtered_by_namespace"] == 1

    def test_configured_filters(self, make_event):
        config = AggregationSettings(namespace_filters=("shop.*",))
        report = _drive(
            AggregationEngine(config),
            [(make_event(namespace="shop.orders"), None), (make_event(namespace="crm.leads"), None)],
        )
        assert [key.namespace for key, _ in report.report_view(TABLE_NAMESPACES)] == ["shop.orders"]

    @pytest.mark.parametrize(
        "namespace,filters,expected",
        [
            ("shop.orders", (), True),
            ("config.chunks", (), False),
            ("config.chunks", ("config",), False),
            ("shop.orders", ("shop",), True),
            ("shop.orders", ("shop.orders",), True),
            ("shop.orders", ("shop.users",), False),
            ("shop.orders_2024", ("shop.orders_*",), True),
            ("shopping.orders", ("shop.*",), False),
            ("", (), False),
        ],
    )
    def test_namespace_allowed(self, namespace, filters, expected):
        assert namespace_allowed(namespace, filters) is expected


# ==============================================
# Lifecycle
# ==============================================


class TestLifecycle:
    def test_submit_before_census_finished_raises(self, make_event):
        engine = AggregationEngine()
        with pytest.raises(RuntimeError):
            engine.submit(make_event())

    def test_submit_after_finalize_raises(self, make_event):
        engine = AggregationEngine()
        _drive(engine, [(make_event(), None)])
        assert engine.finalized
        with pytest.raises(RuntimeError):
            engine.submit(make_event())

    def test_census_closed_after_finish(self, driver_event):
        engine = AggregationEngine()
        engine.finish_census()
        with pytest.raises(RuntimeError):
            engine.census(driver_event())

    def test_finalize_is_idempotent(self, make_event):
        engine = AggregationEngine()
        report = _drive(engine, [(make_event(), None)])
        assert engine.finalize() is report

    def test_stats_count_submissions_and_keys(self, make_event):
        report = _drive(AggregationEngine(), [(make_event(), None), (make_event(namespace="a.b"), None)])
        assert report.stats["submitted"] == 2
        assert report.stats["namespaces_keys"] == 2


# ==============================================
# Drivers, samples and report rows
# ==============================================


class TestDriversAndSamples:
    def test_overflow_driver_bucket(self, driver_event):
        config = AggregationSettings(significance_rule="top_n", significance_value=1)
        events = [(driver_event(name="pymongo"), None)] * 3 + [(driver_event(name="java"), None)]
        report = _drive(AggregationEngine(config), events)

        drivers = report.report_view(TABLE_DRIVERS)
        assert drivers[0][0].driver_name == "pymongo"
        assert drivers[0][1].count == 3
        assert drivers[1][0] == OVERFLOW_KEY
        assert drivers[1][1].count == 1
        assert report.reconciliation.census_total == 4

    def test_reconciliation_warning_reaches_report(self, driver_event):
        engine = AggregationEngine()
        engine.census(driver_event())
        engine.finish_census()
        engine.submit(driver_event())
        engine.submit(driver_event())
        report = engine.finalize()
        assert len(report.warnings) == 1
        assert not report.reconciliation.matched

    def test_redaction_applies_to_samples(self, make_event):
        raw = json.dumps({"msg": "Slow query", "attr": {"command": {"filter": {"age": {"$gt": 30}}}}})
        report = _drive(AggregationEngine(AggregationSettings(redaction_enabled=True)), [(make_event(duration_ms=4), raw)])
        entry = report.report_view(TABLE_NAMESPACES)[0][1]
        assert json.loads(entry.sample.text) == {
            "msg": "Slow query",
            "attr": {"command": {"filter": {"age": {"$gt": 999}}}},
        }

    def test_server_truncated_sample_flagged(self, make_event):
        raw = json.dumps({"attr": {"command": {"truncated": {"filter": {"errMsg": "too big"}}}}})
        report = _drive(AggregationEngine(), [(make_event(duration_ms=4), raw)])
        entry = report.report_view(TABLE_NAMESPACES)[0][1]
        assert entry.sample.truncated is True
        assert report.rows(TABLE_NAMESPACES)[0]["sample_truncated"] is True

    def test_trim_without_redaction(self, make_event):
        raw = json.dumps({"attr": {"command": {"find": "orders", "lsid": {"id": 1}}}})
        report = _drive(AggregationEngine(), [(make_event(duration_ms=4), raw)])
        entry = report.report_view(TABLE_NAMESPACES)[0][1]
        assert json.loads(entry.sample.text) == {"attr": {"command": {"find": "orders"}}}

    def test_sample_retention_disabled(self, make_event):
        config = AggregationSettings(sample_retention_enabled=False)
        report = _drive(AggregationEngine(config), [(make_event(duration_ms=4), "{}")])
        assert report.report_view(TABLE_NAMESPACES)[0][1].sample is None

    def test_rows_flatten_keys_and_metrics(self, make_event):
        report = _drive(AggregationEngine(), [(make_event(duration_ms=12), None)])
        rows = report.rows(TABLE_NAMESPACES)
        assert rows[0]["namespace"] == "shop.orders"
        assert rows[0]["operation"] == "find"
        assert rows[0]["count"] == 1
        payload = report.as_dict()
        assert payload["reconciliation"]["matched"] is True
        assert set(payload["tables"]) == set(TABLE_NAMES)
