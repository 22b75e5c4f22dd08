# ==============================================
# Shared fixtures for the log aggregator tests
# ==============================================

import json
from pathlib import Path

import pytest

from log_aggregator.config import AggregationSettings
from log_aggregator.core.events import DriverInfo, LogEvent, TransactionInfo
from log_aggregator.runtime import status


def slow_query_line(
    *,
    ns="shop.orders",
    command=None,
    duration=100,
    keys=10,
    docs=20,
    nreturned=5,
    query_hash="ABCD1234",
    plan_cache_key="PCK1",
    plan_summary="IXSCAN { status: 1 }",
    extra_attr=None,
):
    attr = {
        "type": "command",
        "ns": ns,
        "command": command if command is not None else {"find": ns.split(".", 1)[1], "filter": {"status": "A"}},
        "planSummary": plan_summary,
        "keysExamined": keys,
        "docsExamined": docs,
        "nreturned": nreturned,
        "queryHash": query_hash,
        "planCacheKey": plan_cache_key,
        "reslen": 512,
        "durationMillis": duration,
    }
    if extra_attr:
        attr.update(extra_attr)
    return json.dumps(
        {
            "t": {"$date": "2024-05-01T10:00:00.000+00:00"},
            "s": "I",
            "c": "COMMAND",
            "id": 51803,
            "ctx": "conn12",
            "msg": "Slow query",
            "attr": attr,
        }
    )


def client_metadata_line(*, name="nodejs", version="6.3.0", remote="10.0.0.5:51234"):
    return json.dumps(
        {
            "t": {"$date": "2024-05-01T10:00:00.000+00:00"},
            "s": "I",
            "c": "NETWORK",
            "id": 51800,
            "ctx": "conn12",
            "msg": "client metadata",
            "attr": {
                "remote": remote,
                "client": "conn12",
                "negotiatedCompressors": ["zstd", "snappy"],
                "doc": {
                    "driver": {"name": name, "version": version},
                    "os": {"type": "Linux", "name": "Ubuntu", "architecture": "x86_64"},
                },
            },
        }
    )


def transaction_line(*, termination="committed", retry=0, duration=40):
    return json.dumps(
        {
            "t": {"$date": "2024-05-01T10:00:00.000+00:00"},
            "s": "I",
            "c": "TXN",
            "id": 51802,
            "ctx": "conn12",
            "msg": "transaction",
            "attr": {
                "parameters": {"txnRetryCounter": retry, "lsid": {"id": "x"}},
                "terminationCause": termination,
                "commitType": "singleShard",
                "durationMillis": duration,
                "commitDurationMicros": 2000,
                "timeActiveMicros": 5000,
                "timeInactiveMicros": 1000,
            },
        }
    )


@pytest.fixture
def make_event():
    """Factory for events with sensible defaults."""

    def _make(**overrides):
        values = {"namespace": "shop.orders", "operation": "find"}
        values.update(overrides)
        return LogEvent(**values)

    return _make


@pytest.fixture
def driver_event(make_event):
    def _make(name="pymongo", version="4.6.0", **overrides):
        return make_event(
            namespace="",
            operation="clientMetadata",
            driver=DriverInfo(name=name, version=version, os_type="Linux", platform="x86_64"),
            **overrides,
        )

    return _make


@pytest.fixture
def txn_event(make_event):
    def _make(termination="committed", retry=0, **overrides):
        return make_event(
            namespace="",
            operation="transaction",
            transaction=TransactionInfo(
                retry_counter=retry,
                termination_cause=termination,
                commit_type="singleShard",
                commit_duration_micros=2000,
                time_active_micros=5000,
                time_inactive_micros=1000,
            ),
            **overrides,
        )

    return _make


@pytest.fixture
def config():
    return AggregationSettings()


@pytest.fixture
def log_file(tmp_path):
    """Write a small mixed log and return its path."""

    lines = [
        slow_query_line(duration=100),
        slow_query_line(duration=300, query_hash="ABCD1234"),
        slow_query_line(ns="shop.users", duration=50, query_hash="FFFF0000", plan_cache_key="PCK2"),
        slow_query_line(ns="config.system.sessions", duration=10),
        client_metadata_line(),
        client_metadata_line(),
        client_metadata_line(name="NetworkInterfaceTL-ReplNetwork", version="7.0.4"),
        transaction_line(),
        "not json at all",
        "{broken json",
    ]
    path = tmp_path / "mongod.log"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def clean_status():
    status.reset()
    yield
    status.reset()


def write_lines(path: Path, lines) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
