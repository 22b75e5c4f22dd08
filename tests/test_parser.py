# ==============================================
# Tests for the structured-log decoder
# ==============================================

import json

import pytest

from conftest import client_metadata_line, slow_query_line, transaction_line, write_lines
from log_aggregator.ingest.parser import (
    CLIENT_DISCONNECT_CODE,
    ParseStats,
    decode_entry,
    decode_line,
    iter_events,
    parse_log_file,
)


class TestDecodeLine:
    def test_slow_find(self):
        event = decode_line(slow_query_line(duration=120))
        assert event.namespace == "shop.orders"
        assert event.operation == "find"
        assert event.duration_ms == 120
        assert event.keys_examined == 10
        assert event.docs_examined == 20
        assert event.docs_returned == 5
        assert event.query_hash == "ABCD1234"
        assert event.plan_cache_key == "PCK1"
        assert event.plan_summary == "IXSCAN { status: 1 }"
        assert event.sanitized_filter == '{"status":"A"}'
        assert event.timestamp == "2024-05-01T10:00:00.000+00:00"

    def test_aggregate_uses_command_collection_and_match_stage(self):
        line = slow_query_line(
            ns="shop.$cmd",
            command={"aggregate": "orders", "pipeline": [{"$match": {"total": {"$gt": 5}}}]},
        )
        event = decode_line(line)
        assert event.namespace == "shop.orders"
        assert event.operation == "aggregate"
        assert event.sanitized_filter == '{"total":{"$gt":5}}'

    def test_delete_maps_to_remove(self):
        event = decode_line(slow_query_line(command={"delete": "orders", "deletes": []}))
        assert event.operation == "remove"

    def test_admin_command(self):
        event = decode_line(slow_query_line(ns="shop.$cmd", command={"createIndexes": "orders"}))
        assert event.operation == "command"
        assert event.namespace == "shop.$cmd"

    def test_extended_json_numbers(self):
        event = decode_line(slow_query_line(extra_attr={"durationMillis": {"$numberLong": "4500"}}))
        assert event.duration_ms == 4500

    def test_non_finite_numbers_are_missing(self):
        event = decode_line(slow_query_line(extra_attr={"durationMillis": {"$numberDouble": "Infinity"}}))
        assert event.duration_ms is None
        event = decode_line(slow_query_line(keys=float("nan")))
        assert event.keys_examined is None

    def test_storage_and_planner_fields(self):
        event = decode_line(
            slow_query_line(
                extra_attr={
                    "storage": {"data": {"bytesRead": 2048, "bytesWritten": 16}},
                    "planningTimeMicros": 350,
                    "replanned": True,
                    "replanReason": "cached plan was less efficient",
                    "fromMultiPlanner": True,
                }
            )
        )
        assert event.storage_bytes_read == 2048
        assert event.storage_bytes_written == 16
        assert event.planning_time_micros == 350
        assert event.replanned is True
        assert event.replan_reason == "cached plan was less efficient"
        assert event.from_multi_planner is True

    def test_transaction(self):
        event = decode_line(transaction_line(retry=2, termination="aborted"))
        assert event.namespace == ""
        assert event.operation == "transaction"
        assert event.duration_ms == 40
        assert event.transaction.retry_counter == 2
        assert event.transaction.termination_cause == "aborted"
        assert event.transaction.commit_duration_micros == 2000

    def test_client_metadata(self):
        event = decode_line(client_metadata_line())
        assert event.operation == "clientMetadata"
        assert event.driver.name == "nodejs"
        assert event.driver.version == "6.3.0"
        assert event.driver.compressors == ("snappy", "zstd")
        assert event.driver.os_type == "Linux"
        assert event.driver.platform == "x86_64"
        assert event.driver.host == "10.0.0.5"

    def test_index_build(self):
        entry = {
            "c": "INDEX",
            "msg": "Index build: done building",
            "attr": {"namespace": "shop.orders", "durationMillis": 900},
        }
        event = decode_entry(entry)
        assert event.namespace == "shop.orders"
        assert event.operation == "command"
        assert event.duration_ms == 900

    def test_ttl_deletes(self):
        entry = {
            "c": "INDEX",
            "msg": "Deleted expired documents using index",
            "attr": {"namespace": "shop.sessions", "numDeleted": 12, "durationMillis": 3},
        }
        event = decode_entry(entry)
        assert event.operation == "remove"
        assert event.docs_returned == 12

    def test_query_error(self):
        line = slow_query_line(
            command={"insert": "orders"},
            extra_attr={"error": {"code": 11000, "codeName": "DuplicateKey", "errmsg": "E11000"}},
        )
        event = decode_line(line)
        assert event.operation == "insert"
        assert event.error_code == 11000
        assert event.error_code_name == "DuplicateKey"
        assert event.error_message == "E11000"

    def test_client_disconnect_without_namespace(self):
        entry = {
            "c": "COMMAND",
            "msg": "Interrupted operation as its client disconnected",
            "attr": {"opId": 77},
        }
        event = decode_entry(entry)
        assert event.operation == "error"
        assert event.namespace == ""
        assert event.error_code_name == CLIENT_DISCONNECT_CODE
        assert "opId: 77" in event.error_message

    def test_irrelevant_lines(self):
        assert decode_line("plain text") is None
        assert decode_line(json.dumps({"msg": "Connection accepted", "attr": {"remote": "x"}})) is None
        assert decode_line(json.dumps({"msg": "no attr"})) is None

    def test_malformed_json_raises(self):
        with pytest.raises(ValueError):
            decode_line("{broken")


class TestParseLogFile:
    def test_counts_and_batches(self, log_file):
        stats = ParseStats()
        batches = list(parse_log_file(log_file, batch_size=3, stats=stats))
        assert [len(batch) for batch in batches] == [3, 3, 2]
        assert stats.as_dict() == {"lines": 10, "decoded": 8, "skipped": 1, "malformed": 1}

    def test_records_keep_raw_text_and_line_numbers(self, log_file):
        records = list(iter_events(log_file))
        assert records[0].line_number == 1
        assert json.loads(records[0].raw_text)["msg"] == "Slow query"
        assert not records[0].raw_text.endswith("\n")

    def test_limit_caps_lines(self, log_file):
        stats = ParseStats()
        records = [r for batch in parse_log_file(log_file, limit=2, stats=stats) for r in batch.records]
        assert len(records) == 2
        assert stats.lines == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list(parse_log_file(tmp_path / "missing.log"))

    def test_empty_file(self, tmp_path):
        path = write_lines(tmp_path / "empty.log", [])
        stats = ParseStats()
        assert list(parse_log_file(path, stats=stats)) == []
        assert stats.decoded == 0

    def test_bad_values_do_not_abort_the_file(self, tmp_path):
        deep = '{"msg":"Slow query","attr":' + "[" * 100000 + "]" * 100000 + "}"
        path = write_lines(
            tmp_path / "odd.log",
            [
                slow_query_line(duration=10),
                slow_query_line(duration=float("inf")),
                deep,
                slow_query_line(duration=30),
            ],
        )
        stats = ParseStats()
        records = [r for batch in parse_log_file(path, stats=stats) for r in batch.records]
        assert [r.event.duration_ms for r in records] == [10, None, 30]
        assert "Infinity" in records[1].raw_text
        assert stats.malformed == 1
        assert stats.decoded == 3
