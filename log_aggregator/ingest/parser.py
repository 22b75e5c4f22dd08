"""Decode MongoDB structured log lines into :class:`LogEvent` values."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ..core.events import DriverInfo, LogEvent, TransactionInfo
from ..utils.logging_utils import get_logger

LOGGER = get_logger("ingest.parser")

CLIENT_DISCONNECT_MSG = "Interrupted operation as its client disconnected"
CLIENT_DISCONNECT_CODE = "InterruptedByClientDisconnect"
CLIENT_METADATA_MSG = "client metadata"

OP_TRANSACTION = "transaction"
OP_CLIENT_METADATA = "clientMetadata"
OP_ERROR = "error"

# Command name -> operation kind; collection taken from the command value.
_COMMAND_OPERATIONS = (
    ("find", "find"),
    ("aggregate", "aggregate"),
    ("findAndModify", "findAndModify"),
    ("update", "update"),
    ("insert", "insert"),
    ("delete", "remove"),
    ("getMore", "getmore"),
    ("count", "count"),
    ("distinct", "distinct"),
)

_ADMIN_COMMANDS = frozenset(
    {
        "drop", "dropDatabase", "dropIndexes", "createIndexes", "collMod", "renameCollection",
        "validate", "compact", "reIndex", "explain", "currentOp", "killOp", "fsync", "eval",
        "listCollections", "planCacheClear", "configureFailPoint", "killCursors",
        "abortTransaction", "commitTransaction", "startTransaction",
    }
)

_WRITE_TYPES = {
    "update": "update_w",
    "remove": "remove",
    "delete": "remove",
    "insert": "insert",
}


# ---------------------------------------------------------------------------
# Batches


@dataclass
class ParsedRecord:
    """A decoded event with the raw line it came from."""

    event: LogEvent
    raw_text: str
    line_number: int


@dataclass
class ParseStats:
    lines: int = 0
    decoded: int = 0
    skipped: int = 0
    malformed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "lines": self.lines,
            "decoded": self.decoded,
            "skipped": self.skipped,
            "malformed": self.malformed,
        }


@dataclass
class ParsedBatch:
    """Container for a chunk of decoded events."""

    records: List[ParsedRecord] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.records

    def __len__(self) -> int:
        return len(self.records)


# ---------------------------------------------------------------------------
# Field helpers


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        # Extended JSON numbers: {"$numberLong": "123"}
        for wrapper in ("$numberLong", "$numberInt", "$numberDouble"):
            if wrapper in value:
                return _as_int(value[wrapper])
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    return None


def _compact(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, separators=(",", ":"))


def _timestamp(entry: Dict[str, Any]) -> Optional[str]:
    raw = entry.get("t")
    if isinstance(raw, dict):
        return _as_str(raw.get("$date"))
    return _as_str(raw)


def _remote_host(remote: Any) -> Optional[str]:
    if not isinstance(remote, str) or not remote:
        return None
    host, _, _ = remote.rpartition(":")
    return host or remote


def _read_preference(command: Dict[str, Any]) -> Optional[str]:
    pref = command.get("$readPreference")
    if pref is None:
        return None
    return _compact(pref)


def _sanitized_filter(attr: Dict[str, Any], command: Dict[str, Any]) -> Optional[str]:
    for name in ("filter", "q"):
        candidate = command.get(name)
        if isinstance(candidate, dict):
            return _compact(candidate)

    pipeline = command.get("pipeline")
    if isinstance(pipeline, list):
        for stage in pipeline:
            if isinstance(stage, dict) and isinstance(stage.get("$match"), dict):
                return _compact(stage["$match"])

    originating = attr.get("originatingCommand")
    if isinstance(originating, dict) and isinstance(originating.get("filter"), dict):
        return _compact(originating["filter"])
    return None


def _storage_bytes(attr: Dict[str, Any], name: str) -> Optional[int]:
    storage = attr.get("storage")
    if not isinstance(storage, dict):
        return None
    if name in storage:
        return _as_int(storage[name])
    data = storage.get("data")
    if isinstance(data, dict) and name in data:
        return _as_int(data[name])
    return None


def _docs_returned(attr: Dict[str, Any]) -> Optional[int]:
    # Writes report their affected-document counts in place of nreturned.
    for name in ("ninserted", "ndeleted", "nModified", "nUpserted", "nreturned", "numDeleted"):
        if name in attr:
            value = _as_int(attr[name])
            if value is not None:
                return value
    return None


def _error_fields(entry: Dict[str, Any], attr: Dict[str, Any]) -> Dict[str, Any]:
    error = attr.get("error")
    if isinstance(error, dict) and error.get("codeName"):
        return {
            "error_code_name": _as_str(error.get("codeName")),
            "error_code": _as_int(error.get("code")),
            "error_message": _as_str(error.get("errmsg")),
        }
    if entry.get("msg") == CLIENT_DISCONNECT_MSG:
        message = CLIENT_DISCONNECT_MSG
        if "opId" in attr:
            message = f"{message} (opId: {attr['opId']})"
        return {"error_code_name": CLIENT_DISCONNECT_CODE, "error_message": message}
    return {}


def _command_operation(command: Dict[str, Any], namespace: str) -> Optional[tuple]:
    database = namespace.split(".", 1)[0]
    for command_name, operation in _COMMAND_OPERATIONS:
        if command_name not in command:
            continue
        target = command.get("collection") if command_name == "getMore" else command[command_name]
        if isinstance(target, str) and target:
            namespace = f"{database}.{target}"
        return operation, namespace

    for name in command:
        if name.startswith("_shardsv") or name in _ADMIN_COMMANDS:
            return "command", namespace
    return None


# ---------------------------------------------------------------------------
# Line decoding


def _operation_fields(attr: Dict[str, Any]) -> Dict[str, Any]:
    command = attr.get("command") if isinstance(attr.get("command"), dict) else {}
    return {
        "duration_ms": _as_int(attr.get("durationMillis")),
        "keys_examined": _as_int(attr.get("keysExamined")),
        "docs_examined": _as_int(attr.get("docsExamined")),
        "docs_returned": _docs_returned(attr),
        "response_length": _as_int(attr.get("reslen")),
        "storage_bytes_read": _storage_bytes(attr, "bytesRead"),
        "storage_bytes_written": _storage_bytes(attr, "bytesWritten"),
        "shard_count": _as_int(attr.get("nShards")),
        "query_hash": _as_str(attr.get("queryHash")),
        "plan_cache_key": _as_str(attr.get("planCacheKey")),
        "plan_summary": _as_str(attr.get("planSummary")),
        "planning_time_micros": _as_int(attr.get("planningTimeMicros")),
        "replanned": _as_bool(attr.get("replanned")),
        "replan_reason": _as_str(attr.get("replanReason")),
        "from_multi_planner": _as_bool(attr.get("fromMultiPlanner")),
        "read_preference": _read_preference(command) or _read_preference(
            attr.get("originatingCommand") if isinstance(attr.get("originatingCommand"), dict) else {}
        ),
        "sanitized_filter": _sanitized_filter(attr, command),
    }


def _decode_index(entry: Dict[str, Any], attr: Dict[str, Any]) -> Optional[LogEvent]:
    namespace = attr.get("namespace")
    if not isinstance(namespace, str) or not namespace:
        return None
    message = attr.get("msg") or entry.get("msg") or ""
    if "Deleted expired documents" in message:
        operation = "remove"
    else:
        operation = "command"
    return LogEvent(
        namespace=namespace,
        operation=operation,
        duration_ms=_as_int(attr.get("durationMillis")),
        docs_returned=_as_int(attr.get("numDeleted")),
        component=_as_str(entry.get("c")),
        timestamp=_timestamp(entry),
    )


def _decode_transaction(entry: Dict[str, Any], attr: Dict[str, Any]) -> Optional[LogEvent]:
    parameters = attr.get("parameters") if isinstance(attr.get("parameters"), dict) else {}
    txn = TransactionInfo(
        retry_counter=_as_int(parameters.get("txnRetryCounter")),
        termination_cause=_as_str(attr.get("terminationCause")),
        commit_type=_as_str(attr.get("commitType")),
        commit_duration_micros=_as_int(attr.get("commitDurationMicros")),
        time_active_micros=_as_int(attr.get("timeActiveMicros")),
        time_inactive_micros=_as_int(attr.get("timeInactiveMicros")),
    )
    duration = _as_int(attr.get("durationMillis"))
    if not txn.is_meaningful() and duration is None:
        return None
    return LogEvent(
        namespace="",
        operation=OP_TRANSACTION,
        duration_ms=duration,
        transaction=txn,
        component=_as_str(entry.get("c")),
        timestamp=_timestamp(entry),
    )


def _decode_client_metadata(entry: Dict[str, Any], attr: Dict[str, Any]) -> Optional[LogEvent]:
    doc = attr.get("doc")
    if not isinstance(doc, dict):
        return None
    driver = doc.get("driver") if isinstance(doc.get("driver"), dict) else {}
    os_info = doc.get("os") if isinstance(doc.get("os"), dict) else {}
    mongos = doc.get("mongos") if isinstance(doc.get("mongos"), dict) else {}
    compressors = attr.get("negotiatedCompressors")
    if not isinstance(compressors, list):
        compressors = []
    info = DriverInfo(
        name=_as_str(driver.get("name")),
        version=_as_str(driver.get("version")),
        compressors=tuple(sorted({str(item) for item in compressors if item})),
        os_type=_as_str(os_info.get("type")),
        os_name=_as_str(os_info.get("name")),
        platform=_as_str(os_info.get("architecture")),
        server_version=_as_str(mongos.get("version")),
        host=_remote_host(attr.get("remote")),
    )
    return LogEvent(
        namespace="",
        operation=OP_CLIENT_METADATA,
        driver=info,
        component=_as_str(entry.get("c")),
        timestamp=_timestamp(entry),
    )


def decode_entry(entry: Dict[str, Any]) -> Optional[LogEvent]:
    """Map one parsed log document to an event, or ``None`` when irrelevant."""

    attr = entry.get("attr")
    if not isinstance(attr, dict):
        return None

    component = entry.get("c")
    message = entry.get("msg")

    if component == "INDEX":
        event = _decode_index(entry, attr)
        if event is not None:
            return event

    if component == "TXN" and message == "transaction":
        return _decode_transaction(entry, attr)

    if message == CLIENT_METADATA_MSG:
        return _decode_client_metadata(entry, attr)

    errors = _error_fields(entry, attr)
    namespace = attr.get("ns") if isinstance(attr.get("ns"), str) else None
    operation_namespace = None

    if isinstance(attr.get("command"), dict) and namespace:
        resolved = _command_operation(attr["command"], namespace)
        if resolved is not None:
            operation, operation_namespace = resolved
    elif isinstance(attr.get("type"), str) and namespace:
        operation = _WRITE_TYPES.get(attr["type"], "command")
        operation_namespace = namespace

    if operation_namespace is not None:
        return LogEvent(
            namespace=operation_namespace,
            operation=operation,
            component=_as_str(component),
            timestamp=_timestamp(entry),
            **_operation_fields(attr),
            **errors,
        )

    if errors:
        return LogEvent(
            namespace="",
            operation=OP_ERROR,
            component=_as_str(component),
            timestamp=_timestamp(entry),
            **errors,
        )
    return None


def decode_line(line: str) -> Optional[LogEvent]:
    """Decode a single JSON log line; returns ``None`` for anything else."""

    stripped = line.strip()
    if not stripped.startswith("{"):
        return None
    entry = json.loads(stripped)
    if not isinstance(entry, dict):
        return None
    return decode_entry(entry)


# ---------------------------------------------------------------------------
# Public parsing API


def parse_log_file(
    filepath: Path,
    *,
    batch_size: int = 1000,
    limit: Optional[int] = None,
    stats: Optional[ParseStats] = None,
) -> Iterator[ParsedBatch]:
    """Parse *filepath* yielding batches of decoded events.

    ``limit`` caps the number of lines read. Undecodable lines are counted in
    *stats* and skipped.
    """

    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(path)
    stats = stats if stats is not None else ParseStats()
    batch = ParsedBatch()
    batch_index = 0
    start_time = time.perf_counter()

    with path.open("r", encoding="utf-8", errors="ignore") as handle:
        for line_number, line in enumerate(handle, start=1):
            if limit is not None and line_number > limit:
                break
            stats.lines += 1

            try:
                event = decode_line(line)
            except (ValueError, TypeError, OverflowError, RecursionError):
                stats.malformed += 1
                LOGGER.debug("Skipping unparsable line %s:%d", path, line_number)
                continue

            if event is None:
                stats.skipped += 1
                continue

            stats.decoded += 1
            batch.records.append(ParsedRecord(event, line.rstrip("\r\n"), line_number))
            if len(batch) >= batch_size:
                batch_index += 1
                yield batch
                batch = ParsedBatch()

    if not batch.is_empty():
        batch_index += 1
        yield batch

    LOGGER.info(
        "Parsed %s: lines=%d decoded=%d skipped=%d malformed=%d batches=%d in %.2fs",
        path,
        stats.lines,
        stats.decoded,
        stats.skipped,
        stats.malformed,
        batch_index,
        time.perf_counter() - start_time,
    )


def iter_events(filepath: Path, *, limit: Optional[int] = None) -> Iterator[ParsedRecord]:
    for batch in parse_log_file(filepath, limit=limit):
        yield from batch.records
