"""Field-name tables driving the trim and redaction passes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet

PRESERVE_FIELDS = frozenset(
    {
        # Namespace and operation
        "ns", "namespace", "collection", "database",
        # Performance metrics
        "durationMillis", "planSummary", "queryHash", "planCacheKey",
        "keysExamined", "docsExamined", "nreturned", "nModified", "nDeleted", "nInserted",
        "executionTimeMillis", "totalTime", "cpuNanos", "reslen",
        "timeReadingMicros", "bytesRead", "limit", "skip",
        "workingMillis", "maxTimeMS", "remoteOpWaitMillis",
        # Index and plan
        "indexName", "direction", "stage", "inputStage", "rejectedPlans", "winningPlan",
        # Sharding
        "nShards", "shardName", "shardVersion",
        # Errors
        "code", "codeName", "ok", "errmsg", "errCode", "errMsg", "errName",
        # Transactions
        "txnNumber", "autocommit", "startTransaction",
        # Log envelope
        "component", "severity", "id", "msg", "attr", "t", "c", "s", "ctx",
        "$date", "$timestamp", "$oid",
        # Client and connection
        "collation", "locale", "clientOperationKey", "$uuid", "$client", "$readPreference", "mode",
        "mongos", "host", "client", "driver", "os", "platform",
        # Read and write concern
        "readConcern", "provenance", "level",
        "writeConcern", "w", "j", "wtimeout", "fsync",
        # Storage
        "storage", "data",
        "$sortKey", "$meta",
        "i", "e", "v",
    }
)

TRIM_FIELDS = frozenset(
    {
        "advanced", "bypassDocumentValidation", "databaseVersion", "flowControl",
        "fromMultiPlanner", "let", "maxTimeMSOpOnly", "mayBypassWriteBlocking",
        "multiKeyPaths", "needTime", "planningTimeMicros", "runtimeConstants",
        "totalOplogSlotDurationMicros", "waitForWriteConcernDurationMillis", "works",
        "shardVersion", "clientOperationKey", "lsid", "$clusterTime", "$configTime", "$topologyTime",
    }
)

PRESERVE_TEXT_FIELDS = frozenset({"ns", "planSummary", "namespace"})

PRESERVE_ARRAY_FIELDS = frozenset({"pipeline", "$and", "$or"})

QUERY_VERBS = frozenset(
    {"filter", "command", "find", "aggregate", "update", "delete", "insert", "pipeline"}
)


@dataclass(frozen=True)
class FieldClassification:
    """Immutable classification tables for :class:`FieldTransformer`."""

    preserve: FrozenSet[str] = PRESERVE_FIELDS
    trim: FrozenSet[str] = TRIM_FIELDS
    preserve_text: FrozenSet[str] = PRESERVE_TEXT_FIELDS
    preserve_array: FrozenSet[str] = PRESERVE_ARRAY_FIELDS
    query_verbs: FrozenSet[str] = QUERY_VERBS
    attributes_field: str = "attr"
    operator_prefix: str = "$"
    string_limit: int = 35
    array_limit: int = 3

    def is_query_field(self, name: str) -> bool:
        return name in self.query_verbs or name.startswith(self.operator_prefix)


DEFAULT_CLASSIFICATION = FieldClassification()
