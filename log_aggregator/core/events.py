"""Normalized log events consumed by the aggregation core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class DriverInfo:
    """Client identity reported in a connection's metadata document."""

    name: Optional[str] = None
    version: Optional[str] = None
    compressors: Tuple[str, ...] = ()
    os_type: Optional[str] = None
    os_name: Optional[str] = None
    platform: Optional[str] = None
    server_version: Optional[str] = None
    host: Optional[str] = None

    def is_internal(self) -> bool:
        """True for the server's own intra-cluster clients."""

        if not self.name:
            return False
        return self.name.startswith("NetworkInterface") or self.name == "MongoDB Internal Client"


@dataclass(frozen=True)
class TransactionInfo:
    """Timings and outcome of a completed multi-document transaction."""

    retry_counter: Optional[int] = None
    termination_cause: Optional[str] = None
    commit_type: Optional[str] = None
    commit_duration_micros: Optional[int] = None
    time_active_micros: Optional[int] = None
    time_inactive_micros: Optional[int] = None

    def is_meaningful(self) -> bool:
        return any(
            value is not None
            for value in (self.retry_counter, self.termination_cause, self.commit_type)
        )


@dataclass(frozen=True)
class LogEvent:
    """One decoded server operation.

    Only ``namespace`` and ``operation`` are always present. Every other field is
    ``None`` when the operation does not report it; ``None`` never means zero.
    """

    namespace: str
    operation: str
    duration_ms: Optional[int] = None
    keys_examined: Optional[int] = None
    docs_examined: Optional[int] = None
    docs_returned: Optional[int] = None
    response_length: Optional[int] = None
    storage_bytes_read: Optional[int] = None
    storage_bytes_written: Optional[int] = None
    shard_count: Optional[int] = None
    query_hash: Optional[str] = None
    plan_cache_key: Optional[str] = None
    plan_summary: Optional[str] = None
    planning_time_micros: Optional[int] = None
    replanned: Optional[bool] = None
    replan_reason: Optional[str] = None
    from_multi_planner: Optional[bool] = None
    read_preference: Optional[str] = None
    sanitized_filter: Optional[str] = None
    error_code: Optional[int] = None
    error_code_name: Optional[str] = None
    error_message: Optional[str] = None
    transaction: Optional[TransactionInfo] = None
    driver: Optional[DriverInfo] = None
    component: Optional[str] = None
    timestamp: Optional[str] = None

