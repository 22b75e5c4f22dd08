"""Composite keys for the aggregate tables."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional, Tuple, Union


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class NamespaceKey:
    namespace: str
    operation: str

    def sort_fields(self) -> Tuple[str, ...]:
        return (_text(self.namespace), _text(self.operation))


@dataclass(frozen=True)
class QueryHashKey:
    query_hash: str
    namespace: str
    operation: str

    def sort_fields(self) -> Tuple[str, ...]:
        return (_text(self.namespace), _text(self.operation), _text(self.query_hash))


@dataclass(frozen=True)
class PlanCacheKey:
    namespace: str
    operation: str
    query_hash: Optional[str]
    plan_summary: str
    plan_cache_key: Optional[str] = None

    def sort_fields(self) -> Tuple[str, ...]:
        return (
            _text(self.namespace),
            _text(self.operation),
            _text(self.query_hash),
            _text(self.plan_summary),
            _text(self.plan_cache_key),
        )


@dataclass(frozen=True)
class IndexUsageKey:
    """Plan choice per namespace; collection scans show up as ``COLLSCAN``."""

    namespace: str
    plan_summary: str

    @property
    def is_collection_scan(self) -> bool:
        return "COLLSCAN" in self.plan_summary

    def sort_fields(self) -> Tuple[str, ...]:
        return (_text(self.namespace), _text(self.plan_summary))


@dataclass(frozen=True)
class ErrorCodeKey:
    """Errors group by code name, falling back to the numeric code."""

    code: str

    def sort_fields(self) -> Tuple[str, ...]:
        return (_text(self.code),)


@dataclass(frozen=True)
class TransactionKey:
    retry_counter: Optional[int]
    termination_cause: Optional[str]
    commit_type: Optional[str]

    def descriptor(self) -> str:
        return "|".join(
            "null" if value is None else str(value)
            for value in (self.retry_counter, self.termination_cause, self.commit_type)
        )

    def sort_fields(self) -> Tuple[str, ...]:
        return (
            _text(self.termination_cause),
            _text(self.commit_type),
            _text(self.retry_counter),
        )


@dataclass(frozen=True)
class DriverKey:
    driver_name: Optional[str]
    driver_version: Optional[str]
    compressors: str
    os_type: Optional[str]
    platform: Optional[str]
    server_version: Optional[str]

    def sort_fields(self) -> Tuple[str, ...]:
        return (
            _text(self.driver_name),
            _text(self.driver_version),
            _text(self.compressors),
            _text(self.os_type),
            _text(self.platform),
            _text(self.server_version),
        )


@dataclass(frozen=True)
class OverflowKey:
    """Sentinel grouping every key the two-pass census deemed insignificant."""

    label: str = "<other>"

    def sort_fields(self) -> Tuple[str, ...]:
        # Sorts after every real key that shares its count.
        return ("\uffff", self.label)


OVERFLOW_KEY = OverflowKey()

AggregateKey = Union[
    NamespaceKey,
    QueryHashKey,
    PlanCacheKey,
    IndexUsageKey,
    ErrorCodeKey,
    TransactionKey,
    DriverKey,
    OverflowKey,
]


def key_as_dict(key: AggregateKey) -> dict:
    """Flatten a key into report columns."""

    if isinstance(key, OverflowKey):
        return {"overflow": True, "label": key.label}
    if isinstance(key, IndexUsageKey):
        return {
            "namespace": key.namespace,
            "plan_summary": key.plan_summary,
            "collection_scan": key.is_collection_scan,
        }
    if isinstance(key, TransactionKey):
        return {
            "txn_retry_counter": key.retry_counter,
            "termination_cause": key.termination_cause,
            "commit_type": key.commit_type,
            "descriptor": key.descriptor(),
        }
    return asdict(key)


# ---------------------------------------------------------------------------
# Key extraction from events


def namespace_key(event) -> NamespaceKey:
    return NamespaceKey(event.namespace, event.operation)


def query_hash_key(event) -> Optional[QueryHashKey]:
    if not event.query_hash:
        return None
    return QueryHashKey(event.query_hash, event.namespace, event.operation)


def plan_cache_key(event) -> Optional[PlanCacheKey]:
    if not event.plan_cache_key:
        return None
    return PlanCacheKey(
        namespace=event.namespace,
        operation=event.operation,
        query_hash=event.query_hash,
        plan_summary=event.plan_summary or "UNKNOWN",
        plan_cache_key=event.plan_cache_key,
    )


def index_usage_key(event) -> Optional[IndexUsageKey]:
    if not event.namespace or not event.plan_summary:
        return None
    return IndexUsageKey(event.namespace, event.plan_summary)


def error_code_key(event) -> Optional[ErrorCodeKey]:
    if event.error_code_name:
        return ErrorCodeKey(event.error_code_name)
    if event.error_code is not None:
        return ErrorCodeKey(str(event.error_code))
    return None


def transaction_key(event) -> Optional[TransactionKey]:
    txn = event.transaction
    if txn is None or not txn.is_meaningful():
        return None
    return TransactionKey(txn.retry_counter, txn.termination_cause, txn.commit_type)


def driver_key(event) -> Optional[DriverKey]:
    driver = event.driver
    if driver is None or driver.is_internal():
        return None
    compressors = ",".join(sorted(driver.compressors)) if driver.compressors else "none"
    return DriverKey(
        driver_name=driver.name,
        driver_version=driver.version,
        compressors=compressors,
        os_type=driver.os_type,
        platform=driver.platform,
        server_version=driver.server_version,
    )
