"""Runtime status helpers for aggregation runs."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterable, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


_LOCK = Lock()
_STATE: Dict[str, Any] = {
    "current_run": None,
    "last_run": None,
    "recent_runs": [],
}


def run_started(inputs: Iterable[Any]) -> None:
    """Mark the beginning of a run over *inputs*."""

    now = _now_iso()
    with _LOCK:
        _STATE["current_run"] = {
            "files": [str(path) for path in inputs],
            "phase": "starting",
            "started_at": now,
            "updated_at": now,
            "metrics": {},
        }


def run_phase(
    phase: str,
    *,
    detail: Optional[str] = None,
    metrics: Optional[Dict[str, Any]] = None,
) -> None:
    """Update the active run with a new *phase* and optional metrics."""

    now = _now_iso()
    with _LOCK:
        current = _STATE.get("current_run")
        if current is None:
            current = {"files": [], "started_at": now, "metrics": {}}
            _STATE["current_run"] = current
        current["phase"] = phase
        current["updated_at"] = now
        if detail is not None:
            current["detail"] = detail
        if metrics:
            current.setdefault("metrics", {}).update(metrics)


def run_finished(
    *,
    duration_seconds: float,
    row_counts: Dict[str, int],
    timings: Dict[str, float],
    warnings: Optional[Iterable[str]] = None,
) -> None:
    """Record completion of the current run."""

    now = _now_iso()
    with _LOCK:
        current = _STATE.get("current_run") or {}
        summary = {
            "files": list(current.get("files", [])),
            "completed_at": now,
            "success": True,
            "duration_seconds": duration_seconds,
            "row_counts": dict(row_counts),
            "timings": dict(timings),
            "warnings": list(warnings or []),
        }
        _STATE["last_run"] = summary
        _STATE["current_run"] = None
        recent = _STATE.setdefault("recent_runs", [])
        recent.append(summary)
        if len(recent) > 10:
            del recent[:-10]


def run_failed(error: str, *, duration_seconds: Optional[float] = None) -> None:
    """Capture failure details and clear the active run."""

    now = _now_iso()
    with _LOCK:
        current = _STATE.get("current_run") or {}
        summary = {
            "files": list(current.get("files", [])),
            "completed_at": now,
            "success": False,
            "error": error,
        }
        if duration_seconds is not None:
            summary["duration_seconds"] = duration_seconds
        _STATE["last_run"] = summary
        _STATE["current_run"] = None


def get_status() -> Dict[str, Any]:
    """Return a snapshot of the current processing status."""

    with _LOCK:
        return copy.deepcopy(_STATE)


def reset() -> None:
    with _LOCK:
        _STATE["current_run"] = None
        _STATE["last_run"] = None
        _STATE["recent_runs"] = []
