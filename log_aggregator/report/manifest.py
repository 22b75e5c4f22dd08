"""Manifest helpers for exported reports."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from ..utils.logging_utils import get_logger

LOGGER = get_logger("report.manifest")

MANIFEST_NAME = "manifest.json"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_manifest(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except json.JSONDecodeError:
        LOGGER.warning("Manifest at %s is corrupt; starting fresh", path)
        return None


def append_manifest_entry(
    path: Path,
    *,
    report_version: int,
    source_files: Iterable[Path],
    row_counts: Dict[str, int],
    artifacts: Dict[str, str],
    warnings: Iterable[str] = (),
    stats: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    manifest = load_manifest(path)
    now = _now()

    if manifest is None:
        manifest = {
            "report_version": report_version,
            "created_at": now,
            "runs": [],
        }

    manifest["report_version"] = report_version
    manifest["updated_at"] = now

    run_entry = {
        "run_id": len(manifest["runs"]) + 1,
        "created_at": now,
        "source_files": [str(source) for source in source_files],
        "row_counts": row_counts,
        "artifacts": artifacts,
        "warnings": list(warnings),
        "stats": dict(stats or {}),
    }
    manifest["runs"].append(run_entry)

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(manifest, handle, indent=2)

    LOGGER.info("Updated manifest at %s with run #%d", path, run_entry["run_id"])
    return {"path": str(path), "run_id": run_entry["run_id"]}


def latest_run(path: Path) -> Optional[Dict[str, Any]]:
    manifest = load_manifest(path)
    if not manifest or not manifest.get("runs"):
        return None
    return manifest["runs"][-1]
