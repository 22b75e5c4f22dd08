"""High-level orchestration of a two-pass aggregation run."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config import AggregationSettings, settings
from ..core.engine import AggregationEngine, AggregationReport
from ..report.manifest import MANIFEST_NAME, append_manifest_entry
from ..report.parquet_writer import write_report
from ..runtime import status as status_tracker
from ..utils.concurrency import create_thread_pool
from ..utils.logging_utils import get_logger
from ..utils.timing import accumulate_into, timed
from .parser import ParsedRecord, ParseStats, parse_log_file

LOGGER = get_logger("ingest.pipeline")


@dataclass
class RunResult:
    report: AggregationReport
    parse_stats: Dict[str, ParseStats] = field(default_factory=dict)
    timings: Dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "parse_stats": {path: stats.as_dict() for path, stats in self.parse_stats.items()},
            "timings": dict(self.timings),
            "warnings": list(self.report.warnings),
            "stats": dict(self.report.stats),
        }


def _resolve_inputs(paths: Sequence[Path]) -> List[Path]:
    resolved: List[Path] = []
    for raw in paths:
        path = Path(raw)
        if not path.exists():
            raise FileNotFoundError(path)
        resolved.append(path)
    return resolved


def _run_pass(
    paths: List[Path],
    handler: Callable[[ParsedRecord], None],
    *,
    workers: Optional[int],
    limit: Optional[int],
    batch_size: int,
) -> Dict[str, ParseStats]:
    """Feed every decoded record of every file to *handler*, one task per file."""

    def consume(path: Path) -> ParseStats:
        stats = ParseStats()
        for batch in parse_log_file(path, batch_size=batch_size, limit=limit, stats=stats):
            for record in batch.records:
                handler(record)
        return stats

    results: Dict[str, ParseStats] = {}
    with create_thread_pool(workers) as pool:
        futures = {pool.submit(consume, path): path for path in paths}
        for future, path in futures.items():
            results[str(path)] = future.result()
    return results


def aggregate_files(
    paths: Sequence[Path],
    *,
    config: Optional[AggregationSettings] = None,
    workers: Optional[int] = None,
    limit: Optional[int] = None,
    batch_size: int = 1000,
) -> RunResult:
    """Run the census pass and the aggregation pass over *paths*."""

    inputs = _resolve_inputs(paths)
    engine = AggregationEngine(config or settings.aggregation())
    pool_size = workers if workers is not None else settings.workers
    timings: Dict[str, float] = {}
    sink = accumulate_into(timings)

    status_tracker.run_phase("census", detail="counting driver keys")
    with timed("census_seconds", sink):
        _run_pass(
            inputs,
            lambda record: engine.census(record.event),
            workers=pool_size,
            limit=limit,
            batch_size=batch_size,
        )
        engine.finish_census()

    status_tracker.run_phase("aggregating", detail="merging events into tables")
    with timed("aggregate_seconds", sink):
        parse_stats = _run_pass(
            inputs,
            lambda record: engine.submit(record.event, record.raw_text),
            workers=pool_size,
            limit=limit,
            batch_size=batch_size,
        )

    with timed("finalize_seconds", sink):
        report = engine.finalize()

    for stats in parse_stats.values():
        report.stats["lines"] = report.stats.get("lines", 0) + stats.lines
        report.stats["malformed_lines"] = report.stats.get("malformed_lines", 0) + stats.malformed

    return RunResult(report=report, parse_stats=parse_stats, timings=timings)


def export_report(
    report: AggregationReport,
    *,
    output_root: Path,
    sources: Sequence[Path],
    compression: Optional[str] = None,
) -> Dict[str, Any]:
    """Persist *report* as Parquet tables plus a manifest entry."""

    root = Path(output_root)
    codec = compression or settings.parquet_compression
    tables = write_report(report, root / "reports", compression=codec)
    manifest_info = append_manifest_entry(
        root / MANIFEST_NAME,
        report_version=settings.report_version,
        source_files=sources,
        row_counts={name: info.get("rows_written", 0) for name, info in tables.items()},
        artifacts={name: info.get("path", "") for name, info in tables.items()},
        warnings=report.warnings,
        stats=report.stats,
    )
    return {"tables": tables, "manifest": manifest_info}


def analyze_logs(
    paths: Sequence[Path],
    *,
    output_root: Optional[Path] = None,
    config: Optional[AggregationSettings] = None,
    workers: Optional[int] = None,
    limit: Optional[int] = None,
    compression: Optional[str] = None,
) -> Dict[str, Any]:
    """Aggregate MongoDB log files and export the report."""

    inputs = [Path(path) for path in paths]
    root = Path(output_root) if output_root is not None else settings.output_root

    LOGGER.info("Starting analysis of %d file(s) into %s", len(inputs), root)
    status_tracker.run_started(inputs)
    overall_start = time.perf_counter()
    try:
        result = aggregate_files(inputs, config=config, workers=workers, limit=limit)

        status_tracker.run_phase("exporting", detail="writing Parquet reports")
        sink = accumulate_into(result.timings)
        with timed("export_seconds", sink):
            exported = export_report(
                result.report,
                output_root=root,
                sources=inputs,
                compression=compression,
            )

        duration = time.perf_counter() - overall_start
        row_counts = {
            name: info.get("rows_written", 0) for name, info in exported["tables"].items()
        }
        status_tracker.run_finished(
            duration_seconds=duration,
            row_counts=row_counts,
            timings=result.timings,
            warnings=result.report.warnings,
        )
        for warning in result.report.warnings:
            LOGGER.warning("Report warning: %s", warning)
        LOGGER.info(
            "Analysis complete: %s in %.2fs",
            ", ".join(f"{name}={count}" for name, count in row_counts.items()),
            duration,
        )

        telemetry = result.as_dict()
        telemetry.update(exported)
        telemetry["output_root"] = str(root)
        telemetry["duration_seconds"] = duration
        return telemetry
    except Exception as exc:
        duration = time.perf_counter() - overall_start
        status_tracker.run_failed(str(exc), duration_seconds=duration)
        LOGGER.exception("Analysis failed")
        raise
