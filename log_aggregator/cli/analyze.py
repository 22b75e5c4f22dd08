"""Command-line front end for the log aggregator."""

from __future__ import annotations

import argparse
import shutil
from pathlib import Path
from typing import Any, Dict

from ..config import SIGNIFICANCE_THRESHOLD, SIGNIFICANCE_TOP_N, settings
from ..ingest.pipeline import analyze_logs
from ..report.manifest import MANIFEST_NAME, load_manifest


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MongoDB log aggregation CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze_parser = sub.add_parser("analyze", help="Aggregate log files into report tables")
    analyze_parser.add_argument("log_files", type=Path, nargs="+", help="MongoDB log files")
    analyze_parser.add_argument(
        "--out", type=Path, default=None, help="Output root directory (defaults to config)"
    )
    analyze_parser.add_argument(
        "--redact", action="store_true", default=None, help="Redact retained sample records"
    )
    analyze_parser.add_argument(
        "--no-samples",
        dest="keep_samples",
        action="store_false",
        default=None,
        help="Do not retain a sample record per key",
    )
    significance = analyze_parser.add_mutually_exclusive_group()
    significance.add_argument(
        "--top-n", type=int, default=None, help="Keep the N most frequent driver keys"
    )
    significance.add_argument(
        "--min-count",
        type=int,
        default=None,
        help="Keep driver keys seen at least this many times",
    )
    analyze_parser.add_argument(
        "--namespace",
        action="append",
        default=None,
        help="Namespace filter (db, db.coll, db.* or glob); repeatable",
    )
    analyze_parser.add_argument(
        "--slow-planning",
        type=int,
        default=None,
        help="How many of the slowest-planned operations to keep",
    )
    analyze_parser.add_argument(
        "--limit", type=int, default=None, help="Only read the first N lines of each file"
    )
    analyze_parser.add_argument(
        "--workers", type=int, default=None, help="Thread pool size (default: config value)"
    )
    analyze_parser.add_argument(
        "--compression",
        type=str,
        default=None,
        help="Parquet compression codec (default: config value)",
    )

    status_parser = sub.add_parser("status", help="Show report manifest summary")
    status_parser.add_argument("--out", type=Path, default=None, help="Report root path")

    summaries_parser = sub.add_parser("summaries", help="Display top rows of each report")
    summaries_parser.add_argument("--out", type=Path, default=None, help="Report root path")
    summaries_parser.add_argument("--limit", type=int, default=10, help="Rows per section")

    clean_parser = sub.add_parser("clean", help="Remove generated report artifacts")
    clean_parser.add_argument("--out", type=Path, default=None, help="Report root path")
    clean_parser.add_argument(
        "--force", action="store_true", help="Skip confirmation prompt and delete immediately"
    )

    return parser


def _aggregation_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "redaction_enabled": args.redact,
        "sample_retention_enabled": args.keep_samples,
    }
    if args.top_n is not None:
        overrides["significance_rule"] = SIGNIFICANCE_TOP_N
        overrides["significance_value"] = args.top_n
    elif args.min_count is not None:
        overrides["significance_rule"] = SIGNIFICANCE_THRESHOLD
        overrides["significance_value"] = args.min_count
    if args.slow_planning is not None:
        overrides["slow_planning_limit"] = args.slow_planning
    if args.namespace:
        overrides["namespace_filters"] = tuple(args.namespace)
    return overrides


def _print_summary(telemetry: Dict[str, Any]) -> None:
    print(f"Output root: {telemetry['output_root']}")
    for name, info in telemetry.get("tables", {}).items():
        print(f"  {name}: {info.get('rows_written', 0)} rows -> {info.get('path', '<n/a>')}")
    manifest = telemetry.get("manifest", {})
    run_id = manifest.get("run_id")
    suffix = f" (run #{run_id})" if run_id is not None else ""
    print(f"  manifest: {manifest.get('path', '<n/a>')}{suffix}")
    for warning in telemetry.get("warnings", []):
        print(f"  warning: {warning}")


def _print_rows(title: str, rows, columns) -> None:
    print(f"{title}:")
    if not rows:
        print("  (none)")
        return
    for row in rows:
        print("  " + " ".join(f"{column}={row.get(column)}" for column in columns))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "analyze":
        try:
            config = settings.aggregation(**_aggregation_overrides(args))
        except ValueError as exc:
            print(f"Invalid options: {exc}")
            return 1
        try:
            telemetry = analyze_logs(
                args.log_files,
                output_root=args.out,
                config=config,
                workers=args.workers,
                limit=args.limit,
                compression=args.compression,
            )
        except FileNotFoundError as exc:
            print(f"Input not found: {exc}")
            return 1
        _print_summary(telemetry)
        return 0

    if args.command == "status":
        out_root = _resolve_out(args.out)
        manifest = load_manifest(out_root / MANIFEST_NAME)
        if not manifest:
            print(f"No manifest found under {out_root}")
            return 1
        print(f"Report version: {manifest.get('report_version')}")
        print(f"Created at: {manifest.get('created_at')}")
        print(f"Updated at: {manifest.get('updated_at')}")
        runs = manifest.get("runs", [])
        print(f"Run count: {len(runs)}")
        for run in runs[-5:]:
            row_counts = run.get("row_counts", {})
            sources = ", ".join(run.get("source_files", []))
            print(
                f"  #{run.get('run_id')} {sources} "
                f"namespaces={row_counts.get('namespaces', 0)} "
                f"warnings={len(run.get('warnings', []))}"
            )
        return 0

    if args.command == "summaries":
        out_root = _resolve_out(args.out)
        try:
            from ..analytics.duckdb_service import DuckDBService

            service = DuckDBService(dataset_root=out_root)
        except RuntimeError as exc:
            print(f"DuckDB unavailable: {exc}")
            return 1
        limit = max(1, min(args.limit, 100))
        try:
            _print_rows(
                "Top namespaces",
                service.get_namespace_summary(limit=limit),
                ("namespace", "operation", "count", "avg_duration_ms", "p95_duration_ms"),
            )
            _print_rows(
                "Top query shapes",
                service.get_query_hash_summary(limit=limit),
                ("query_hash", "namespace", "count", "avg_duration_ms"),
            )
            _print_rows(
                "Plan cache",
                service.get_plan_cache_summary(limit=limit),
                ("namespace", "plan_summary", "count", "replanned_count"),
            )
            _print_rows(
                "Index usage",
                service.get_index_usage_summary(limit=limit),
                ("namespace", "plan_summary", "count", "collection_scan"),
            )
            _print_rows(
                "Slowest planning",
                service.get_slow_planning_summary(limit=limit),
                ("planning_time_micros", "namespace", "operation", "query_hash"),
            )
            _print_rows("Errors", service.get_error_summary(limit=limit), ("code", "count"))
            _print_rows(
                "Transactions",
                service.get_transaction_summary(limit=limit),
                ("descriptor", "count", "avg_commit_ms"),
            )
            _print_rows(
                "Drivers",
                service.get_driver_summary(limit=limit),
                ("driver_name", "driver_version", "count", "overflow"),
            )
        finally:
            service.close()
        return 0

    if args.command == "clean":
        out_root = _resolve_out(args.out)
        if not out_root.exists():
            print(f"Nothing to clean under {out_root}")
            return 0
        if not args.force:
            response = input(f"Delete reports at {out_root}? [y/N] ").strip().lower()
            if response not in {"y", "yes"}:
                print("Aborted")
                return 1
        shutil.rmtree(out_root)
        print(f"Removed report directory {out_root}")
        return 0

    parser.error("Unknown command")
    return 1


def _resolve_out(out: Path | None) -> Path:
    return Path(out) if out is not None else Path(settings.output_root)


if __name__ == "__main__":
    raise SystemExit(main())
