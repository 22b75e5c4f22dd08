from .manifest import MANIFEST_NAME, append_manifest_entry, latest_run, load_manifest
from .parquet_writer import REPORT_SCHEMAS, report_rows, write_report

__all__ = [
    "MANIFEST_NAME",
    "REPORT_SCHEMAS",
    "append_manifest_entry",
    "latest_run",
    "load_manifest",
    "report_rows",
    "write_report",
]
