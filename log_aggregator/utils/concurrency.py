"""Concurrency helpers for the aggregation pipeline."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Optional


def create_thread_pool(max_workers: Optional[int] = None) -> ThreadPoolExecutor:
    """Build a thread pool whose workers are named after the aggregator."""

    return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="logagg")
