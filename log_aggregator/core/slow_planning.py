"""Top-N operations by query planning time."""

from __future__ import annotations

import heapq
import itertools
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from ..config import DEFAULT_SLOW_PLANNING_LIMIT
from .events import LogEvent


@dataclass(frozen=True)
class SlowPlanningRecord:
    planning_time_micros: int
    namespace: str
    operation: str
    plan_summary: Optional[str] = None
    query_hash: Optional[str] = None
    sanitized_filter: Optional[str] = None
    timestamp: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SlowPlanningTracker:
    """Keeps the ``limit`` events with the longest planning time.

    A min-heap of size ``limit`` so memory stays bounded however many events
    report a planning time.
    """

    def __init__(self, limit: int = DEFAULT_SLOW_PLANNING_LIMIT) -> None:
        if limit < 0:
            raise ValueError("limit must not be negative")
        self.limit = limit
        self._heap: List[Tuple[int, int, SlowPlanningRecord]] = []
        self._sequence = itertools.count()
        self._lock = Lock()

    def offer(self, event: LogEvent) -> bool:
        planning = event.planning_time_micros
        if planning is None or self.limit == 0:
            return False
        record = SlowPlanningRecord(
            planning_time_micros=planning,
            namespace=event.namespace,
            operation=event.operation,
            plan_summary=event.plan_summary,
            query_hash=event.query_hash,
            sanitized_filter=event.sanitized_filter,
            timestamp=event.timestamp,
        )
        with self._lock:
            item = (planning, next(self._sequence), record)
            if len(self._heap) < self.limit:
                heapq.heappush(self._heap, item)
                return True
            if planning <= self._heap[0][0]:
                return False
            heapq.heapreplace(self._heap, item)
            return True

    def top(self) -> List[SlowPlanningRecord]:
        """Slowest first; equal planning times keep arrival order."""

        with self._lock:
            items = list(self._heap)
        items.sort(key=lambda item: (-item[0], item[1]))
        return [record for _, _, record in items]

    def __len__(self) -> int:
        return len(self._heap)
