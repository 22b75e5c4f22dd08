"""Keyed aggregate tables."""

from __future__ import annotations

from threading import Lock
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

from ..config import DEFAULT_PERCENTILE_CAP
from .entry import AggregateEntry, Transform, TruncationCheck
from .events import LogEvent
from .keys import AggregateKey

SortKey = Union[str, Callable[[AggregateEntry], float]]


class KeyedAggregateTable:
    """Map from composite key to :class:`AggregateEntry`.

    Only observed keys are materialized. The table lock guards entry creation;
    the fold itself runs under the entry's own lock.
    """

    def __init__(
        self,
        name: str,
        *,
        percentile_cap: int = DEFAULT_PERCENTILE_CAP,
        retain_samples: bool = True,
        transform: Optional[Transform] = None,
        truncation_check: Optional[TruncationCheck] = None,
    ) -> None:
        self.name = name
        self.percentile_cap = percentile_cap
        self.retain_samples = retain_samples
        self.transform = transform
        self.truncation_check = truncation_check
        self._entries: Dict[AggregateKey, AggregateEntry] = {}
        self._lock = Lock()

    def _entry_for(self, key: AggregateKey) -> AggregateEntry:
        entry = self._entries.get(key)
        if entry is not None:
            return entry
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = AggregateEntry(
                    percentile_cap=self.percentile_cap,
                    retain_sample=self.retain_samples,
                )
                self._entries[key] = entry
            return entry

    def merge(self, key: AggregateKey, event: LogEvent, raw_text: Optional[str] = None) -> AggregateEntry:
        entry = self._entry_for(key)
        entry.merge(event, raw_text, self.transform, self.truncation_check)
        return entry

    def get(self, key: AggregateKey) -> Optional[AggregateEntry]:
        return self._entries.get(key)

    def entries(self) -> List[Tuple[AggregateKey, AggregateEntry]]:
        with self._lock:
            return list(self._entries.items())

    def __iter__(self) -> Iterator[Tuple[AggregateKey, AggregateEntry]]:
        return iter(self.entries())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def total_count(self) -> int:
        return sum(entry.count for _, entry in self.entries())

    def report_view(self, sort_key: SortKey = "count") -> List[Tuple[AggregateKey, AggregateEntry]]:
        """Entries sorted descending by *sort_key*, ties broken by key order."""

        if callable(sort_key):
            metric = sort_key
        else:
            attribute = sort_key

            def metric(entry: AggregateEntry) -> float:
                value = getattr(entry, attribute)
                return value if value is not None else 0

        rows = self.entries()
        # Stable sorts: key order first, then the metric descending.
        rows.sort(key=lambda item: item[0].sort_fields())
        rows.sort(key=lambda item: metric(item[1]), reverse=True)
        return rows
