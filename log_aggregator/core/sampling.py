"""Representative-sample selection: keep the slowest record per key."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional


@dataclass(frozen=True)
class SampleRecord:
    """Transformed text of the slowest record seen, with its duration."""

    text: str
    duration_ms: int
    truncated: bool = False


class SampleSelector:
    """Arg-max reducer over ``(duration, raw_text)`` candidates.

    The compare, the transform and the store happen under one lock, so two
    threads cannot both accept the same slot. The transform runs only for
    accepted candidates.
    """

    __slots__ = ("_lock", "_sample", "_transform_calls")

    def __init__(self) -> None:
        self._lock = Lock()
        self._sample: Optional[SampleRecord] = None
        self._transform_calls = 0

    def consider(
        self,
        candidate_duration: Optional[int],
        candidate_raw_text: Optional[str],
        transform: Callable[[str], str],
        truncation_check: Optional[Callable[[str], bool]] = None,
    ) -> bool:
        """Retain *candidate_raw_text* if its duration is at least the current max.

        *truncation_check* flags records the server already shortened; like the
        transform it only runs for accepted candidates.
        """

        if candidate_raw_text is None:
            return False
        duration = candidate_duration if candidate_duration is not None else 0
        with self._lock:
            if self._sample is not None and duration < self._sample.duration_ms:
                return False
            self._transform_calls += 1
            truncated = bool(truncation_check(candidate_raw_text)) if truncation_check else False
            self._sample = SampleRecord(
                text=transform(candidate_raw_text),
                duration_ms=duration,
                truncated=truncated,
            )
            return True

    @property
    def sample(self) -> Optional[SampleRecord]:
        return self._sample

    @property
    def max_duration(self) -> Optional[int]:
        sample = self._sample
        return sample.duration_ms if sample is not None else None

    @property
    def transform_calls(self) -> int:
        return self._transform_calls
