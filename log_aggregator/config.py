"""Configuration primitives for the log aggregator."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

SIGNIFICANCE_TOP_N = "top_n"
SIGNIFICANCE_THRESHOLD = "threshold"
SIGNIFICANCE_RULES = (SIGNIFICANCE_TOP_N, SIGNIFICANCE_THRESHOLD)

DEFAULT_PERCENTILE_CAP = 10_000
DEFAULT_SIGNIFICANCE_VALUE = 50
DEFAULT_SLOW_PLANNING_LIMIT = 50


def _env_flag(name: str, *, default: bool) -> bool:
    """Interpret common truthy/falsey environment values."""

    value = os.environ.get(name)
    if value is None:
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_int(name: str, *, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class AggregationSettings:
    """Knobs consumed by the aggregation core."""

    redaction_enabled: bool = False
    sample_retention_enabled: bool = True
    percentile_cap: int = DEFAULT_PERCENTILE_CAP
    significance_rule: str = SIGNIFICANCE_TOP_N
    significance_value: int = DEFAULT_SIGNIFICANCE_VALUE
    slow_planning_limit: int = DEFAULT_SLOW_PLANNING_LIMIT
    namespace_filters: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.significance_rule not in SIGNIFICANCE_RULES:
            raise ValueError(
                f"Unknown significance rule {self.significance_rule!r}; "
                f"expected one of {', '.join(SIGNIFICANCE_RULES)}"
            )
        if self.percentile_cap < 1:
            raise ValueError("percentile_cap must be positive")
        if self.significance_value < 0:
            raise ValueError("significance_value must not be negative")
        if self.slow_planning_limit < 0:
            raise ValueError("slow_planning_limit must not be negative")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration defaults read from the environment."""

    output_root: Path = Path(os.environ.get("LOGAGG_OUT_ROOT", "out"))
    parquet_compression: str = os.environ.get("LOGAGG_PARQUET_COMPRESSION", "snappy")
    redaction_enabled: bool = _env_flag("LOGAGG_REDACT", default=False)
    sample_retention_enabled: bool = _env_flag("LOGAGG_KEEP_SAMPLES", default=True)
    percentile_cap: int = _env_int("LOGAGG_PERCENTILE_CAP", default=DEFAULT_PERCENTILE_CAP)
    significance_rule: str = os.environ.get("LOGAGG_SIGNIFICANCE_RULE", SIGNIFICANCE_TOP_N)
    significance_value: int = _env_int("LOGAGG_SIGNIFICANCE_VALUE", default=DEFAULT_SIGNIFICANCE_VALUE)
    slow_planning_limit: int = _env_int(
        "LOGAGG_SLOW_PLANNING_LIMIT", default=DEFAULT_SLOW_PLANNING_LIMIT
    )
    workers: Optional[int] = _env_int("LOGAGG_WORKERS", default=None)
    report_version: int = 1

    def aggregation(self, **overrides) -> AggregationSettings:
        """Build the core settings, letting callers override individual knobs."""

        values = {
            "redaction_enabled": self.redaction_enabled,
            "sample_retention_enabled": self.sample_retention_enabled,
            "percentile_cap": self.percentile_cap,
            "significance_rule": self.significance_rule,
            "significance_value": self.significance_value,
            "slow_planning_limit": self.slow_planning_limit,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return AggregationSettings(**values)


settings = Settings()
