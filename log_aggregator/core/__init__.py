from .engine import AggregationEngine, AggregationReport
from .entry import AggregateEntry
from .events import DriverInfo, LogEvent, TransactionInfo
from .keys import OVERFLOW_KEY
from .percentiles import BoundedPercentileEstimator
from .sampling import SampleRecord, SampleSelector
from .slow_planning import SlowPlanningRecord, SlowPlanningTracker
from .table import KeyedAggregateTable
from .two_pass import ReconciliationResult, SignificancePolicy, TwoPassAggregator

__all__ = [
    "AggregateEntry",
    "AggregationEngine",
    "AggregationReport",
    "BoundedPercentileEstimator",
    "DriverInfo",
    "KeyedAggregateTable",
    "LogEvent",
    "OVERFLOW_KEY",
    "ReconciliationResult",
    "SampleRecord",
    "SampleSelector",
    "SignificancePolicy",
    "SlowPlanningRecord",
    "SlowPlanningTracker",
    "TransactionInfo",
    "TwoPassAggregator",
]
