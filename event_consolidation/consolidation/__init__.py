"""
Session Consolidation Module
"""
from .consolidator import SessionConsolidator, assign_ids, bucket_index_expr, window_origin
from .engine import ConsolidationEngine, ConsolidationRun, RunReport, consolidate_events
from .errors import (
    BatchAbortedError,
    ConsolidationError,
    MalformedEventError,
    NullIdentityEventError,
    PartitionConsolidationError,
)
from .models import ConsolidatedRecord, PartitionKey, Platform, RawEvent
from .partitioner import EventPartitioner, PartitionResult

__all__ = [
    "SessionConsolidator",
    "assign_ids",
    "bucket_index_expr",
    "window_origin",
    "ConsolidationEngine",
    "ConsolidationRun",
    "RunReport",
    "consolidate_events",
    "BatchAbortedError",
    "ConsolidationError",
    "MalformedEventError",
    "NullIdentityEventError",
    "PartitionConsolidationError",
    "ConsolidatedRecord",
    "PartitionKey",
    "Platform",
    "RawEvent",
    "EventPartitioner",
    "PartitionResult",
]
