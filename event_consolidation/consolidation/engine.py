"""
Consolidation Engine

Runs the full batch: partition, consolidate every partition, then number the
combined output. A run is a pure function of its input; the only fatal failure
is the final numbering step.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import polars as pl
import structlog

from event_consolidation.config import get_settings
from .consolidator import SessionConsolidator, assign_ids
from .errors import (
    MalformedEventError,
    NullIdentityEventError,
    PartitionConsolidationError,
)
from .models import ConsolidatedRecord
from .partitioner import EventPartitioner, RawEvents

logger = structlog.get_logger(__name__)
settings = get_settings()


@dataclass
class RunReport:
    """Structured summary of what a run consumed, skipped, and produced"""
    input_events: int
    null_identity_events: int
    partitions_total: int
    output_records: int
    started_at: datetime
    completed_at: datetime
    malformed_events: List[MalformedEventError] = field(default_factory=list)
    failed_partitions: List[PartitionConsolidationError] = field(default_factory=list)
    
    @property
    def malformed_count(self) -> int:
        return len(self.malformed_events)
    
    @property
    def skipped_events(self) -> int:
        """Events that never reached a partition"""
        return self.null_identity_events + self.malformed_count
    
    @property
    def partitions_consolidated(self) -> int:
        return self.partitions_total - len(self.failed_partitions)
    
    @property
    def has_failures(self) -> bool:
        return bool(self.malformed_events or self.failed_partitions)
    
    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()
    
    @property
    def skip_counts(self) -> Dict[str, int]:
        return {
            NullIdentityEventError.code: self.null_identity_events,
            MalformedEventError.code: self.malformed_count,
            PartitionConsolidationError.code: len(self.failed_partitions),
        }
    
    def summary(self) -> Dict[str, Any]:
        return {
            "input_events": self.input_events,
            "skipped_events": self.skipped_events,
            "skip_counts": self.skip_counts,
            "partitions_total": self.partitions_total,
            "partitions_consolidated": self.partitions_consolidated,
            "output_records": self.output_records,
            "malformed_events": [e.to_dict() for e in self.malformed_events],
            "failed_partitions": [e.to_dict() for e in self.failed_partitions],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ConsolidationRun:
    """Consolidated records in ascending id order, with the run report"""
    records: pl.DataFrame
    report: RunReport
    rejected_events: pl.DataFrame
    
    def to_records(self) -> List[ConsolidatedRecord]:
        return [ConsolidatedRecord.from_row(row) for row in self.records.iter_rows(named=True)]


class ConsolidationEngine:
    """
    Batch consolidation pipeline.
    
    Pipeline:
    1. Normalise raw events, dropping null identities and malformed rows
    2. Partition by (user_id, platform, date)
    3. Consolidate partitions independently into bucketed sessions
    4. Assign global ids over the combined output
    
    Example:
        engine = ConsolidationEngine()
        run = engine.run(raw_events_df)
        run.records.write_parquet("events_consolidated.parquet")
    """
    
    def __init__(
        self,
        bucket_width_minutes: Optional[int] = None,
        bucket_count: Optional[int] = None,
        max_workers: Optional[int] = None,
        timestamp_formats: Optional[Sequence[str]] = None,
    ):
        config = settings.consolidation
        width = bucket_width_minutes if bucket_width_minutes is not None else config.bucket_width_minutes
        
        self.partitioner = EventPartitioner(timestamp_formats=timestamp_formats)
        self.consolidator = SessionConsolidator(
            bucket_width=timedelta(minutes=width),
            bucket_count=bucket_count,
            max_workers=max_workers,
        )
    
    def run(self, events: RawEvents) -> ConsolidationRun:
        """
        Consolidate a full raw batch.
        
        Args:
            events: raw events as a DataFrame, RawEvent models, or mappings
            
        Returns:
            ConsolidationRun with numbered records and the run report
            
        Raises:
            BatchAbortedError: if global id assignment fails
        """
        started_at = datetime.now(timezone.utc)
        
        partitioned = self.partitioner.partition(events)
        consolidated = self.consolidator.consolidate(partitioned.partitions)
        records = assign_ids(consolidated.sessions)
        
        prepared = partitioned.prepared
        report = RunReport(
            input_events=prepared.input_events,
            null_identity_events=prepared.null_identity_events,
            partitions_total=partitioned.partition_count,
            output_records=records.height,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            malformed_events=prepared.malformed_events,
            failed_partitions=consolidated.failures,
        )
        
        logger.info(
            "Consolidation run complete",
            input_events=report.input_events,
            output_records=report.output_records,
            skipped_events=report.skipped_events,
            failed_partitions=len(report.failed_partitions),
            duration_seconds=round(report.duration_seconds, 3),
        )
        
        return ConsolidationRun(
            records=records,
            report=report,
            rejected_events=prepared.rejected_events,
        )


def consolidate_events(events: RawEvents, **kwargs) -> ConsolidationRun:
    """
    Convenience function to consolidate a raw batch with default settings.
    
    Args:
        events: raw events as a DataFrame, RawEvent models, or mappings
        **kwargs: ConsolidationEngine overrides
        
    Returns:
        ConsolidationRun
    """
    return ConsolidationEngine(**kwargs).run(events)
