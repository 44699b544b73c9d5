"""
Session Consolidator

Collapses each partition into at most `bucket_count` session records.

Buckets are fixed-width spans measured from the partition's window origin
(its earliest timestamp). An event exactly on a boundary goes to the later
bucket, and the last bucket is unbounded above. Ids are assigned in a separate
pass once every partition is done, so numbering depends only on the complete
output.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import polars as pl
import structlog

from event_consolidation.config import get_settings
from .errors import BatchAbortedError, PartitionConsolidationError
from .models import CONSOLIDATED_COLUMNS, CONSOLIDATED_SCHEMA, PartitionKey

logger = structlog.get_logger(__name__)
settings = get_settings()

# Global output ordering; platform only separates records that tie on the rest
ID_ORDER = ["user_id", "date", "bucket", "platform"]


def window_origin(events: pl.DataFrame) -> datetime:
    """Earliest timestamp of the given events, recomputed on every call"""
    return events["timestamp"].min()


def bucket_index_expr(
    origin: datetime,
    bucket_width: timedelta,
    bucket_count: int,
) -> pl.Expr:
    """
    1-based bucket index of each event relative to `origin`.
    
    Intervals are half-open, [origin + k*width, origin + (k+1)*width), and the
    final bucket absorbs everything from origin + (count-1)*width onwards.
    """
    width_us = bucket_width // timedelta(microseconds=1)
    offset_us = (
        pl.col("timestamp") - pl.lit(origin, dtype=pl.Datetime("us"))
    ).dt.total_microseconds()
    
    return (
        (offset_us // width_us + 1)
        .clip(upper_bound=bucket_count)
        .cast(pl.Int32)
        .alias("bucket")
    )


@dataclass
class ConsolidationPass:
    """Unnumbered output of the map phase"""
    sessions: List[pl.DataFrame] = field(default_factory=list)
    failures: List[PartitionConsolidationError] = field(default_factory=list)
    
    @property
    def consolidated_partitions(self) -> int:
        return len(self.sessions)


class SessionConsolidator:
    """
    Consolidates partitions into bucketed session records.
    
    Partitions share no state, so `consolidate` may fan out over a thread
    pool. A failing partition is recorded and left out; the others complete.
    
    Example:
        consolidator = SessionConsolidator(max_workers=4)
        result = consolidator.consolidate(partition_result.partitions)
        records = assign_ids(result.sessions)
    """
    
    def __init__(
        self,
        bucket_width: Optional[timedelta] = None,
        bucket_count: Optional[int] = None,
        max_workers: Optional[int] = None,
    ):
        config = settings.consolidation
        self.bucket_width = bucket_width if bucket_width is not None else timedelta(minutes=config.bucket_width_minutes)
        self.bucket_count = bucket_count if bucket_count is not None else config.bucket_count
        self.max_workers = max_workers if max_workers is not None else config.max_workers
        
        if self.bucket_width <= timedelta(0):
            raise ValueError(f"Bucket width must be positive, got {self.bucket_width}")
        if self.bucket_count < 1:
            raise ValueError(f"Bucket count must be at least 1, got {self.bucket_count}")
    
    def consolidate_partition(
        self,
        key: PartitionKey,
        events: pl.DataFrame,
    ) -> pl.DataFrame:
        """
        Aggregate one partition into one row per non-empty bucket.
        
        Volume and fee are plain float sums with no rounding. The
        representative timestamp is the earliest event of each bucket.
        
        Raises:
            PartitionConsolidationError: if aggregation fails or a sum overflows
        """
        origin = window_origin(events)
        
        try:
            sessions = (
                events
                .with_columns(bucket_index_expr(origin, self.bucket_width, self.bucket_count))
                .group_by("bucket")
                .agg(
                    pl.col("timestamp").min().alias("representative_timestamp"),
                    pl.col("volume").sum(),
                    pl.col("fee").sum(),
                    pl.len().cast(pl.UInt32).alias("event_count"),
                )
                .sort("bucket")
                .select(
                    pl.lit(key.user_id, dtype=pl.String).alias("user_id"),
                    pl.lit(key.date, dtype=pl.Date).alias("date"),
                    pl.lit(key.platform, dtype=pl.String).alias("platform"),
                    "bucket",
                    "representative_timestamp",
                    "volume",
                    "fee",
                    "event_count",
                )
            )
        except pl.exceptions.PolarsError as e:
            raise PartitionConsolidationError(key, str(e)) from e
        
        overflowed = sessions.filter(
            ~pl.col("volume").is_finite() | ~pl.col("fee").is_finite()
        ).height
        if overflowed:
            raise PartitionConsolidationError(key, "volume or fee sum is not finite")
        
        return sessions
    
    def _consolidate_one(
        self,
        item: Tuple[PartitionKey, pl.DataFrame],
    ) -> Tuple[Optional[pl.DataFrame], Optional[PartitionConsolidationError]]:
        key, events = item
        try:
            return self.consolidate_partition(key, events), None
        except PartitionConsolidationError as e:
            return None, e
        except Exception as e:
            return None, PartitionConsolidationError(key, f"{type(e).__name__}: {e}")
    
    def consolidate(
        self,
        partitions: Dict[PartitionKey, pl.DataFrame],
    ) -> ConsolidationPass:
        """
        Map phase: consolidate every partition independently.
        
        Args:
            partitions: PartitionKey -> ordered member events
            
        Returns:
            ConsolidationPass with unnumbered sessions and partition failures
        """
        items = list(partitions.items())
        
        if self.max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(self._consolidate_one, items))
        else:
            outcomes = [self._consolidate_one(item) for item in items]
        
        result = ConsolidationPass()
        for sessions, failure in outcomes:
            if failure is not None:
                logger.warning("Partition consolidation failed", **failure.to_dict())
                result.failures.append(failure)
            else:
                result.sessions.append(sessions)
        
        logger.info(
            "Consolidated partitions",
            partitions=len(items),
            consolidated=result.consolidated_partitions,
            failed=len(result.failures),
            workers=self.max_workers,
        )
        
        return result


def assign_ids(sessions: Sequence[pl.DataFrame]) -> pl.DataFrame:
    """
    Barrier phase: number all sessions of a run.
    
    Ids start at 1 and follow (user_id, date, bucket) ascending, so unchanged
    input always yields the same ids.
    
    Raises:
        BatchAbortedError: if numbering cannot complete; nothing is returned
    """
    try:
        if not sessions:
            return pl.DataFrame(schema=CONSOLIDATED_SCHEMA)
        
        return (
            pl.concat(sessions, how="vertical")
            .sort(ID_ORDER)
            .with_row_index("id", offset=1)
            .with_columns(pl.col("id").cast(pl.Int64))
            .select(CONSOLIDATED_COLUMNS)
        )
    except (pl.exceptions.PolarsError, MemoryError) as e:
        logger.error("Global id assignment failed", error=str(e))
        raise BatchAbortedError(f"Global id assignment failed: {e}") from e
