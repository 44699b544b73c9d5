"""
Consolidation Impact Diagnostics

Read-only comparison of raw and consolidated events. Implements:
- Per-partition reduction figures (events reduced, reduction percentage)
- Review flags for partitions collapsing a large burst in a short span
- Usage assessment labels from burst size, span and spread over hours
- User, platform and daily impact rollups
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import polars as pl
import structlog

from event_consolidation.config import get_settings
from event_consolidation.consolidation.models import PARTITION_COLUMNS
from event_consolidation.consolidation.partitioner import EventPartitioner, RawEvents

logger = structlog.get_logger(__name__)
settings = get_settings()


class UsageAssessment(str, Enum):
    """Usage pattern label of one partition's raw activity"""
    LIKELY_GAMING = "Likely Gaming"
    POSSIBLE_GAMING = "Possible Gaming"
    SUSPICIOUS_PATTERN = "Suspicious Pattern"
    NORMAL_USAGE = "Normal Usage"


class UserCategory(str, Enum):
    """Activity tier of a user by raw event total"""
    HEAVY = "Heavy Users (100+ events)"
    MODERATE = "Moderate Users (50-99 events)"
    REGULAR = "Regular Users (20-49 events)"
    LIGHT = "Light Users (10-19 events)"


@dataclass
class ReviewThresholds:
    """A partition is flagged when all three limits are crossed"""
    min_events: int = 50
    max_records: int = 4
    max_span_minutes: float = 60.0
    
    @classmethod
    def from_settings(cls) -> "ReviewThresholds":
        config = settings.diagnostics
        return cls(
            min_events=config.review_min_events,
            max_records=config.review_max_records,
            max_span_minutes=config.review_max_span_minutes,
        )


def _usage_assessment() -> pl.Expr:
    events = pl.col("original_events")
    span = pl.col("span_minutes")
    return (
        pl.when((events > 50) & (span < 60)).then(pl.lit(UsageAssessment.LIKELY_GAMING.value))
        .when((events > 30) & (pl.col("unique_hours") <= 2)).then(pl.lit(UsageAssessment.POSSIBLE_GAMING.value))
        .when((events > 20) & (span < 30)).then(pl.lit(UsageAssessment.SUSPICIOUS_PATTERN.value))
        .otherwise(pl.lit(UsageAssessment.NORMAL_USAGE.value))
        .alias("usage_assessment")
    )


def _user_category() -> pl.Expr:
    total = pl.col("total_original_events")
    return (
        pl.when(total >= 100).then(pl.lit(UserCategory.HEAVY.value))
        .when(total >= 50).then(pl.lit(UserCategory.MODERATE.value))
        .when(total >= 20).then(pl.lit(UserCategory.REGULAR.value))
        .otherwise(pl.lit(UserCategory.LIGHT.value))
        .alias("user_category")
    )


def _reduction_pct(reduced: str, original: str) -> pl.Expr:
    return (pl.col(reduced) * 100.0 / pl.col(original)).round(2)


def compare_partitions(
    raw_events: RawEvents,
    records: pl.DataFrame,
    thresholds: Optional[ReviewThresholds] = None,
    partitioner: Optional[EventPartitioner] = None,
) -> pl.DataFrame:
    """
    Compare raw and consolidated counts per (user_id, platform, date).
    
    Raw events go through the same normalisation as the engine, so
    null-identity and malformed rows are not counted. Partitions missing from
    `records` (failed during consolidation) are left out.
    
    Args:
        raw_events: the raw batch that was consolidated
        records: consolidated records of that batch
        thresholds: review flag limits, defaults from settings
        partitioner: partitioner used for normalisation
        
    Returns:
        One row per partition, ordered by events_reduced descending
    """
    thresholds = thresholds or ReviewThresholds.from_settings()
    partitioner = partitioner or EventPartitioner()
    events = partitioner.prepare(raw_events).events
    
    original = events.group_by(PARTITION_COLUMNS).agg(
        pl.len().cast(pl.Int64).alias("original_events"),
        pl.col("volume").sum().alias("original_volume"),
        pl.col("fee").sum().alias("original_fee"),
        pl.col("timestamp").min().alias("first_access"),
        pl.col("timestamp").max().alias("last_access"),
        pl.col("timestamp").dt.hour().n_unique().cast(pl.Int64).alias("unique_hours"),
    )
    
    updated = records.group_by(PARTITION_COLUMNS).agg(
        pl.len().cast(pl.Int64).alias("updated_events"),
        pl.col("volume").sum().alias("updated_volume"),
        pl.col("fee").sum().alias("updated_fee"),
    )
    
    comparison = (
        original
        .join(updated, on=PARTITION_COLUMNS, how="inner")
        .with_columns(
            (pl.col("original_events") - pl.col("updated_events")).alias("events_reduced"),
            (pl.col("last_access") - pl.col("first_access")).dt.total_minutes().alias("span_minutes"),
            (pl.col("original_events") / pl.col("unique_hours")).round(2).alias("events_per_hour"),
        )
        .with_columns(
            _reduction_pct("events_reduced", "original_events").alias("reduction_percentage"),
            _usage_assessment(),
            (
                (pl.col("original_events") > thresholds.min_events)
                & (pl.col("updated_events") <= thresholds.max_records)
                & (pl.col("span_minutes") < thresholds.max_span_minutes)
            ).alias("flagged"),
        )
        .select(
            *PARTITION_COLUMNS,
            "original_events",
            "updated_events",
            "events_reduced",
            "reduction_percentage",
            "original_volume",
            "updated_volume",
            "original_fee",
            "updated_fee",
            "first_access",
            "last_access",
            "span_minutes",
            "unique_hours",
            "events_per_hour",
            "usage_assessment",
            "flagged",
        )
        .sort(
            ["events_reduced", *PARTITION_COLUMNS],
            descending=[True, False, False, False],
        )
    )
    
    return comparison


def summarize_user_impact(
    comparison: pl.DataFrame,
    min_events: Optional[int] = None,
) -> pl.DataFrame:
    """Average reduction per user activity tier, for users with enough events"""
    if min_events is None:
        min_events = settings.diagnostics.impact_min_events
    
    users = (
        comparison
        .group_by("user_id")
        .agg(
            pl.col("original_events").sum().alias("total_original_events"),
            pl.col("updated_events").sum().alias("total_updated_events"),
            pl.col("events_reduced").sum().alias("total_events_reduced"),
            (pl.col("events_reduced") * 100.0 / pl.col("original_events")).mean().alias("avg_reduction_pct"),
        )
        .filter(pl.col("total_original_events") >= min_events)
        .with_columns(_user_category())
    )
    
    return (
        users
        .group_by("user_category")
        .agg(
            pl.len().alias("user_count"),
            pl.col("total_original_events").mean().round(1).alias("avg_original_events"),
            pl.col("total_updated_events").mean().round(1).alias("avg_updated_events"),
            pl.col("total_events_reduced").mean().round(1).alias("avg_events_reduced"),
            pl.col("avg_reduction_pct").mean().round(2).alias("avg_reduction_percentage"),
        )
        .sort("avg_original_events", descending=True)
    )


def summarize_platform_impact(comparison: pl.DataFrame) -> pl.DataFrame:
    """Reduction per platform over users whose activity was actually reduced"""
    per_user = (
        comparison
        .group_by(["user_id", "platform"])
        .agg(
            pl.col("original_events").sum(),
            pl.col("updated_events").sum(),
        )
        .filter(pl.col("original_events") > pl.col("updated_events"))
    )
    
    return (
        per_user
        .group_by("platform")
        .agg(
            pl.col("user_id").n_unique().alias("affected_users"),
            pl.col("original_events").sum().alias("total_original_events"),
            pl.col("updated_events").sum().alias("total_updated_events"),
            (pl.col("original_events") - pl.col("updated_events")).sum().alias("total_events_reduced"),
        )
        .with_columns(
            _reduction_pct("total_events_reduced", "total_original_events").alias("platform_reduction_pct")
        )
        .sort(["platform_reduction_pct", "platform"], descending=[True, False])
    )


def summarize_daily_impact(
    comparison: pl.DataFrame,
    top_n: int = 10,
) -> pl.DataFrame:
    """Days with the highest reduction percentage"""
    return (
        comparison
        .group_by("date")
        .agg(
            pl.col("original_events").sum().alias("daily_original_events"),
            pl.col("updated_events").sum().alias("daily_updated_events"),
            pl.col("events_reduced").sum().alias("daily_events_reduced"),
        )
        .filter(pl.col("daily_events_reduced") > 0)
        .with_columns(
            _reduction_pct("daily_events_reduced", "daily_original_events").alias("daily_reduction_pct")
        )
        .sort(["daily_reduction_pct", "date"], descending=[True, False])
        .head(top_n)
    )


@dataclass
class DiagnosticsReport:
    """Impact of one consolidation run"""
    comparison: pl.DataFrame
    user_impact: pl.DataFrame
    platform_impact: pl.DataFrame
    daily_impact: pl.DataFrame
    
    @property
    def flagged(self) -> pl.DataFrame:
        return self.comparison.filter(pl.col("flagged"))
    
    @property
    def flagged_count(self) -> int:
        return self.flagged.height
    
    @property
    def total_events_reduced(self) -> int:
        return int(self.comparison["events_reduced"].sum())
    
    @property
    def reduction_percentage(self) -> float:
        original = self.comparison["original_events"].sum()
        if not original:
            return 0.0
        return round(self.total_events_reduced * 100.0 / original, 2)
    
    def top_reductions(self, n: Optional[int] = None) -> pl.DataFrame:
        """Partitions that lost the most events, reduced partitions only"""
        n = n or settings.diagnostics.top_n
        return self.comparison.filter(pl.col("events_reduced") > 0).head(n)


def build_diagnostics(
    raw_events: RawEvents,
    records: pl.DataFrame,
    thresholds: Optional[ReviewThresholds] = None,
    partitioner: Optional[EventPartitioner] = None,
) -> DiagnosticsReport:
    """
    Build the full impact report of a consolidation run.
    
    Args:
        raw_events: the raw batch that was consolidated
        records: consolidated records of that batch
        thresholds: review flag limits, defaults from settings
        partitioner: the partitioner the run used, defaults from settings
        
    Returns:
        DiagnosticsReport
    """
    comparison = compare_partitions(
        raw_events, records, thresholds=thresholds, partitioner=partitioner
    )
    
    report = DiagnosticsReport(
        comparison=comparison,
        user_impact=summarize_user_impact(comparison),
        platform_impact=summarize_platform_impact(comparison),
        daily_impact=summarize_daily_impact(comparison),
    )
    
    if report.flagged_count:
        logger.warning(
            "Partitions flagged for review",
            flagged=report.flagged_count,
            partitions=comparison.height,
        )
    
    logger.info(
        "Diagnostics complete",
        partitions=comparison.height,
        events_reduced=report.total_events_reduced,
        reduction_percentage=report.reduction_percentage,
    )
    
    return report
