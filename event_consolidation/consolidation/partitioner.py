"""
Event Partitioner

Normalises a raw event batch and groups it by identity key
(user_id, platform, calendar day). Handles:
- Null-identity filtering (counted, never reported per event)
- Timestamp parsing over several accepted formats
- Numeric coercion of volume and fee
- Per-event rejection of malformed rows without aborting the batch
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import polars as pl
import structlog
from pydantic import BaseModel

from event_consolidation.config import get_settings
from .errors import MalformedEventError
from .models import (
    EVENT_SCHEMA,
    PARTITION_COLUMNS,
    PLATFORMS,
    RAW_EVENT_COLUMNS,
    ROW_INDEX,
    PartitionKey,
    RawEvent,
)

logger = structlog.get_logger(__name__)
settings = get_settings()

RawEvents = Union[pl.DataFrame, Iterable[Union[RawEvent, Mapping[str, Any]]]]

REQUIRED_COLUMNS = ["user_id", "platform", "timestamp"]
MEASURE_COLUMNS = ["volume", "fee"]
EMPTY_RAW_SCHEMA = {
    "user_id": pl.String,
    "platform": pl.String,
    "timestamp": pl.String,
    "volume": pl.Float64,
    "fee": pl.Float64,
}
SCALAR_KINDS = {"str", "bool", "number", "datetime", "aware datetime", "date"}
ZONE_SUFFIX = r"(\d)(?:Z|[+-]\d{2}:?\d{2})$"


def _as_text(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _value_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, datetime):
        return "datetime" if value.tzinfo is None else "aware datetime"
    return type(value).__name__


def _column_values(values: List[Any]) -> List[Any]:
    """Make a column homogeneous enough for polars to infer one dtype"""
    values = [v.value if isinstance(v, Enum) else v for v in values]
    kinds = {_value_kind(v) for v in values if v is not None}
    # Mixed or non-scalar columns go through text; parsing rejects the bad rows
    if len(kinds) > 1 or kinds - SCALAR_KINDS:
        values = [None if v is None else _as_text(v) for v in values]
    return values


def to_frame(events: RawEvents) -> pl.DataFrame:
    """Build a raw-event DataFrame from models, mappings, or a DataFrame"""
    if isinstance(events, pl.DataFrame):
        return events
    
    rows = [
        event.model_dump() if isinstance(event, BaseModel) else dict(event)
        for event in events
    ]
    if not rows:
        return pl.DataFrame(schema=EMPTY_RAW_SCHEMA)
    
    columns = {
        name: _column_values([row.get(name) for row in rows])
        for name in RAW_EVENT_COLUMNS
    }
    return pl.DataFrame(columns)


@dataclass
class PreparedEvents:
    """Raw batch split into usable events and rejected rows"""
    events: pl.DataFrame
    rejected_events: pl.DataFrame
    input_events: int
    null_identity_events: int
    malformed_events: List[MalformedEventError] = field(default_factory=list)


@dataclass
class PartitionResult:
    """Partitioned events plus the bookkeeping of the prepare stage"""
    partitions: Dict[PartitionKey, pl.DataFrame]
    prepared: PreparedEvents
    
    @property
    def partition_count(self) -> int:
        return len(self.partitions)


class EventPartitioner:
    """
    Groups raw events into (user_id, platform, date) partitions.
    
    Within a partition events are ordered by timestamp ascending; identical
    timestamps keep their input order, so output is reproducible.
    
    Example:
        partitioner = EventPartitioner()
        result = partitioner.partition(raw_df)
        for key, events in result.partitions.items():
            ...
    """
    
    def __init__(self, timestamp_formats: Optional[Sequence[str]] = None):
        self.timestamp_formats = list(timestamp_formats or settings.consolidation.timestamp_formats)
    
    def _timestamp_expr(self, dtype: pl.DataType) -> pl.Expr:
        column = pl.col("timestamp")
        
        if dtype == pl.String:
            # Zone designators are dropped, keeping the wall-clock time
            text = column.str.strip_chars().str.replace(ZONE_SUFFIX, "${1}")
            return pl.coalesce([
                text.str.strptime(pl.Datetime("us"), fmt, strict=False)
                for fmt in self.timestamp_formats
            ])
        if isinstance(dtype, pl.Datetime):
            if dtype.time_zone is not None:
                column = column.dt.replace_time_zone(None)
            return column.dt.cast_time_unit("us")
        if dtype == pl.Date or dtype == pl.Null:
            return column.cast(pl.Datetime("us"))
        
        raise ValueError(f"Unsupported timestamp column type: {dtype}")
    
    def _measure_expr(self, name: str, dtype: pl.DataType) -> pl.Expr:
        column = pl.col(name)
        
        if dtype == pl.String:
            return column.str.strip_chars().cast(pl.Float64, strict=False)
        if dtype.is_numeric() or dtype == pl.Null:
            return column.cast(pl.Float64)
        
        raise ValueError(f"Unsupported {name} column type: {dtype}")
    
    @staticmethod
    def _rejection_reason() -> pl.Expr:
        """First failing rule per row, null when the event is usable"""
        volume = pl.col("volume")
        fee = pl.col("fee")
        return (
            pl.when(pl.col("_timestamp_missing")).then(pl.lit("missing timestamp"))
            .when(pl.col("timestamp").is_null()).then(pl.lit("unparsable timestamp"))
            .when(pl.col("platform").is_null()).then(pl.lit("missing platform"))
            .when(~pl.col("platform").is_in(PLATFORMS)).then(pl.lit("unknown platform"))
            .when(pl.col("_volume_present") & volume.is_null()).then(pl.lit("non-numeric volume"))
            .when(pl.col("_fee_present") & fee.is_null()).then(pl.lit("non-numeric fee"))
            .when(~volume.fill_null(0.0).is_finite()).then(pl.lit("non-finite volume"))
            .when(~fee.fill_null(0.0).is_finite()).then(pl.lit("non-finite fee"))
            .when(volume.fill_null(0.0) < 0).then(pl.lit("negative volume"))
            .when(fee.fill_null(0.0) < 0).then(pl.lit("negative fee"))
            .otherwise(pl.lit(None, dtype=pl.String))
            .alias("reason")
        )
    
    def prepare(self, events: RawEvents) -> PreparedEvents:
        """
        Normalise a raw batch.
        
        Null-identity events are dropped and counted. Malformed events are
        rejected individually; the rest of the batch is unaffected.
        
        Raises:
            ValueError: if a required column is missing or has an unusable type
        """
        df = to_frame(events)
        
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Raw events are missing required columns: {missing}")
        
        for name in MEASURE_COLUMNS:
            if name not in df.columns:
                df = df.with_columns(pl.lit(0.0).alias(name))
        
        raw = df.select(RAW_EVENT_COLUMNS).with_row_index(ROW_INDEX)
        schema = raw.schema
        
        user_id = pl.col("user_id").cast(pl.String).str.strip_chars()
        
        parsed = raw.select(
            pl.col(ROW_INDEX),
            pl.when(user_id == "").then(None).otherwise(user_id).alias("user_id"),
            pl.col("platform").cast(pl.String).str.strip_chars().str.to_lowercase().alias("platform"),
            self._timestamp_expr(schema["timestamp"]).alias("timestamp"),
            self._measure_expr("volume", schema["volume"]).alias("volume"),
            self._measure_expr("fee", schema["fee"]).alias("fee"),
            pl.col("timestamp").is_null().alias("_timestamp_missing"),
            pl.col("volume").is_not_null().alias("_volume_present"),
            pl.col("fee").is_not_null().alias("_fee_present"),
        )
        
        identified = parsed.filter(pl.col("user_id").is_not_null())
        null_identity = parsed.height - identified.height
        
        checked = identified.with_columns(self._rejection_reason())
        rejected = checked.filter(pl.col("reason").is_not_null())
        
        valid = (
            checked
            .filter(pl.col("reason").is_null())
            .with_columns(
                pl.col("volume").fill_null(0.0),
                pl.col("fee").fill_null(0.0),
                pl.col("timestamp").dt.date().alias("date"),
            )
            .select(list(EVENT_SCHEMA))
        )
        
        malformed = [
            MalformedEventError(row[ROW_INDEX], row["user_id"], row["reason"])
            for row in rejected.select(ROW_INDEX, "user_id", "reason").iter_rows(named=True)
        ]
        for error in malformed:
            logger.debug("Rejected malformed event", **error.to_dict())
        
        rejected_events = raw.join(
            rejected.select(ROW_INDEX, "reason"), on=ROW_INDEX, how="inner"
        ).sort(ROW_INDEX)
        
        logger.info(
            "Prepared raw events",
            input_events=raw.height,
            valid_events=valid.height,
            null_identity_events=null_identity,
            malformed_events=len(malformed),
        )
        
        return PreparedEvents(
            events=valid,
            rejected_events=rejected_events,
            input_events=raw.height,
            null_identity_events=null_identity,
            malformed_events=malformed,
        )
    
    def partition(self, events: RawEvents) -> PartitionResult:
        """
        Group usable events by (user_id, platform, date).
        
        Returns:
            PartitionResult mapping each PartitionKey to its events ordered by
            timestamp, ties kept in input order
        """
        prepared = self.prepare(events)
        
        partitions: Dict[PartitionKey, pl.DataFrame] = {}
        if not prepared.events.is_empty():
            ordered = prepared.events.sort(["timestamp", ROW_INDEX])
            groups = ordered.partition_by(PARTITION_COLUMNS, as_dict=True, maintain_order=True)
            partitions = {PartitionKey(*key): group for key, group in groups.items()}
        
        logger.info("Partitioned events", partitions=len(partitions))
        
        return PartitionResult(partitions=partitions, prepared=prepared)
