"""
Consolidation Data Models

Record-level models for raw and consolidated events, plus the polars column
layouts used when the same data travels as DataFrames.
"""

from datetime import date as date_type, datetime
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional

import polars as pl
from pydantic import BaseModel, ConfigDict, Field


class Platform(str, Enum):
    """Client platforms an event can originate from"""
    WEB = "web"
    ANDROID = "android"
    IOS = "ios"


PLATFORMS = [p.value for p in Platform]


class PartitionKey(NamedTuple):
    """Identity of a partition: one user on one platform on one calendar day"""
    user_id: str
    platform: str
    date: date_type


class RawEvent(BaseModel):
    """One observed interaction, as ingested"""
    
    model_config = ConfigDict(frozen=True, use_enum_values=True)
    
    user_id: Optional[str] = None
    platform: Platform
    timestamp: datetime
    volume: float = Field(default=0.0, ge=0)
    fee: float = Field(default=0.0, ge=0)


class ConsolidatedRecord(BaseModel):
    """One aggregated session: a non-empty bucket of one partition"""
    
    model_config = ConfigDict(frozen=True, use_enum_values=True)
    
    id: int
    user_id: str
    date: date_type
    platform: Platform
    representative_timestamp: datetime
    volume: float
    fee: float
    bucket: int = Field(ge=1)
    event_count: int = Field(ge=1)
    
    @property
    def partition_key(self) -> PartitionKey:
        return PartitionKey(self.user_id, self.platform, self.date)
    
    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ConsolidatedRecord":
        return cls(**{name: row[name] for name in CONSOLIDATED_COLUMNS})


# Column layouts
ROW_INDEX = "row_index"

RAW_EVENT_COLUMNS = ["user_id", "platform", "timestamp", "volume", "fee"]

PARTITION_COLUMNS = ["user_id", "platform", "date"]

EVENT_SCHEMA = {
    ROW_INDEX: pl.UInt32,
    "user_id": pl.String,
    "platform": pl.String,
    "timestamp": pl.Datetime("us"),
    "date": pl.Date,
    "volume": pl.Float64,
    "fee": pl.Float64,
}

SESSION_SCHEMA = {
    "user_id": pl.String,
    "date": pl.Date,
    "platform": pl.String,
    "bucket": pl.Int32,
    "representative_timestamp": pl.Datetime("us"),
    "volume": pl.Float64,
    "fee": pl.Float64,
    "event_count": pl.UInt32,
}

CONSOLIDATED_SCHEMA = {"id": pl.Int64, **SESSION_SCHEMA}

CONSOLIDATED_COLUMNS = list(CONSOLIDATED_SCHEMA)
