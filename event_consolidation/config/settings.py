"""
Event Consolidation Pipeline
Centralized Configuration Management

Configuration is built from Pydantic settings classes with environment
variable support, validation, and type safety. The consolidation defaults
(6-hour buckets, 4 buckets per day) are relied on by downstream reports and
should only be overridden deliberately.
"""

from functools import lru_cache
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConsolidationSettings(BaseSettings):
    """Session consolidation configuration"""
    
    model_config = SettingsConfigDict(env_prefix="CONSOLIDATION_")
    
    bucket_width_minutes: int = Field(default=360, gt=0, description="Width of one session bucket in minutes")
    bucket_count: int = Field(default=4, gt=0, description="Buckets per partition; the last one is unbounded")
    max_workers: int = Field(default=1, ge=1, description="Threads used to consolidate partitions")
    timestamp_formats: List[str] = Field(
        default=[
            "%Y-%m-%d %H:%M:%S",
            "%Y-%m-%d %H:%M:%S%.f",
            "%Y-%m-%dT%H:%M:%S",
            "%Y-%m-%dT%H:%M:%S%.f",
            "%Y-%m-%d %H:%M",
        ],
        description="Accepted raw timestamp formats, tried in order",
    )


class DiagnosticsSettings(BaseSettings):
    """Impact diagnostics configuration"""
    
    model_config = SettingsConfigDict(env_prefix="DIAGNOSTICS_")
    
    review_min_events: int = Field(default=50, description="Raw events above which a partition may be flagged")
    review_max_records: int = Field(default=4, description="Consolidated records at or below which a partition may be flagged")
    review_max_span_minutes: float = Field(default=60.0, description="Wall-clock span below which a partition may be flagged")
    impact_min_events: int = Field(default=10, description="Minimum raw events for a user to enter impact summaries")
    top_n: int = Field(default=20, description="Rows kept in ranked summaries")


class DataLakeSettings(BaseSettings):
    """Data Lake Storage Configuration"""
    
    model_config = SettingsConfigDict(env_prefix="DATA_")
    
    lake_path: str = Field(default="./data", description="Data lake root path")
    raw_path: str = Field(default="./data/raw", description="Raw data zone path")
    curated_path: str = Field(default="./data/curated", description="Curated zone path")
    dead_letter_path: str = Field(default="./data/raw/dead_letter", description="Rejected events path")
    
    default_format: str = Field(default="parquet", description="Default output format: parquet or jsonl")
    compression: str = Field(default="snappy", description="Parquet compression codec")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""
    
    model_config = SettingsConfigDict(env_prefix="")
    
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings
    
    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
    
    # Application
    app_name: str = Field(default="event-consolidation", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")
    
    # Version
    version: str = Field(default="1.0.0", description="Application version")
    
    # Subsystem configurations
    consolidation: ConsolidationSettings = Field(default_factory=ConsolidationSettings)
    diagnostics: DiagnosticsSettings = Field(default_factory=DiagnosticsSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    
    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()
    
    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.
    
    Uses LRU cache to ensure settings are only loaded once.
    
    Returns:
        Settings: Application settings instance
    """
    return Settings()
