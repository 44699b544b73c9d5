"""
Batch Data Loader

Reads raw event batches and persists consolidated output.
Supports:
- CSV, JSON, JSON Lines and Parquet inputs
- Directory loads with glob patterns
- Curated output as Parquet or JSON Lines
- Dead-letter files for rejected events
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import polars as pl
import structlog

from event_consolidation.config import get_settings
from event_consolidation.consolidation.models import RAW_EVENT_COLUMNS

logger = structlog.get_logger(__name__)
settings = get_settings()

NULL_VALUES = ["", "NULL", "null", "None", "NA", "N/A"]


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    JSON = "json"
    JSONL = "jsonl"
    PARQUET = "parquet"
    
    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "FileFormat":
        suffix = Path(path).suffix.lstrip(".").lower()
        if suffix == "ndjson":
            return cls.JSONL
        try:
            return cls(suffix)
        except ValueError:
            raise ValueError(f"Unsupported file format: {path}") from None


def _timestamp_tag() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


class BatchLoader:
    """
    Raw event reader and consolidated output writer.
    
    Raw files are read without timestamp parsing; the partitioner owns
    timestamp parsing so unparsable values become per-event rejections rather
    than file-level failures.
    
    Example:
        loader = BatchLoader()
        raw = loader.fetch_raw_events("data/raw/events.csv")
        run = ConsolidationEngine().run(raw)
        loader.write_consolidated(run.records)
    """
    
    def __init__(
        self,
        output_path: Optional[str] = None,
        dead_letter_path: Optional[str] = None,
        output_format: Optional[str] = None,
    ):
        self.output_path = Path(output_path or settings.data_lake.curated_path)
        self.dead_letter_path = Path(dead_letter_path or settings.data_lake.dead_letter_path)
        self.output_format = FileFormat(output_format or settings.data_lake.default_format)
        
        if self.output_format not in (FileFormat.PARQUET, FileFormat.JSONL):
            raise ValueError(f"Unsupported output format: {self.output_format.value}")
    
    def _compute_file_hash(self, file_path: Path) -> str:
        """Compute MD5 hash of file for audit logging"""
        hash_md5 = hashlib.md5()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                hash_md5.update(chunk)
        return hash_md5.hexdigest()
    
    def _read_csv(self, file_path: Path) -> pl.DataFrame:
        """Read CSV file; identity and time columns stay as text"""
        return pl.read_csv(
            file_path,
            null_values=NULL_VALUES,
            infer_schema_length=None,
            schema_overrides={"user_id": pl.String, "platform": pl.String, "timestamp": pl.String},
        )
    
    def _read_json(self, file_path: Path) -> pl.DataFrame:
        """Read JSON array file"""
        return pl.read_json(file_path)
    
    def _read_jsonl(self, file_path: Path) -> pl.DataFrame:
        """Read JSON Lines (NDJSON) file"""
        return pl.read_ndjson(file_path)
    
    def _read_parquet(self, file_path: Path) -> pl.DataFrame:
        """Read Parquet file"""
        return pl.read_parquet(file_path)
    
    def fetch_raw_events(
        self,
        file_path: Union[str, Path],
        file_format: Optional[FileFormat] = None,
    ) -> pl.DataFrame:
        """
        Read one raw event batch.
        
        Args:
            file_path: Path to the batch file
            file_format: Format override, inferred from the suffix by default
            
        Returns:
            Raw events DataFrame restricted to the raw event columns
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        
        file_format = FileFormat(file_format) if file_format else FileFormat.from_path(file_path)
        readers = {
            FileFormat.CSV: self._read_csv,
            FileFormat.JSON: self._read_json,
            FileFormat.JSONL: self._read_jsonl,
            FileFormat.PARQUET: self._read_parquet,
        }
        df = readers[file_format](file_path)
        
        logger.info(
            "Read raw events",
            file=str(file_path),
            format=file_format.value,
            rows=len(df),
            file_hash=self._compute_file_hash(file_path),
        )
        
        return df.select([c for c in RAW_EVENT_COLUMNS if c in df.columns])
    
    def load_directory(
        self,
        directory: Union[str, Path],
        file_format: FileFormat,
        pattern: str = "*",
    ) -> pl.DataFrame:
        """
        Read every matching file of a directory into one raw batch.
        
        Args:
            directory: Directory containing batch files
            file_format: File format to read
            pattern: Glob pattern for file matching, without extension
            
        Returns:
            Concatenated raw events, files in name order
        """
        directory = Path(directory)
        file_format = FileFormat(file_format)
        files = sorted(directory.glob(f"{pattern}.{file_format.value}"))
        
        logger.info(
            f"Found {len(files)} files to load",
            directory=str(directory),
            pattern=pattern,
        )
        
        if not files:
            return pl.DataFrame(schema={c: pl.String for c in RAW_EVENT_COLUMNS})
        
        frames = [self.fetch_raw_events(f, file_format) for f in files]
        return pl.concat(frames, how="diagonal_relaxed")
    
    def write_consolidated(
        self,
        records: pl.DataFrame,
        name: str = "events_consolidated",
    ) -> str:
        """Write consolidated records to the curated zone"""
        self.output_path.mkdir(parents=True, exist_ok=True)
        output_file = self.output_path / f"{name}_{_timestamp_tag()}.{self.output_format.value}"
        
        if self.output_format == FileFormat.PARQUET:
            records.write_parquet(output_file, compression=settings.data_lake.compression)
        else:
            records.write_ndjson(output_file)
        
        logger.info("Written consolidated records", file=str(output_file), rows=len(records))
        
        return str(output_file)
    
    def write_dead_letter(
        self,
        rejected: pl.DataFrame,
        source: str = "events",
    ) -> Optional[str]:
        """Write rejected raw events, with their reasons, to the dead-letter zone"""
        if rejected.is_empty():
            return None
        
        self.dead_letter_path.mkdir(parents=True, exist_ok=True)
        dead_letter_file = self.dead_letter_path / f"{source}_{_timestamp_tag()}.parquet"
        
        rejected = rejected.with_columns(
            pl.lit(datetime.now(timezone.utc)).alias("_failed_at"),
        )
        rejected.write_parquet(dead_letter_file)
        
        logger.warning(
            "Written rejected events to dead letter queue",
            file=str(dead_letter_file),
            records=len(rejected),
        )
        
        return str(dead_letter_file)
    

def create_batch_loader() -> BatchLoader:
    """Create a BatchLoader configured from settings"""
    return BatchLoader(
        output_path=settings.data_lake.curated_path,
        dead_letter_path=settings.data_lake.dead_letter_path,
        output_format=settings.data_lake.default_format,
    )
