"""
Data Validation Module

Rule-based quality checks over raw and consolidated event frames.

Features:
- Null and uniqueness checks
- Range and allowed-value checks
- Custom frame-level rules (id contiguity, per-partition cardinality)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog

from event_consolidation.config import get_settings
from event_consolidation.consolidation.models import PARTITION_COLUMNS, PLATFORMS

logger = structlog.get_logger(__name__)
settings = get_settings()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Critical - blocks pipeline
    WARNING = "warning"  # Non-critical - logged but continues
    INFO = "info"  # Informational only


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    
    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100


def _missing_column(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
    return ValidationCheck(
        name=name,
        passed=False,
        severity=severity,
        message=f"Column '{column}' not found",
    )


class DataValidator:
    """
    Chainable validator for event frames.
    
    Example:
        validator = DataValidator()
        validator.add_not_null_check("user_id")
        validator.add_range_check("volume", min_value=0)
        result = validator.validate(df)
    """
    
    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Fail on any warning
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []
    
    def _add_row_check(
        self,
        name: str,
        column: str,
        severity: ValidationSeverity,
        count_failed: Callable[[pl.DataFrame], int],
        problem: str,
    ) -> "DataValidator":
        """Register a check that fails when any row of `column` is counted as bad"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return _missing_column(name, column, severity)
            
            failed = int(count_failed(df))
            return ValidationCheck(
                name=name,
                passed=failed == 0,
                severity=severity,
                message=f"Column '{column}' has {failed} {problem}" if failed else f"Column '{column}' has no {problem}",
                details={"failed_count": failed},
                failed_rows=failed,
                total_rows=len(df),
            )
        
        self._checks.append(check)
        return self
    
    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null values in column"""
        return self._add_row_check(
            f"not_null_{column}", column, severity,
            lambda df: df[column].null_count(),
            "null values",
        )
    
    def add_unique_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for uniqueness of column values"""
        return self._add_row_check(
            f"unique_{column}", column, severity,
            lambda df: len(df) - df[column].n_unique(),
            "duplicate values",
        )
    
    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values within [min_value, max_value]; nulls are not counted"""
        outside = pl.lit(False)
        if min_value is not None:
            outside = outside | (pl.col(column) < min_value)
        if max_value is not None:
            outside = outside | (pl.col(column) > max_value)
        
        def count_failed(df: pl.DataFrame) -> int:
            # Text columns cannot be compared; every value counts as out of range
            if not df.schema[column].is_numeric():
                return len(df) - df[column].null_count()
            return df.filter(outside).height
        
        return self._add_row_check(
            f"range_{column}", column, severity, count_failed,
            f"values outside [{min_value}, {max_value}]",
        )
    
    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values in allowed set"""
        invalid = ~pl.col(column).is_in(allowed_values) & pl.col(column).is_not_null()
        return self._add_row_check(
            f"enum_{column}", column, severity,
            lambda df: df.filter(invalid).height,
            "values outside the allowed set",
        )
    
    def add_custom_check(
        self,
        name: str,
        check_func: Callable[[pl.DataFrame], bool],
        message_on_fail: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add custom validation check; an exception in check_func fails the check"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            try:
                passed = bool(check_func(df))
            except Exception as e:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"Check failed with error: {str(e)}",
                )
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message="Check passed" if passed else message_on_fail,
                total_rows=len(df),
            )
        
        self._checks.append(check)
        return self
    
    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all registered checks on a frame.
        
        Errors fail the run; warnings give a partial status, or fail it in
        strict mode.
        """
        started_at = _utcnow()
        logger.info("Running validation checks", checks=len(self._checks), rows=len(df))
        
        results = [check_func(df) for check_func in self._checks]
        for result in results:
            if not result.passed:
                logger.warning(
                    "Validation check failed",
                    check=result.name,
                    message=result.message,
                    severity=result.severity.value,
                )
        
        failures = [r for r in results if not r.passed]
        failed_checks = sum(1 for r in failures if r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in failures if r.severity == ValidationSeverity.WARNING)
        
        if failed_checks or (warning_count and self.strict_mode):
            status = ValidationStatus.FAILED
        elif warning_count:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED
        
        logger.info(
            f"Validation complete: {status.value}",
            passed=len(results) - len(failures),
            failed=failed_checks,
            warnings=warning_count,
        )
        
        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=len(results) - len(failures),
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=_utcnow(),
        )


def _ids_are_contiguous(df: pl.DataFrame) -> bool:
    if df.is_empty():
        return True
    return df["id"].to_list() == list(range(1, df.height + 1))


def _within_bucket_bound(bucket_count: int) -> Callable[[pl.DataFrame], bool]:
    def check(df: pl.DataFrame) -> bool:
        if df.is_empty():
            return True
        largest = df.group_by(PARTITION_COLUMNS).len()["len"].max()
        return largest <= bucket_count
    return check


# Pre-built validators
def create_raw_events_validator() -> DataValidator:
    """
    Validator for raw batches before consolidation.
    
    Null identities are expected and only reported as warnings; the engine
    filters them.
    """
    return (
        DataValidator()
        .add_not_null_check("user_id", severity=ValidationSeverity.WARNING)
        .add_not_null_check("timestamp", severity=ValidationSeverity.WARNING)
        .add_enum_check("platform", PLATFORMS, severity=ValidationSeverity.WARNING)
        .add_range_check("volume", min_value=0, severity=ValidationSeverity.WARNING)
        .add_range_check("fee", min_value=0, severity=ValidationSeverity.WARNING)
    )


def create_consolidated_validator(bucket_count: Optional[int] = None) -> DataValidator:
    """Validator for consolidated records"""
    if bucket_count is None:
        bucket_count = settings.consolidation.bucket_count
    
    return (
        DataValidator()
        .add_not_null_check("id")
        .add_unique_check("id")
        .add_not_null_check("user_id")
        .add_not_null_check("representative_timestamp")
        .add_enum_check("platform", PLATFORMS)
        .add_range_check("bucket", min_value=1, max_value=bucket_count)
        .add_range_check("volume", min_value=0)
        .add_range_check("fee", min_value=0)
        .add_custom_check(
            name="ids_contiguous",
            check_func=_ids_are_contiguous,
            message_on_fail="Ids are not numbered 1..n in row order",
        )
        .add_custom_check(
            name="partition_cardinality",
            check_func=_within_bucket_bound(bucket_count),
            message_on_fail=f"A partition has more than {bucket_count} records",
        )
    )
