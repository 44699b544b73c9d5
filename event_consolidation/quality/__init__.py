"""
Data Quality Module
"""
from .validators import DataValidator, ValidationResult
from .diagnostics import DiagnosticsReport, ReviewThresholds, build_diagnostics, compare_partitions

__all__ = [
    "DataValidator",
    "ValidationResult",
    "DiagnosticsReport",
    "ReviewThresholds",
    "build_diagnostics",
    "compare_partitions",
]
