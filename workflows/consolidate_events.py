"""
Prefect Workflow Orchestration - Event Consolidation

Batch workflow that turns a raw event drop into the consolidated stream:
- Raw and output data quality checks
- Consolidation with a structured run report
- Curated output and dead-letter persistence
- Impact diagnostics and alerting
"""

from pathlib import Path
from typing import Optional

import polars as pl
from prefect import flow, task, get_run_logger

from event_consolidation.config import get_settings
from event_consolidation.consolidation import BatchAbortedError, ConsolidationEngine, ConsolidationRun
from event_consolidation.ingestion import FileFormat, create_batch_loader
from event_consolidation.quality.diagnostics import build_diagnostics
from event_consolidation.quality.validators import (
    ValidationStatus,
    create_consolidated_validator,
    create_raw_events_validator,
)

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="load_raw_events",
    description="Load the raw event batch",
    retries=3,
    retry_delay_seconds=60,
)
def load_raw_events(source: str, file_format: str = "csv") -> pl.DataFrame:
    """Load a raw batch from a file or every matching file of a directory"""
    logger = get_run_logger()
    loader = create_batch_loader()
    
    path = Path(source)
    if path.is_dir():
        df = loader.load_directory(path, FileFormat(file_format))
    else:
        df = loader.fetch_raw_events(path)
    
    logger.info(f"Loaded {len(df)} raw events from {source}")
    return df


@task(
    name="validate_data",
    description="Run data quality validations",
)
def validate_data(data_type: str, df: pl.DataFrame) -> dict:
    """Validate raw or consolidated events"""
    logger = get_run_logger()
    
    if data_type == "raw_events":
        validator = create_raw_events_validator()
    elif data_type == "consolidated":
        validator = create_consolidated_validator()
    else:
        raise ValueError(f"Unknown data type: {data_type}")
    
    result = validator.validate(df)
    
    logger.info(
        f"Validation {result.status.value}: "
        f"{result.passed_checks}/{result.total_checks} checks passed"
    )
    
    return {
        "passed": result.status != ValidationStatus.FAILED,
        "status": result.status.value,
        "total_checks": result.total_checks,
        "passed_checks": result.passed_checks,
        "failed_checks": result.failed_checks,
        "success_rate": result.success_rate,
        "failures": [c.name for c in result.checks if not c.passed],
    }


@task(
    name="consolidate_events",
    description="Collapse raw events into bucketed sessions",
)
def consolidate_events(df: pl.DataFrame) -> ConsolidationRun:
    """Run the consolidation engine over the full batch"""
    logger = get_run_logger()
    
    run = ConsolidationEngine().run(df)
    report = run.report
    
    logger.info(
        f"Consolidation complete: {report.input_events} -> {report.output_records} records, "
        f"{report.skipped_events} skipped, {len(report.failed_partitions)} partitions failed"
    )
    
    return run


@task(
    name="persist_outputs",
    description="Write curated records and dead-letter events",
)
def persist_outputs(run: ConsolidationRun) -> dict:
    """Persist consolidated records and rejected raw events"""
    loader = create_batch_loader()
    
    return {
        "output_path": loader.write_consolidated(run.records),
        "dead_letter_path": loader.write_dead_letter(run.rejected_events),
    }


@task(
    name="build_diagnostics",
    description="Compare raw and consolidated counts",
)
def diagnose(raw: pl.DataFrame, records: pl.DataFrame) -> dict:
    """Summarise consolidation impact"""
    logger = get_run_logger()
    
    report = build_diagnostics(raw, records)
    
    logger.info(
        f"Diagnostics: {report.total_events_reduced} events reduced "
        f"({report.reduction_percentage}%), {report.flagged_count} partitions flagged"
    )
    
    return {
        "events_reduced": report.total_events_reduced,
        "reduction_percentage": report.reduction_percentage,
        "flagged_partitions": report.flagged.select(
            "user_id", "platform", "date", "original_events", "updated_events", "usage_assessment"
        ).to_dicts(),
        "platform_impact": report.platform_impact.to_dicts(),
    }


@task(
    name="send_alert",
    description="Send alert notification",
)
def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="consolidate_events",
    description="Batch consolidation of the raw event log",
)
def consolidate_events_flow(
    source: Optional[str] = None,
    file_format: str = "csv",
    with_diagnostics: bool = True,
) -> dict:
    """
    Event consolidation pipeline.
    
    Steps:
    1. Load the raw batch
    2. Validate raw events
    3. Consolidate
    4. Validate consolidated records
    5. Persist curated output and rejected events
    6. Build impact diagnostics
    """
    logger = get_run_logger()
    source = source or settings.data_lake.raw_path
    
    results = {"source": source, "steps": {}}
    
    raw = load_raw_events(source, file_format)
    results["steps"]["raw_validation"] = validate_data("raw_events", raw)
    
    try:
        run = consolidate_events(raw)
    except BatchAbortedError as e:
        send_alert("Consolidation Aborted", str(e), severity="critical")
        results["status"] = "aborted"
        results["error"] = str(e)
        raise
    
    results["steps"]["run"] = run.report.summary()
    
    output_validation = validate_data("consolidated", run.records)
    results["steps"]["output_validation"] = output_validation
    if not output_validation["passed"]:
        send_alert(
            "Consolidated Output Invalid",
            f"Failed checks: {output_validation['failures']}",
            severity="critical",
        )
        results["status"] = "failed"
        return results
    
    results["steps"]["persist"] = persist_outputs(run)
    
    if run.report.failed_partitions:
        send_alert(
            "Partitions Failed",
            f"{len(run.report.failed_partitions)} partitions were left out of the output",
            severity="high",
        )
    
    if with_diagnostics:
        results["steps"]["diagnostics"] = diagnose(raw, run.records)
    
    results["status"] = "partial" if run.report.has_failures else "success"
    logger.info(f"Consolidation flow finished with status {results['status']}")
    
    return results


if __name__ == "__main__":
    from event_consolidation.config.logging import configure_logging
    
    configure_logging()
    consolidate_events_flow()
