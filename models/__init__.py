"""
SQLAlchemy ORM models for database tables.

Models:
    base: Declarative base and shared enums (JobStatus, RunStatus)
    pipeline_run: One row per pipeline execution with its summary
    export_job: Export job state per run, used to resume interrupted runs
    team_totals: Aggregated revenue per team per run
    classified_record: Sanitized rows with their team attribution

Usage:
    from models.pipeline_run import PipelineRun
    from models.export_job import ExportJobRecord
    from models.base import JobStatus, RunStatus

Relationships:
    - PipelineRun → ExportJobRecord (one-to-many, ordered by position)
"""

__all__ = [
    "Base",
    "JobStatus",
    "RunStatus",
    "PipelineRun",
    "ExportJobRecord",
    "TeamTotalsRecord",
    "ClassifiedRow",
]
