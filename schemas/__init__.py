"""
Pydantic schemas for data validation and serialization.

Schemas:
    pipeline: Report descriptors, date ranges, export jobs
    rules: Team attribution rule configuration
    records: Validation reports, classified records, team totals
    summary: Run summaries and report payloads
    api: API endpoint response schemas

Usage:
    from schemas.pipeline import DateRange, ExportJob
    from schemas.rules import RuleSetConfig
    from schemas.summary import RunSummary

Example:
    # Month window, clamped to now for the current month
    date_range = DateRange.for_month(2024, 1)
    assert date_range.start_param == "2024-01-01T00:00:00Z"
"""

__all__ = [
    "ReportDescriptor",
    "DateRange",
    "ExportJob",
    "AttributionRule",
    "TeamRules",
    "RuleSetConfig",
    "ValidationReport",
    "ClassifiedRecord",
    "TeamTotals",
    "RunSummary",
    "ReportPayload",
]
