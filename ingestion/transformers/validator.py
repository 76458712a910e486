"""
Validation and sanitization of downloaded export rows.

Validation is advisory: it reports issues and never mutates rows.
Sanitization strips markup-injection signatures and never re-validates.
"""

import re
from typing import Any, List, Sequence, Tuple

from schemas.records import Issue, IssueKind, ValidationReport, ValidationStats
import logging

logger = logging.getLogger(__name__)

DUPLICATE_SEPARATOR = "|"

# Detection
_INJECTION_SIGNATURES = (
    ("script tag", re.compile(r"<script", re.IGNORECASE)),
    ("javascript: URI", re.compile(r"javascript:", re.IGNORECASE)),
    ("inline event handler", re.compile(r"\bon\w+\s*=", re.IGNORECASE)),
)

# Sanitization
_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JAVASCRIPT_URI = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)


def _is_empty(row: Sequence[Any]) -> bool:
    return all(str(cell).strip() == "" for cell in row)


def validate(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> ValidationReport:
    """
    Inspect rows without changing them.

    Detects empty rows, exact duplicates (first occurrence kept, later ones
    flagged; empty rows are not duplicate-checked), cells carrying injection
    signatures, and rows whose cell count differs from the header.
    """
    issues: List[Issue] = []
    stats = ValidationStats(total_rows=len(rows))
    seen = set()

    for row_index, row in enumerate(rows):
        if _is_empty(row):
            stats.empty_rows += 1
            issues.append(Issue(
                kind=IssueKind.EMPTY_ROW,
                row_index=row_index,
                message="Row has no values"
            ))
            continue

        if headers and len(row) != len(headers):
            stats.invalid_data += 1
            issues.append(Issue(
                kind=IssueKind.COLUMN_COUNT_MISMATCH,
                row_index=row_index,
                message=f"Row has {len(row)} cells, header has {len(headers)}"
            ))

        key = DUPLICATE_SEPARATOR.join(str(cell) for cell in row)
        if key in seen:
            stats.duplicate_rows += 1
            issues.append(Issue(
                kind=IssueKind.DUPLICATE_ROW,
                row_index=row_index,
                message="Exact duplicate of an earlier row"
            ))
        else:
            seen.add(key)

        for column_index, cell in enumerate(row):
            if not isinstance(cell, str):
                continue
            for label, pattern in _INJECTION_SIGNATURES:
                if pattern.search(cell):
                    stats.invalid_data += 1
                    issues.append(Issue(
                        kind=IssueKind.INVALID_DATA,
                        row_index=row_index,
                        column_index=column_index,
                        message=f"Cell contains {label}"
                    ))
                    break

    if issues:
        logger.info(
            f"Validation found {len(issues)} issues in {stats.total_rows} rows "
            f"(empty={stats.empty_rows}, duplicate={stats.duplicate_rows}, "
            f"invalid={stats.invalid_data})"
        )
    return ValidationReport(issues=issues, stats=stats)


def sanitize_cell(cell: Any) -> Any:
    if not isinstance(cell, str):
        return cell
    cleaned = _SCRIPT_BLOCK.sub("", cell)
    cleaned = _JAVASCRIPT_URI.sub("", cleaned)
    cleaned = _EVENT_HANDLER.sub("", cleaned)
    return cleaned.strip()


def sanitize(rows: Sequence[Sequence[Any]]) -> List[Tuple[Any, ...]]:
    """Return new rows with injection signatures stripped from string cells."""
    return [tuple(sanitize_cell(cell) for cell in row) for row in rows]


class RecordValidator:
    """Validator bound to one report's headers."""

    def __init__(self, headers: Sequence[str]):
        self.headers = tuple(headers)

    def validate(self, rows: Sequence[Sequence[Any]]) -> ValidationReport:
        return validate(self.headers, rows)

    @staticmethod
    def sanitize(rows: Sequence[Sequence[Any]]) -> List[Tuple[Any, ...]]:
        return sanitize(rows)
