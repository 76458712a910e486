"""
Pydantic schemas for validated, classified and aggregated rows
"""

import enum
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from schemas.rules import AttributionRule, UNASSIGNED


class IssueKind(str, enum.Enum):
    EMPTY_ROW = "empty_row"
    DUPLICATE_ROW = "duplicate_row"
    INVALID_DATA = "invalid_data"
    COLUMN_COUNT_MISMATCH = "column_count_mismatch"


class Issue(BaseModel):
    """Advisory finding; row_index/column_index are 0-based (header excluded)."""
    kind: IssueKind
    row_index: int
    column_index: Optional[int] = None
    message: str

    class Config:
        frozen = True


class ValidationStats(BaseModel):
    total_rows: int = 0
    empty_rows: int = 0
    duplicate_rows: int = 0
    invalid_data: int = 0


class ValidationReport(BaseModel):
    issues: List[Issue] = Field(default_factory=list)
    stats: ValidationStats = Field(default_factory=ValidationStats)

    @property
    def is_valid(self) -> bool:
        return not self.issues


class ClassifiedRecord(BaseModel):
    """A sanitized row with the team it was attributed to."""
    row_index: int
    headers: Tuple[str, ...]
    cells: Tuple[str, ...]
    team_id: Optional[str] = None
    matched_rule: Optional[AttributionRule] = None

    class Config:
        frozen = True

    @property
    def team_label(self) -> str:
        return self.team_id or UNASSIGNED

    def as_dict(self) -> Dict[str, str]:
        return dict(zip(self.headers, self.cells))


class SkuTotals(BaseModel):
    units: Decimal = Decimal("0")
    revenue: Decimal = Decimal("0")


class TeamTotals(BaseModel):
    """Per-team totals; sku_totals preserves first-encounter order."""
    team_id: str
    revenue: Decimal = Decimal("0")
    conversion_count: int = 0
    sku_totals: Dict[str, SkuTotals] = Field(default_factory=dict)

    @property
    def average_order_value(self) -> Decimal:
        if not self.conversion_count:
            return Decimal("0")
        return self.revenue / self.conversion_count
