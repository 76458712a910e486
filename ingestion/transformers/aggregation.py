"""
Aggregate classified records into per-team totals.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ingestion.parsing import FieldMap
from schemas.records import ClassifiedRecord, SkuTotals, TeamTotals
from schemas.rules import UNASSIGNED
import logging

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a money/quantity cell such as ``$1,234.50``; None if unparseable."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).replace("$", "").replace(",", "").strip()
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


class AggregationEngine:
    """
    Fold classified records into TeamTotals.

    Totals are owned by one run; Unassigned records accumulate into a
    reserved bucket so attribution coverage can be audited. Team and SKU
    order is first-encounter order.
    """

    def __init__(self, field_map: Optional[FieldMap] = None):
        self.field_map = field_map or FieldMap()
        self.totals: Dict[str, TeamTotals] = {}
        self._positions: Dict[Tuple[str, ...], Dict[str, int]] = {}

    def _resolve(self, headers: Tuple[str, ...]) -> Dict[str, int]:
        if headers not in self._positions:
            self._positions[headers] = self.field_map.resolve(headers)
        return self._positions[headers]

    def add(self, record: ClassifiedRecord) -> None:
        positions = self._resolve(record.headers)
        team_id = record.team_label

        raw_revenue = FieldMap.value(record.cells, positions.get("revenue"))
        revenue = parse_amount(raw_revenue)
        if revenue is None:
            if raw_revenue:
                logger.debug(f"Unparseable revenue {raw_revenue!r} in row {record.row_index}; counting 0")
            revenue = ZERO

        totals = self.totals.get(team_id)
        if totals is None:
            totals = self.totals[team_id] = TeamTotals(team_id=team_id)
        totals.conversion_count += 1
        totals.revenue += revenue

        sku = FieldMap.value(record.cells, positions.get("sku"))
        if not sku:
            return

        units = parse_amount(FieldMap.value(record.cells, positions.get("quantity")))
        if units is None:
            units = ONE

        sku_totals = totals.sku_totals.get(sku)
        if sku_totals is None:
            sku_totals = totals.sku_totals[sku] = SkuTotals()
        sku_totals.units += units
        sku_totals.revenue += revenue

    def accumulate(self, records: Iterable[ClassifiedRecord]) -> Dict[str, TeamTotals]:
        for record in records:
            self.add(record)
        return self.totals

    @property
    def total_revenue(self) -> Decimal:
        return sum((t.revenue for t in self.totals.values()), ZERO)

    @property
    def unassigned_revenue(self) -> Decimal:
        bucket = self.totals.get(UNASSIGNED)
        return bucket.revenue if bucket else ZERO

    @property
    def unassigned_count(self) -> int:
        bucket = self.totals.get(UNASSIGNED)
        return bucket.conversion_count if bucket else 0

    def attribution_coverage(self) -> Decimal:
        """Share of revenue left Unassigned (0 when there is no revenue)."""
        total = self.total_revenue
        if not total:
            return ZERO
        return self.unassigned_revenue / total

    def top_teams(self, limit: int = 5, include_unassigned: bool = False) -> List[TeamTotals]:
        teams = [
            t for t in self.totals.values()
            if include_unassigned or t.team_id != UNASSIGNED
        ]
        return sorted(teams, key=lambda t: t.revenue, reverse=True)[:limit]

    def top_skus(self, team_id: str, limit: int = 5) -> List[Tuple[str, SkuTotals]]:
        totals = self.totals.get(team_id)
        if totals is None:
            return []
        return sorted(totals.sku_totals.items(), key=lambda item: item[1].revenue, reverse=True)[:limit]


def aggregate(records: Iterable[ClassifiedRecord], field_map: Optional[FieldMap] = None) -> Dict[str, TeamTotals]:
    """Pure fold of records into a fresh team → TeamTotals mapping."""
    return AggregationEngine(field_map).accumulate(records)
