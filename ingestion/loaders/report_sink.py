"""
Reporting collaborators that receive processed reports and team totals.

Rendering is out of scope here; sinks store what the pipeline produced.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Protocol, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import PersistenceError
from models.classified_record import ClassifiedRow
from models.team_totals import TeamTotalsRecord
from schemas.records import SkuTotals, TeamTotals
from schemas.summary import ReportPayload, RunSummary
import logging

logger = logging.getLogger(__name__)


class ReportSink(Protocol):
    async def publish_report(self, payload: ReportPayload) -> None:
        ...

    async def publish_team_totals(
        self,
        run_id: str,
        totals: Dict[str, TeamTotals],
        summary: RunSummary
    ) -> None:
        ...


class InMemoryReportSink:
    """Collects everything published; used by tests and dry runs."""

    def __init__(self):
        self.reports: List[ReportPayload] = []
        self.team_totals: List[Tuple[str, Dict[str, TeamTotals], RunSummary]] = []

    async def publish_report(self, payload: ReportPayload) -> None:
        self.reports.append(payload)

    async def publish_team_totals(
        self,
        run_id: str,
        totals: Dict[str, TeamTotals],
        summary: RunSummary
    ) -> None:
        self.team_totals.append((run_id, dict(totals), summary))


def sku_rows(sku_totals: Dict[str, SkuTotals]) -> List[Dict[str, str]]:
    return [
        {"sku": sku, "units": str(totals.units), "revenue": str(totals.revenue)}
        for sku, totals in sku_totals.items()
    ]


def merge_team_totals(record: TeamTotalsRecord, totals: TeamTotals) -> None:
    """Add a run segment's totals onto a stored record, keeping SKU order."""
    record.revenue = Decimal(str(record.revenue or 0)) + totals.revenue
    record.conversion_count = (record.conversion_count or 0) + totals.conversion_count

    merged: Dict[str, SkuTotals] = {}
    for entry in record.sku_totals or []:
        merged[entry["sku"]] = SkuTotals(units=Decimal(entry["units"]), revenue=Decimal(entry["revenue"]))
    for sku, sku_totals in totals.sku_totals.items():
        current = merged.setdefault(sku, SkuTotals())
        current.units += sku_totals.units
        current.revenue += sku_totals.revenue
    record.sku_totals = sku_rows(merged)


class DatabaseReportSink:
    """
    Store classified rows and team totals with SQLAlchemy.

    Rows for the same (run, report) are replaced. Team totals are added onto
    any totals already stored for the run, so a resumed run (same run_id)
    extends the totals of the interrupted part; each job is aggregated in
    exactly one part.

    A failed write is rolled back and raised as PersistenceError, leaving the
    session usable for the run record.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def publish_report(self, payload: ReportPayload) -> None:
        try:
            await self.db.execute(
                delete(ClassifiedRow).where(
                    ClassifiedRow.run_id == payload.run_id,
                    ClassifiedRow.report_id == payload.report_id
                )
            )

            now = datetime.utcnow()
            for record in payload.records:
                rule = record.matched_rule
                self.db.add(ClassifiedRow(
                    run_id=payload.run_id,
                    report_id=payload.report_id,
                    row_index=record.row_index,
                    cells=record.as_dict(),
                    team_id=record.team_id,
                    matched_rule=(
                        {"kind": rule.kind.value, "pattern": rule.pattern, "priority_rank": rule.priority_rank}
                        if rule else None
                    ),
                    ingested_at=now
                ))

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(
                "Failed to store classified rows",
                context={"run_id": payload.run_id, "report_id": payload.report_id, "operation": "publish_report"},
                original_exception=e
            )

        logger.info(f"Stored {len(payload.records)} classified rows for report {payload.report_id}")

    async def publish_team_totals(
        self,
        run_id: str,
        totals: Dict[str, TeamTotals],
        summary: RunSummary
    ) -> None:
        try:
            result = await self.db.execute(
                select(TeamTotalsRecord).where(TeamTotalsRecord.run_id == run_id)
            )
            existing = {record.team_id: record for record in result.scalars().all()}

            now = datetime.utcnow()
            for team_totals in totals.values():
                record = existing.get(team_totals.team_id)
                if record is None:
                    record = TeamTotalsRecord(
                        run_id=run_id,
                        team_id=team_totals.team_id,
                        revenue=Decimal("0"),
                        conversion_count=0,
                        sku_totals=[],
                        created_at=now
                    )
                    self.db.add(record)
                merge_team_totals(record, team_totals)

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(
                "Failed to store team totals",
                context={"run_id": run_id, "teams": len(totals), "operation": "publish_team_totals"},
                original_exception=e
            )

        logger.info(
            f"Stored totals for {len(totals)} teams "
            f"({summary.unassigned_count} unassigned conversions)"
        )
