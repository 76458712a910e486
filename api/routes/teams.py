"""
Team attribution totals endpoint
"""

from decimal import Decimal
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_rule_set
from ingestion.transformers.attribution import RuleSet, format_team_name
from models.pipeline_run import PipelineRun
from models.team_totals import TeamTotalsRecord
from schemas.api import SkuInfo, TeamTotalsInfo, TeamsResponse
from schemas.rules import UNASSIGNED

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Teams"])


async def _latest_run_with_totals(db: AsyncSession) -> Optional[str]:
    result = await db.execute(
        select(PipelineRun.run_id)
        .join(TeamTotalsRecord, TeamTotalsRecord.run_id == PipelineRun.run_id)
        .order_by(PipelineRun.started_at.desc(), PipelineRun.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


@router.get("/teams", response_model=TeamsResponse)
async def get_teams(
    run_id: Optional[str] = Query(None, description="Run to report; defaults to the latest run with totals"),
    db: AsyncSession = Depends(get_db),
    rule_set: RuleSet = Depends(get_rule_set)
):
    """
    Team totals for a run.

    Returns revenue and conversions per team, highest revenue first, plus the
    share of revenue that stayed Unassigned. Display names, descriptions and
    revenue targets come from the configured team rules.
    """
    if run_id is None:
        run_id = await _latest_run_with_totals(db)
        if run_id is None:
            return TeamsResponse()

    result = await db.execute(
        select(TeamTotalsRecord).where(TeamTotalsRecord.run_id == run_id)
    )
    records = result.scalars().all()
    if not records:
        raise HTTPException(status_code=404, detail=f"No team totals for run {run_id}")

    teams = []
    total_revenue = Decimal("0")
    unassigned_revenue = Decimal("0")
    for record in records:
        revenue = Decimal(str(record.revenue or 0))
        total_revenue += revenue
        if record.team_id == UNASSIGNED:
            unassigned_revenue += revenue
        team = rule_set.teams.get(record.team_id)
        target = team.target if team is not None and team.target > 0 else None
        if record.team_id == UNASSIGNED:
            display_name = UNASSIGNED
        elif team is not None and team.display_name:
            display_name = team.display_name
        else:
            display_name = format_team_name(record.team_id)

        teams.append(TeamTotalsInfo(
            team_id=record.team_id,
            display_name=display_name,
            description=team.description if team is not None else "",
            revenue=revenue,
            conversion_count=record.conversion_count,
            target=target,
            percent_of_target=(revenue / target * 100).quantize(Decimal("0.1")) if target else None,
            sku_totals=[SkuInfo(**entry) for entry in (record.sku_totals or [])]
        ))

    teams.sort(key=lambda t: t.revenue, reverse=True)
    coverage = unassigned_revenue / total_revenue if total_revenue else Decimal("0")

    return TeamsResponse(
        run_id=run_id,
        teams=teams,
        total_revenue=total_revenue,
        unassigned_revenue=unassigned_revenue,
        attribution_coverage=coverage
    )
