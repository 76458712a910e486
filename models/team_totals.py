from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Numeric, Index, JSON
from datetime import datetime
from models.base import Base


class TeamTotalsRecord(Base):
    """
    Aggregated revenue per team for one pipeline run.

    sku_totals keeps first-encounter order as a JSON list of
    {"sku", "units", "revenue"} entries.
    """
    __tablename__ = "team_totals"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(String(36), nullable=False, index=True)
    team_id = Column(String(200), nullable=False)

    revenue = Column(Numeric(18, 2), nullable=False, default=0)
    conversion_count = Column(Integer, nullable=False, default=0)
    sku_totals = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_team_totals_run_team", "run_id", "team_id", unique=True),
    )
