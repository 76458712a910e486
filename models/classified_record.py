from sqlalchemy import Column, String, BigInteger, Integer, DateTime, Index, JSON
from datetime import datetime
from models.base import Base


class ClassifiedRow(Base):
    """
    Sanitized export row with its team attribution.

    Purpose:
    - Audit trail for which rule attributed each row
    - Operator review of Unassigned rows (team_id is NULL)

    Design Decisions:
    - cells stored as a JSON object keyed by header, in header order
    - matched_rule keeps kind/pattern/priority_rank of the winning rule
    """
    __tablename__ = "classified_rows"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    run_id = Column(String(36), nullable=False, index=True)
    report_id = Column(String(255), nullable=False, index=True)
    row_index = Column(Integer, nullable=False)

    cells = Column(JSON, nullable=False)
    team_id = Column(String(200), nullable=True, index=True)
    matched_rule = Column(JSON, nullable=True)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_classified_run_report", "run_id", "report_id", "row_index", unique=True),
    )
