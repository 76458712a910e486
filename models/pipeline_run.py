from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, Index, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, RunStatus


class PipelineRun(Base):
    """
    Tracks metadata for each pipeline execution.

    Purpose:
    - Audit trail of all runs and their summaries
    - Resume point for interrupted runs (see ExportJobRecord)
    - Attribution coverage over time
    """
    __tablename__ = "pipeline_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(String(36), unique=True, nullable=False, index=True)

    status = Column(Enum(RunStatus), default=RunStatus.RUNNING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Summary counters
    scheduled = Column(Integer, default=0)
    succeeded = Column(Integer, default=0)
    failed = Column(Integer, default=0)
    pending = Column(Integer, default=0)
    total_rows = Column(Integer, default=0)
    unassigned_count = Column(Integer, default=0)

    # Error tracking
    error_message = Column(Text, nullable=True)
    failures = Column(JSON, nullable=True)

    # Request counters captured from the gateway
    api_metrics = Column(JSON, nullable=True)

    jobs = relationship(
        "ExportJobRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="ExportJobRecord.position"
    )

    __table_args__ = (
        Index("idx_pipeline_run_status", "status", "started_at"),
    )
