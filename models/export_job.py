from sqlalchemy import Column, BigInteger, Integer, String, Enum, DateTime, Text, Index, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, JobStatus


class ExportJobRecord(Base):
    """
    Persisted export job state for resume-on-interrupt.

    Purpose:
    - Re-enter the processing phase without re-scheduling
    - Skip jobs that already reached a terminal status

    Design:
    - One row per (run, job); position keeps discovery order
    - status is only ever written forward
    """
    __tablename__ = "export_jobs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(String(36), ForeignKey("pipeline_runs.run_id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    # Job identification
    report_id = Column(String(255), nullable=False)
    report_name = Column(String(500), nullable=True)
    job_id = Column(String(255), nullable=False)

    # Lifecycle
    status = Column(Enum(JobStatus), default=JobStatus.SCHEDULED, nullable=False)
    result_location = Column(String(2048), nullable=True)
    scheduled_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    date_range = Column(JSON, nullable=True)  # {"start": ..., "end": ...}
    error = Column(Text, nullable=True)
    row_count = Column(Integer, default=0)
    unassigned_count = Column(Integer, default=0)
    poll_attempts = Column(Integer, default=0)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    run = relationship("PipelineRun", back_populates="jobs")

    __table_args__ = (
        Index("idx_export_job_run_job", "run_id", "job_id", unique=True),
    )
