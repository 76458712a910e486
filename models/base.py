from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class JobStatus(str, enum.Enum):
    """Canonical export job status"""
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Ordering used to keep transitions monotonic."""
        if self is JobStatus.SCHEDULED:
            return 0
        if self is JobStatus.RUNNING:
            return 1
        return 2


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMED_OUT})


class RunStatus(str, enum.Enum):
    """Pipeline run status"""
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    INTERRUPTED = "interrupted"
    FAILED = "failed"
