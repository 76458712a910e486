"""
Pydantic schemas for report discovery and export job lifecycle
"""

import calendar
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, validator

from core.exceptions import InvalidDateRangeError
from models.base import JobStatus

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def parse_timestamp(value: Any) -> datetime:
    """
    Coerce a value into an aware UTC datetime with whole seconds.

    Strings must already be in ``YYYY-MM-DDTHH:MM:SSZ`` form; upstream
    silently returns empty exports for anything else.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(microsecond=0)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        if not _TIMESTAMP_RE.match(value):
            raise ValueError(f"Timestamp must be formatted YYYY-MM-DDTHH:MM:SSZ, got {value!r}")
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def format_timestamp(value: datetime) -> str:
    return parse_timestamp(value).strftime(TIMESTAMP_FORMAT)


class ReportDescriptor(BaseModel):
    """Report catalog entry returned by discovery"""
    id: str = Field(..., min_length=1)
    name: str = ""
    accessible: bool = False

    class Config:
        frozen = True

    @validator("id", pre=True)
    def coerce_id(cls, v):
        return str(v) if v is not None else v


class DateRange(BaseModel):
    """
    Export date window in whole UTC seconds.

    Use ``DateRange.create`` to get an InvalidDateRangeError instead of a
    pydantic ValidationError.
    """
    start: datetime
    end: datetime

    class Config:
        frozen = True

    @validator("start", "end", pre=True)
    def coerce_timestamp(cls, v):
        return parse_timestamp(v)

    @validator("end")
    def end_after_start(cls, v, values):
        start = values.get("start")
        if start is not None and v < start:
            raise ValueError("end must not be earlier than start")
        return v

    @classmethod
    def create(cls, start: Any, end: Any, now: Optional[datetime] = None) -> "DateRange":
        try:
            date_range = cls(start=start, end=end)
        except ValidationError as e:
            raise InvalidDateRangeError(
                "Invalid export date range",
                context={"start": str(start), "end": str(end)},
                original_exception=e
            )
        date_range.ensure_not_future(now)
        return date_range

    @classmethod
    def for_month(cls, year: int, month: int, now: Optional[datetime] = None) -> "DateRange":
        """Whole calendar month, clamped to ``now`` for the current month."""
        now = parse_timestamp(now or utcnow())
        last_day = calendar.monthrange(year, month)[1]
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        end = datetime(year, month, last_day, 23, 59, 59, tzinfo=timezone.utc)
        if start > now:
            raise InvalidDateRangeError(
                "Month starts in the future",
                context={"year": year, "month": month}
            )
        return cls.create(start, min(end, now), now=now)

    def ensure_not_future(self, now: Optional[datetime] = None) -> None:
        now = parse_timestamp(now or utcnow())
        if self.end > now:
            raise InvalidDateRangeError(
                "Export end date is in the future",
                context={"end": self.end_param, "now": format_timestamp(now)}
            )

    @property
    def start_param(self) -> str:
        return format_timestamp(self.start)

    @property
    def end_param(self) -> str:
        return format_timestamp(self.end)

    def to_params(self) -> Dict[str, str]:
        return {"startDate": self.start_param, "endDate": self.end_param}


class ExportJob(BaseModel):
    """
    Asynchronous export job.

    Status only moves forward (scheduled → running → terminal) and never
    leaves a terminal status.
    """
    report_id: str
    report_name: Optional[str] = None
    job_id: str
    status: JobStatus = JobStatus.SCHEDULED
    result_location: Optional[str] = None
    scheduled_at: datetime = Field(default_factory=utcnow)
    date_range: Optional[DateRange] = None
    error: Optional[str] = None
    row_count: int = 0
    unassigned_count: int = 0
    poll_attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(
        self,
        status: JobStatus,
        result_location: Optional[str] = None,
        error: Optional[str] = None
    ) -> bool:
        """Apply a status transition; returns False if it was ignored."""
        if self.status.is_terminal or status.rank < self.status.rank:
            return False
        self.status = status
        if result_location:
            self.result_location = result_location
        if error:
            self.error = error
        return True
