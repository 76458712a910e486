"""
Pipeline Runner - orchestrates discover → schedule → process → finalize.

This module provides resilient run orchestration with:
- Per-item failure capture (one report's failure never aborts the others)
- Sequential processing sharing one circuit breaker, retry executor and throttle
- Deadline checks between items, with job state persisted for resume
- A structured RunSummary for every run, including partial failures

Only an empty catalog or zero successful schedules are fatal to a run.
"""

import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, settings as default_settings
from core.exceptions import (
    ConfigError,
    InvalidDateRangeError,
    MalformedResponseError,
    NoJobsScheduledError,
    PersistenceError,
    PipelineException,
)
from ingestion.checkpoint import JobStore
from ingestion.gateway import APIGateway
from ingestion.loaders.report_sink import DatabaseReportSink, InMemoryReportSink, ReportSink
from ingestion.parsing import FieldMap, parse_delimited
from ingestion.poller import JobPoller
from ingestion.transformers.aggregation import AggregationEngine
from ingestion.transformers.attribution import AttributionEngine, RuleSet, load_rule_set
from ingestion.transformers.validator import RecordValidator
from models.base import JobStatus, RunStatus
from schemas.pipeline import DateRange, ExportJob, ReportDescriptor, format_timestamp, utcnow
from schemas.summary import ItemFailure, ReportPayload, RunResult, RunSummary
import logging

logger = logging.getLogger(__name__)


class PipelineRunner:
    """
    Run orchestrator.

    Responsibilities:
    - Validate configuration before any network call
    - Drive reports through the gateway and poller, in discovery order
    - Validate, sanitize, attribute and aggregate each downloaded export
    - Hand results to the report sink and record the run

    The gateway, poller and attribution engine are injected; one runner
    instance serves one run (or one resume of it).
    """

    def __init__(
        self,
        gateway,
        rule_set: Optional[RuleSet] = None,
        settings: Optional[Settings] = None,
        sink: Optional[ReportSink] = None,
        job_store: Optional[JobStore] = None,
        poller: Optional[JobPoller] = None,
        field_map: Optional[FieldMap] = None,
        date_range: Optional[DateRange] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.settings = settings or default_settings
        self.gateway = gateway
        self.field_map = field_map or FieldMap()
        self.rule_set = rule_set if rule_set is not None else RuleSet.empty()
        self.attribution = AttributionEngine(self.rule_set, self.field_map)
        self.sink = sink if sink is not None else InMemoryReportSink()
        self.job_store = job_store
        self.sleep = sleep or asyncio.sleep
        self.clock = clock or time.monotonic
        self.poller = poller or JobPoller(gateway, self.settings.polling_policy, sleep=self.sleep)
        self.date_range = date_range
        self.run_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self, deadline: Optional[float] = None) -> RunResult:
        """
        Execute a full run.

        Args:
            deadline: Absolute ``clock()`` value after which no new item is
                started; defaults to now + MAX_EXECUTION_SECONDS

        Raises:
            ConfigError: Invalid configuration (nothing was sent)
            EmptyCatalogError: No accessible report to export
            NoJobsScheduledError: Every schedule request failed
        """
        date_range = self._prepare()
        deadline = self._deadline(deadline)
        self.run_id = str(uuid.uuid4())
        failures: List[ItemFailure] = []

        logger.info(f"Starting pipeline run {self.run_id}")
        await self._start_run()

        try:
            # --------------------------------------------------
            # PHASE 1: DISCOVER
            # --------------------------------------------------
            reports = await self.gateway.discover_reports()

            # --------------------------------------------------
            # PHASE 2: SCHEDULE
            # --------------------------------------------------
            jobs = await self._schedule(reports, date_range, failures)
            if not jobs:
                raise NoJobsScheduledError(
                    "No export job could be scheduled",
                    context={"reports": len(reports), "failures": len(failures)}
                )
        except Exception as e:
            logger.error(f"Pipeline run {self.run_id} failed: {getattr(e, 'message', e)}")
            await self._record_fatal(failures, e)
            raise

        await self._checkpoint(jobs, failures)
        return await self._process(jobs, failures, deadline, scheduled=len(jobs))

    async def resume(
        self,
        jobs: List[ExportJob],
        run_id: Optional[str] = None,
        deadline: Optional[float] = None,
        failures: Optional[List[ItemFailure]] = None
    ) -> RunResult:
        """
        Re-enter the processing phase with a prior job list.

        Terminal jobs are never re-polled, re-downloaded or re-scheduled;
        completed ones count towards ``succeeded`` with their stored row and
        unassigned counts. ``failures`` carries the earlier part's failures
        into this part's summary.
        """
        self._prepare()
        deadline = self._deadline(deadline)
        self.run_id = run_id or str(uuid.uuid4())

        logger.info(
            f"Resuming pipeline run {self.run_id} with {len(jobs)} jobs "
            f"({sum(1 for j in jobs if not j.is_terminal)} pending)"
        )
        await self._start_run()
        return await self._process(jobs, list(failures or []), deadline, scheduled=len(jobs))

    async def resume_latest(self, deadline: Optional[float] = None) -> Optional[RunResult]:
        """Resume the most recent interrupted run, if any."""
        if self.job_store is None:
            raise ConfigError("resume_latest requires a job store")

        run_id = await self.job_store.latest_interrupted_run()
        if run_id is None:
            logger.info("No interrupted run to resume")
            return None

        jobs = await self.job_store.load_jobs(run_id)
        failures = await self.job_store.load_failures(run_id)
        return await self.resume(jobs, run_id=run_id, deadline=deadline, failures=failures)

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _prepare(self) -> Optional[DateRange]:
        validation = self.settings.validate_config()
        for warning in validation.warnings:
            logger.warning(f"Configuration warning: {warning}")
        if not validation.is_valid:
            raise ConfigError(
                "Invalid configuration",
                context={"errors": validation.errors}
            )

        if self.date_range is not None:
            return self.date_range

        start = self.settings.START_DATE
        end = self.settings.END_DATE
        if not start and not end:
            return None
        if not (start and end):
            raise ConfigError("START_DATE and END_DATE must be set together")
        try:
            self.date_range = DateRange.create(start, end)
        except InvalidDateRangeError as e:
            raise ConfigError(
                "Invalid export date range",
                context={"start": start, "end": end},
                original_exception=e
            )
        return self.date_range

    def _deadline(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is not None:
            return deadline
        if self.settings.MAX_EXECUTION_SECONDS is None:
            return None
        return self.clock() + self.settings.MAX_EXECUTION_SECONDS

    def _deadline_exceeded(self, deadline: Optional[float]) -> bool:
        return deadline is not None and self.clock() >= deadline

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _schedule(
        self,
        reports: List[ReportDescriptor],
        date_range: Optional[DateRange],
        failures: List[ItemFailure]
    ) -> List[ExportJob]:
        jobs: List[ExportJob] = []

        for index, report in enumerate(reports):
            if index:
                await self.sleep(self.settings.REQUEST_DELAY)
            try:
                jobs.append(await self.gateway.schedule_export(report, date_range))
            except Exception as e:
                failures.append(ItemFailure.from_exception(e, report.id, "schedule"))
                logger.error(f"Scheduling failed for report {report.id}: {e}")

        logger.info(f"Scheduled {len(jobs)}/{len(reports)} export jobs")
        return jobs

    async def _process(
        self,
        jobs: List[ExportJob],
        failures: List[ItemFailure],
        deadline: Optional[float],
        scheduled: int
    ) -> RunResult:
        engine = AggregationEngine(self.field_map)
        payloads: List[ReportPayload] = []
        succeeded = 0
        failed = 0
        total_rows = 0
        prior_unassigned = 0
        interrupted = False

        # Jobs finished by an earlier part of this run
        for job in jobs:
            if not job.is_terminal:
                continue
            if job.status is JobStatus.COMPLETED and not job.error:
                succeeded += 1
                total_rows += job.row_count
                prior_unassigned += job.unassigned_count
            else:
                failed += 1

        # --------------------------------------------------
        # PHASE 3: PROCESS
        # --------------------------------------------------
        for job in jobs:
            if job.is_terminal:
                continue

            if self._deadline_exceeded(deadline):
                interrupted = True
                logger.warning(f"Deadline reached; stopping before job {job.job_id}")
                break

            state = {"phase": "poll"}
            try:
                rows = await self._process_job(job, engine, payloads, state)
                succeeded += 1
                total_rows += rows
            except Exception as e:
                failed += 1
                if not job.error:
                    job.error = str(getattr(e, "message", e))
                job.advance(JobStatus.FAILED)
                failures.append(ItemFailure.from_exception(e, job.report_id, state["phase"], job.job_id))
                logger.error(f"Job {job.job_id} failed during {state['phase']}: {e}")

            await self._checkpoint(jobs, failures)

        pending = sum(1 for job in jobs if not job.is_terminal)

        # --------------------------------------------------
        # PHASE 4: FINALIZE
        # --------------------------------------------------
        summary = RunSummary(
            run_id=self.run_id,
            scheduled=scheduled,
            succeeded=succeeded,
            failed=failed,
            pending=pending,
            total_rows=total_rows,
            unassigned_count=prior_unassigned + engine.unassigned_count,
            interrupted=interrupted,
            failures=failures,
            api_metrics=self.gateway.metrics()
        )

        await self._finalize(payloads, engine, summary)

        if interrupted:
            status = RunStatus.INTERRUPTED
        elif failed or summary.failures:
            status = RunStatus.PARTIAL
        else:
            status = RunStatus.SUCCESS

        await self._finish_run(summary, status)

        logger.info(
            f"Pipeline run {self.run_id} {status.value}: scheduled={summary.scheduled}, "
            f"succeeded={summary.succeeded}, failed={summary.failed}, pending={summary.pending}, "
            f"rows={summary.total_rows}, unassigned={summary.unassigned_count}"
        )
        return RunResult(summary=summary, jobs=jobs, team_totals=dict(engine.totals))

    async def _process_job(
        self,
        job: ExportJob,
        engine: AggregationEngine,
        payloads: List[ReportPayload],
        state: dict
    ) -> int:
        state["phase"] = "poll"
        await self.poller.poll_until_terminal(job)

        state["phase"] = "download"
        if not job.result_location:
            raise MalformedResponseError(
                f"Completed job {job.job_id} has no result location",
                context={"job_id": job.job_id, "report_id": job.report_id}
            )
        text = await self.gateway.download_result(job.result_location)

        state["phase"] = "parse"
        headers, rows = parse_delimited(text)

        state["phase"] = "validate"
        validator = RecordValidator(headers)
        validation = validator.validate(rows)
        clean_rows = validator.sanitize(rows)

        state["phase"] = "classify"
        records = list(self.attribution.classify_rows(headers, clean_rows, skip_empty=True))

        state["phase"] = "aggregate"
        engine.accumulate(records)

        job.row_count = len(rows)
        job.unassigned_count = sum(1 for record in records if record.team_id is None)
        payloads.append(ReportPayload(
            run_id=self.run_id,
            report_id=job.report_id,
            report_name=job.report_name,
            job_id=job.job_id,
            headers=headers,
            records=records,
            validation=validation,
            metadata={
                "rows": len(rows),
                "columns": len(headers),
                "issues": len(validation.issues),
                "processed_at": format_timestamp(utcnow()),
            }
        ))

        logger.info(
            f"Processed job {job.job_id} for report {job.report_id}: "
            f"{len(rows)} rows, {len(validation.issues)} validation issues"
        )
        return len(rows)

    async def _finalize(
        self,
        payloads: List[ReportPayload],
        engine: AggregationEngine,
        summary: RunSummary
    ) -> None:
        """Hand results to the sink; sink failures are recorded, not raised."""
        for payload in payloads:
            try:
                await self.sink.publish_report(payload)
            except Exception as e:
                logger.error(f"Report sink rejected report {payload.report_id}: {e}")
                summary.failures.append(
                    ItemFailure.from_exception(e, payload.report_id, "finalize", payload.job_id)
                )

        if not engine.totals:
            return

        try:
            await self.sink.publish_team_totals(self.run_id, engine.totals, summary)
        except Exception as e:
            logger.error(f"Report sink rejected team totals: {e}")
            summary.failures.append(ItemFailure.from_exception(e, "*", "finalize"))

    # ------------------------------------------------------------------
    # Run records and checkpoints
    # ------------------------------------------------------------------

    async def _start_run(self) -> None:
        if self.job_store is not None:
            await self.job_store.start_run(self.run_id)

    async def _checkpoint(self, jobs: List[ExportJob], failures: List[ItemFailure]) -> None:
        if self.job_store is None:
            return
        try:
            await self.job_store.save_jobs(self.run_id, jobs)
        except PersistenceError as e:
            logger.error(f"Checkpoint failed for run {self.run_id}: {e.message}")
            failures.append(ItemFailure.from_exception(e, "*", "checkpoint"))

    async def _finish_run(self, summary: RunSummary, status: RunStatus) -> None:
        """Record the run; a persistence failure is logged and added to the summary."""
        if self.job_store is None:
            return
        try:
            await self.job_store.finish_run(summary, status)
        except PersistenceError as e:
            logger.error(f"Failed to record run {self.run_id}: {e.message}")
            summary.failures.append(ItemFailure.from_exception(e, "*", "record"))

    async def _record_fatal(self, failures: List[ItemFailure], error: Exception) -> None:
        if self.job_store is None:
            return
        summary = RunSummary(
            run_id=self.run_id,
            failures=failures,
            api_metrics=self.gateway.metrics()
        )
        message = error.message if isinstance(error, PipelineException) else f"{type(error).__name__}: {error}"
        try:
            await self.job_store.finish_run(summary, RunStatus.FAILED, error_message=message)
        except PersistenceError as e:
            logger.error(f"Failed to record failed run {self.run_id}: {e.message}")


def load_configured_rules(settings: Settings) -> RuleSet:
    if not settings.TEAM_RULES_PATH:
        logger.warning("TEAM_RULES_PATH is not set; every record will be Unassigned")
        return RuleSet.empty()
    return load_rule_set(settings.TEAM_RULES_PATH)


async def run_pipeline(
    session: AsyncSession,
    settings: Optional[Settings] = None,
    resume: bool = False
) -> Optional[RunResult]:
    """
    Build a database-backed runner from settings and execute it.

    With ``resume=True`` the latest interrupted run is resumed instead; None
    is returned when there is nothing to resume.
    """
    settings = settings or default_settings
    rule_set = load_configured_rules(settings)

    async with APIGateway.from_settings(settings) as gateway:
        runner = PipelineRunner(
            gateway,
            rule_set=rule_set,
            settings=settings,
            sink=DatabaseReportSink(session),
            job_store=JobStore(session)
        )
        if resume:
            return await runner.resume_latest()
        return await runner.run()
