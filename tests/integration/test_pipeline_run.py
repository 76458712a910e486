"""
Integration tests for full pipeline runs against a fake Impact API
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select

from core.exceptions import ConfigError, EmptyCatalogError, NoJobsScheduledError, PersistenceError
from ingestion.checkpoint import JobStore
from ingestion.loaders.report_sink import DatabaseReportSink, InMemoryReportSink
from ingestion.runner import PipelineRunner
from ingestion.transformers.attribution import RuleSet
from models.base import JobStatus, RunStatus
from models.classified_record import ClassifiedRow
from models.team_totals import TeamTotalsRecord
from schemas.rules import RuleSetConfig, UNASSIGNED

TWO_REPORTS = [
    {"Id": "r1", "Name": "Action Listing", "ApiAccessible": True},
    {"Id": "r2", "Name": "Performance by SubID", "ApiAccessible": True},
]


@pytest.fixture
def rule_set(rules_config):
    return RuleSet.compile(RuleSetConfig(**rules_config))


@pytest.fixture
def make_runner(make_gateway, rule_set, test_settings, clock):
    def _make(api, sink=None, job_store=None):
        return PipelineRunner(
            make_gateway(api),
            rule_set=rule_set,
            settings=test_settings,
            sink=sink if sink is not None else InMemoryReportSink(),
            job_store=job_store,
            sleep=clock.sleep,
            clock=clock.monotonic
        )
    return _make


@pytest.mark.asyncio
async def test_one_report_completes_and_one_times_out(fake_impact, make_runner, sample_csv):
    """
    End-to-end:
    1. Two accessible reports are discovered and scheduled
    2. Job 1 completes after two polls, job 2 never finishes
    3. The run returns a summary instead of raising
    """
    api = fake_impact(
        TWO_REPORTS,
        job_statuses={"r1": ["Processing", "Completed"], "r2": ["Processing"]},
        results={"r1": sample_csv}
    )
    sink = InMemoryReportSink()
    runner = make_runner(api, sink=sink)

    result = await runner.run()
    summary = result.summary

    assert summary.scheduled == 2
    assert summary.succeeded == 1
    assert summary.failed == 1
    assert summary.pending == 0
    assert summary.total_rows == 3
    assert summary.unassigned_count == 1
    assert not summary.interrupted

    assert len(summary.failures) == 1
    failure = summary.failures[0]
    assert failure.report_id == "r2"
    assert failure.job_id == "job-r2"
    assert failure.phase == "poll"
    assert failure.error_type == "PollTimeoutError"

    jobs = {job.report_id: job for job in result.jobs}
    assert jobs["r1"].status is JobStatus.COMPLETED
    assert jobs["r1"].row_count == 3
    assert jobs["r1"].poll_attempts == 2
    assert jobs["r2"].status is JobStatus.TIMED_OUT
    assert jobs["r2"].poll_attempts == 4

    assert result.team_totals["lsu-tigers"].revenue == Decimal("1200.50")
    assert result.team_totals["auburn-tigers"].revenue == Decimal("100.00")
    assert result.team_totals[UNASSIGNED].revenue == Decimal("20.00")

    assert [payload.report_id for payload in sink.reports] == ["r1"]
    assert sink.reports[0].run_id == summary.run_id
    assert len(sink.team_totals) == 1

    metrics = summary.api_metrics
    assert metrics["api_calls"] == len(api.requests)
    assert metrics["successful_calls"] == len(api.requests)
    assert metrics["failed_calls"] == 0
    assert metrics["bytes_received"] > 0


@pytest.mark.asyncio
async def test_schedule_failure_is_recorded_per_item(fake_impact, make_runner, sample_csv):
    api = fake_impact(TWO_REPORTS, results={"r1": sample_csv}, schedule_errors={"r2": 400})
    runner = make_runner(api)

    result = await runner.run()

    assert result.summary.scheduled == 1
    assert result.summary.succeeded == 1
    assert [(f.report_id, f.phase, f.error_type) for f in result.summary.failures] == [
        ("r2", "schedule", "ApiError")
    ]


@pytest.mark.asyncio
async def test_upstream_job_failure_and_download_failure(fake_impact, make_runner, sample_csv):
    api = fake_impact(
        TWO_REPORTS,
        job_statuses={"r1": ["Failed"]},
        result_errors={"r2": 410}
    )
    runner = make_runner(api)

    result = await runner.run()

    failures = {f.report_id: f for f in result.summary.failures}
    assert failures["r1"].phase == "poll"
    assert failures["r1"].error_type == "JobFailedError"
    assert failures["r2"].phase == "download"
    assert failures["r2"].error_type == "DownloadError"
    assert result.summary.failed == 2
    assert result.summary.succeeded == 0
    jobs = {job.report_id: job for job in result.jobs}
    assert jobs["r1"].status is JobStatus.FAILED
    # Completed upstream; the local failure is kept on the job
    assert jobs["r2"].status is JobStatus.COMPLETED
    assert jobs["r2"].error == "Failed to download export result"


@pytest.mark.asyncio
async def test_validation_issues_do_not_fail_the_report(fake_impact, make_runner):
    csv_text = (
        "SubID,Campaign,Sale_amount\n"
        "lsu_1,<script>alert(1)</script>Fall,10\n"
        ",,\n"
        "lsu_1,<script>alert(1)</script>Fall,10\n"
    )
    api = fake_impact(TWO_REPORTS[:1], results={"r1": csv_text})
    sink = InMemoryReportSink()
    runner = make_runner(api, sink=sink)

    result = await runner.run()

    assert result.summary.succeeded == 1
    assert result.summary.total_rows == 3
    payload = sink.reports[0]
    assert payload.validation.stats.empty_rows == 1
    assert payload.validation.stats.duplicate_rows == 1
    # Empty rows are not classified; cells are sanitized
    assert len(payload.records) == 2
    assert payload.records[0].cells == ("lsu_1", "Fall", "10")
    # Record indices count the empty row, matching validation issue indices
    assert [record.row_index for record in payload.records] == [0, 2]
    duplicate = [i for i in payload.validation.issues if i.kind.value == "duplicate_row"][0]
    assert duplicate.row_index == payload.records[1].row_index
    assert result.team_totals["lsu-tigers"].conversion_count == 2


@pytest.mark.asyncio
async def test_every_schedule_failing_is_fatal(fake_impact, make_runner):
    api = fake_impact(TWO_REPORTS, schedule_errors={"r1": 400, "r2": 422})
    runner = make_runner(api)

    with pytest.raises(NoJobsScheduledError):
        await runner.run()


@pytest.mark.asyncio
async def test_empty_catalog_is_fatal(fake_impact, make_runner):
    api = fake_impact([{"Id": "r9", "Name": "Hidden", "ApiAccessible": False}])
    runner = make_runner(api)

    with pytest.raises(EmptyCatalogError):
        await runner.run()

    assert len(api.requests) == 1


@pytest.mark.asyncio
async def test_invalid_config_sends_nothing(fake_impact, make_runner, test_settings):
    api = fake_impact(TWO_REPORTS)
    runner = make_runner(api)
    test_settings.IMPACT_AUTH_TOKEN = "short"

    with pytest.raises(ConfigError):
        await runner.run()

    assert api.requests == []


@pytest.mark.asyncio
async def test_configured_date_range_is_sent(fake_impact, make_runner, test_settings):
    test_settings.START_DATE = "2024-01-01T00:00:00Z"
    test_settings.END_DATE = "2024-01-31T23:59:59Z"
    api = fake_impact(TWO_REPORTS[:1])
    runner = make_runner(api)

    await runner.run()

    schedule = [r for r in api.requests if "/ReportExport/" in r.url.path][0]
    assert schedule.url.params["startDate"] == "2024-01-01T00:00:00Z"
    assert schedule.url.params["endDate"] == "2024-01-31T23:59:59Z"


@pytest.mark.asyncio
async def test_half_configured_date_range_is_config_error(fake_impact, make_runner, test_settings):
    test_settings.START_DATE = "2024-01-01T00:00:00Z"
    api = fake_impact(TWO_REPORTS)
    runner = make_runner(api)

    with pytest.raises(ConfigError):
        await runner.run()

    assert api.requests == []


@pytest.mark.asyncio
async def test_schedule_requests_are_spaced(fake_impact, make_runner, clock, test_settings):
    api = fake_impact(TWO_REPORTS)
    runner = make_runner(api)

    await runner.run()

    assert test_settings.REQUEST_DELAY in clock.sleeps


class DuplicatingReportSink(DatabaseReportSink):
    """Stores one record twice, violating the per-report row index constraint."""

    async def publish_report(self, payload):
        doubled = payload.copy(update={"records": payload.records + payload.records[:1]})
        await super().publish_report(doubled)


@pytest.mark.asyncio
async def test_sink_database_failure_still_returns_summary(
    fake_impact, make_runner, sample_csv, db_session
):
    api = fake_impact(TWO_REPORTS[:1], results={"r1": sample_csv})
    store = JobStore(db_session)
    runner = make_runner(api, sink=DuplicatingReportSink(db_session), job_store=store)

    result = await runner.run()

    assert result.summary.succeeded == 1
    assert [(f.report_id, f.phase, f.error_type) for f in result.summary.failures] == [
        ("r1", "finalize", "PersistenceError")
    ]

    run = await store.get_run(result.summary.run_id)
    assert run.status is RunStatus.PARTIAL
    assert run.failures[0]["phase"] == "finalize"

    # Team totals are written after the failed report and still land
    totals = await db_session.execute(
        select(TeamTotalsRecord.team_id).where(TeamTotalsRecord.run_id == result.summary.run_id)
    )
    assert "lsu-tigers" in set(totals.scalars().all())
    rows = await db_session.execute(select(ClassifiedRow))
    assert rows.scalars().all() == []


@pytest.mark.asyncio
async def test_run_record_failure_still_returns_summary(fake_impact, make_runner, sample_csv, db_session):
    api = fake_impact(TWO_REPORTS[:1], results={"r1": sample_csv})
    store = JobStore(db_session)
    runner = make_runner(api, job_store=store)

    with patch.object(store, "finish_run", side_effect=PersistenceError("Failed to record pipeline run")):
        result = await runner.run()

    assert result.summary.succeeded == 1
    assert [(f.phase, f.error_type) for f in result.summary.failures] == [("record", "PersistenceError")]
