"""
Integration tests for deadline interruption, checkpoints and resume
"""

import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from core.exceptions import EmptyCatalogError
from ingestion.checkpoint import JobStore
from ingestion.loaders.report_sink import DatabaseReportSink, InMemoryReportSink
from ingestion.runner import PipelineRunner, run_pipeline
from ingestion.transformers.attribution import RuleSet
from models.base import JobStatus, RunStatus
from models.classified_record import ClassifiedRow
from models.team_totals import TeamTotalsRecord
from schemas.pipeline import ExportJob
from schemas.rules import RuleSetConfig

THREE_REPORTS = [
    {"Id": "r1", "Name": "Report One", "ApiAccessible": True},
    {"Id": "r2", "Name": "Report Two", "ApiAccessible": True},
    {"Id": "r3", "Name": "Report Three", "ApiAccessible": True},
]


@pytest.fixture
def rule_set(rules_config):
    return RuleSet.compile(RuleSetConfig(**rules_config))


@pytest.mark.asyncio
async def test_resume_skips_terminal_jobs(fake_impact, make_gateway, rule_set, test_settings, clock, sample_csv):
    """Completed and failed jobs are neither polled nor downloaded again"""
    api = fake_impact(THREE_REPORTS, results={"r3": sample_csv})
    sink = InMemoryReportSink()
    runner = PipelineRunner(
        make_gateway(api),
        rule_set=rule_set,
        settings=test_settings,
        sink=sink,
        sleep=clock.sleep,
        clock=clock.monotonic
    )
    jobs = [
        ExportJob(report_id="r1", job_id="job-r1", status=JobStatus.COMPLETED, row_count=5,
                  result_location="/done"),
        ExportJob(report_id="r2", job_id="job-r2", status=JobStatus.FAILED, error="Export generation failed"),
        ExportJob(report_id="r3", job_id="job-r3"),
    ]

    result = await runner.resume(jobs, run_id="run-resume")
    summary = result.summary

    assert summary.run_id == "run-resume"
    assert summary.scheduled == 3
    assert summary.succeeded == 2
    assert summary.failed == 1
    assert summary.total_rows == 8
    assert summary.failures == []

    assert api.paths("job-r1") == []
    assert api.paths("job-r2") == []
    assert api.paths("/ReportExport/") == []
    assert api.paths("/Reports") == []
    assert [p.report_id for p in sink.reports] == ["r3"]


@pytest.mark.asyncio
async def test_deadline_interrupts_and_resume_completes(
    fake_impact, make_gateway, rule_set, test_settings, clock, sample_csv, db_session
):
    """
    1. Job 1 takes four polls, pushing the clock past the deadline
    2. Jobs 2 and 3 are left pending and checkpointed; report 4 never schedules
    3. A later invocation resumes the interrupted run and finishes it, keeping
       the first part's failures and unassigned conversions
    """
    api = fake_impact(
        THREE_REPORTS + [{"Id": "r4", "Name": "Report Four", "ApiAccessible": True}],
        job_statuses={"r1": ["Processing", "Processing", "Processing", "Completed"]},
        results={"r1": sample_csv, "r2": sample_csv, "r3": sample_csv},
        schedule_errors={"r4": 400}
    )
    store = JobStore(db_session)
    runner = PipelineRunner(
        make_gateway(api),
        rule_set=rule_set,
        settings=test_settings,
        sink=DatabaseReportSink(db_session),
        job_store=store,
        sleep=clock.sleep,
        clock=clock.monotonic
    )

    first = await runner.run(deadline=clock.monotonic() + 15)

    assert first.summary.interrupted
    assert first.summary.succeeded == 1
    assert first.summary.pending == 2
    assert first.summary.unassigned_count == 1
    assert [f.report_id for f in first.summary.failures] == ["r4"]
    assert api.paths("job-r2") == []

    run = await store.get_run(first.summary.run_id)
    assert run.status is RunStatus.INTERRUPTED
    assert run.pending == 2

    saved = await store.load_jobs(first.summary.run_id)
    assert [job.report_id for job in saved] == ["r1", "r2", "r3"]
    assert [job.status for job in saved] == [JobStatus.COMPLETED, JobStatus.SCHEDULED, JobStatus.SCHEDULED]
    assert saved[0].row_count == 3
    assert saved[0].unassigned_count == 1

    assert await store.latest_interrupted_run() == first.summary.run_id

    resumed_runner = PipelineRunner(
        make_gateway(api),
        rule_set=rule_set,
        settings=test_settings,
        sink=DatabaseReportSink(db_session),
        job_store=store,
        sleep=clock.sleep,
        clock=clock.monotonic
    )
    second = await resumed_runner.resume_latest()

    assert second.summary.run_id == first.summary.run_id
    assert second.summary.succeeded == 3
    assert second.summary.pending == 0
    assert second.summary.total_rows == 9
    assert second.summary.unassigned_count == 3
    assert [(f.report_id, f.phase) for f in second.summary.failures] == [("r4", "schedule")]
    assert not second.summary.interrupted
    assert len(api.paths("/ReportExport/")) == 4
    assert len(api.paths("job-r1/Result")) == 1

    run = await store.get_run(first.summary.run_id)
    await db_session.refresh(run)
    # The schedule failure from the first part keeps the run partial
    assert run.status is RunStatus.PARTIAL
    assert run.unassigned_count == 3
    assert run.failures[0]["report_id"] == "r4"
    assert await store.latest_interrupted_run() is None

    # Totals from both parts of the run are combined
    result = await db_session.execute(
        select(TeamTotalsRecord).where(TeamTotalsRecord.run_id == first.summary.run_id)
    )
    totals = {record.team_id: record for record in result.scalars().all()}
    assert totals["lsu-tigers"].conversion_count == 3
    assert totals["Unassigned"].conversion_count == 3
    assert Decimal(str(totals["lsu-tigers"].revenue)) == Decimal("3601.50")

    rows = await db_session.execute(select(func.count()).select_from(ClassifiedRow))
    assert rows.scalar() == 9


@pytest.mark.asyncio
async def test_resume_latest_without_interrupted_run(make_gateway, fake_impact, rule_set, test_settings, db_session):
    runner = PipelineRunner(
        make_gateway(fake_impact(THREE_REPORTS)),
        rule_set=rule_set,
        settings=test_settings,
        job_store=JobStore(db_session)
    )

    assert await runner.resume_latest() is None


@pytest.mark.asyncio
async def test_fatal_error_records_failed_run(make_gateway, fake_impact, rule_set, test_settings, db_session, clock):
    store = JobStore(db_session)
    runner = PipelineRunner(
        make_gateway(fake_impact([])),
        rule_set=rule_set,
        settings=test_settings,
        job_store=store,
        sleep=clock.sleep,
        clock=clock.monotonic
    )

    with pytest.raises(EmptyCatalogError):
        await runner.run()

    run = await store.get_run(runner.run_id)
    assert run.status is RunStatus.FAILED
    assert run.error_message == "No accessible reports to export"


@pytest.mark.asyncio
async def test_unexpected_error_records_failed_run(make_gateway, fake_impact, rule_set, test_settings, db_session, clock):
    store = JobStore(db_session)
    gateway = make_gateway(fake_impact(THREE_REPORTS))
    runner = PipelineRunner(
        gateway,
        rule_set=rule_set,
        settings=test_settings,
        job_store=store,
        sleep=clock.sleep,
        clock=clock.monotonic
    )

    with patch.object(gateway, "discover_reports", side_effect=RuntimeError("catalog decoder crashed")):
        with pytest.raises(RuntimeError):
            await runner.run()

    run = await store.get_run(runner.run_id)
    assert run.status is RunStatus.FAILED
    assert run.error_message == "RuntimeError: catalog decoder crashed"


@pytest.mark.asyncio
async def test_run_pipeline_uses_database_collaborators(
    fake_impact, make_gateway, test_settings, db_session, sample_csv, rules_config, tmp_path
):
    rules_path = tmp_path / "rules.json"
    rules_path.write_text(json.dumps(rules_config))
    test_settings.TEAM_RULES_PATH = str(rules_path)
    gateway = make_gateway(fake_impact(THREE_REPORTS[:1], results={"r1": sample_csv}))

    with patch("ingestion.runner.APIGateway.from_settings", return_value=gateway):
        result = await run_pipeline(db_session, test_settings)

    assert result.summary.succeeded == 1
    run = await JobStore(db_session).get_run(result.summary.run_id)
    assert run.status is RunStatus.SUCCESS
    assert run.unassigned_count == 1

    totals = await db_session.execute(
        select(TeamTotalsRecord.team_id).where(TeamTotalsRecord.run_id == result.summary.run_id)
    )
    assert set(totals.scalars().all()) == {"lsu-tigers", "auburn-tigers", "Unassigned"}
