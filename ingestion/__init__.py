"""
Ingestion pipeline for Impact report exports with team attribution.

Modules:
    gateway: Authenticated Impact API access (discover, schedule, status, download)
    poller: Export job polling with exponential backoff
    parsing: CSV parsing and header alias resolution
    runner: Orchestrator for discover → schedule → process → finalize
    checkpoint: Run records and job checkpoints for resume
    scheduler: APScheduler integration for periodic runs

Subpackages:
    resilience: Circuit breaker, retry executor, request throttle
    transformers: Validation/sanitization, attribution, aggregation
    loaders: Report sinks (in-memory, database)

Architecture:
    Reports are processed sequentially. One circuit breaker, retry executor
    and throttle are shared by every request of a run, so upstream rate
    limits and failure isolation apply across reports.

    1. Discover - list API-accessible reports (empty catalog is fatal)
    2. Schedule - queue one export job per report (all failing is fatal)
    3. Process - poll, download, validate, sanitize, attribute, aggregate
    4. Finalize - hand results to the report sink and record the run

    Per-report failures are captured in the run summary and never abort
    the other reports.

Usage:
    from ingestion.gateway import APIGateway
    from ingestion.runner import PipelineRunner
    from ingestion.transformers.attribution import load_rule_set

Example:
    async with APIGateway.from_settings(settings) as gateway:
        runner = PipelineRunner(gateway, rule_set=load_rule_set("config/team_rules.json"))
        result = await runner.run()

    print(f"Succeeded {result.summary.succeeded}/{result.summary.scheduled}")
"""

__all__ = [
    "APIGateway",
    "JobPoller",
    "PipelineRunner",
    "JobStore",
    "PipelineScheduler",
    "parse_delimited",
]
