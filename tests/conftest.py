"""
Pytest configuration and fixtures
"""

import re
from typing import AsyncGenerator, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from core.config import Settings
from ingestion.gateway import APIGateway
from models.base import Base
# Register every table on Base.metadata
from models.pipeline_run import PipelineRun  # noqa: F401
from models.export_job import ExportJobRecord  # noqa: F401
from models.team_totals import TeamTotalsRecord  # noqa: F401
from models.classified_record import ClassifiedRow  # noqa: F401

TEST_SID = "IRtestaccount12345"
TEST_TOKEN = "test-token-abcdefghijkl"


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeImpactAPI:
    """
    In-process stand-in for the Impact Mediapartners API.

    job_statuses maps report id → upstream Status strings returned by
    successive status polls; the last one repeats.
    """

    def __init__(
        self,
        reports: List[Dict],
        job_statuses: Optional[Dict[str, List[str]]] = None,
        results: Optional[Dict[str, str]] = None,
        schedule_errors: Optional[Dict[str, int]] = None,
        result_errors: Optional[Dict[str, int]] = None
    ):
        self.reports = reports
        self.job_statuses = {k: list(v) for k, v in (job_statuses or {}).items()}
        self.results = results or {}
        self.schedule_errors = schedule_errors or {}
        self.result_errors = result_errors or {}
        self.requests: List[httpx.Request] = []

    def paths(self, fragment: str = "") -> List[str]:
        return [r.url.path for r in self.requests if fragment in r.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        base = f"/Mediapartners/{TEST_SID}"

        if path == f"{base}/Reports":
            return httpx.Response(200, json={"Reports": self.reports})

        match = re.fullmatch(rf"{base}/ReportExport/([^/]+)", path)
        if match:
            report_id = match.group(1)
            if report_id in self.schedule_errors:
                return httpx.Response(self.schedule_errors[report_id], text="rejected")
            return httpx.Response(200, json={
                "Status": "QUEUED",
                "QueuedUri": f"{base}/Jobs/job-{report_id}?format=csv"
            })

        match = re.fullmatch(rf"{base}/Jobs/job-([^/]+)/Result", path)
        if match:
            report_id = match.group(1)
            if report_id in self.result_errors:
                return httpx.Response(self.result_errors[report_id], text="result unavailable")
            return httpx.Response(200, text=self.results.get(report_id, ""))

        match = re.fullmatch(rf"{base}/Jobs/job-([^/]+)", path)
        if match:
            report_id = match.group(1)
            statuses = self.job_statuses.get(report_id, ["Completed"])
            status = statuses.pop(0) if len(statuses) > 1 else statuses[0]
            body = {"Status": status}
            if status.lower() == "completed":
                body["ResultUri"] = f"{base}/Jobs/job-{report_id}/Result"
            if status.lower() == "failed":
                body["Error"] = "Export generation failed"
            return httpx.Response(200, json=body)

        return httpx.Response(404, text="not found")


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Valid settings with fast polling; never reads a real .env"""
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/settings.db",
        IMPACT_ACCOUNT_SID=TEST_SID,
        IMPACT_AUTH_TOKEN=TEST_TOKEN,
        IMPACT_API_BASE_URL="https://api.impact.test",
        MAX_RETRIES=2,
        RETRY_BASE_DELAY=1.0,
        RETRY_MAX_DELAY=4.0,
        MAX_POLLING_ATTEMPTS=4,
        INITIAL_POLLING_DELAY=3.0,
        MAX_POLLING_DELAY=10.0,
        POLLING_MULTIPLIER=2.0,
        REQUEST_DELAY=0.8,
        MAX_EXECUTION_SECONDS=1680
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_gateway(test_settings, clock):
    """Build a gateway wired to a FakeImpactAPI (or a bare handler) through httpx.MockTransport"""
    clients = []

    def _make(api, settings: Optional[Settings] = None) -> APIGateway:
        handler = api.handler if isinstance(api, FakeImpactAPI) else api
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return APIGateway.from_settings(
            settings or test_settings,
            client=client,
            sleep=clock.sleep,
            clock=clock.monotonic
        )

    return _make


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create test database engine (file-backed SQLite, fresh per test)"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/test.db",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


SAMPLE_CSV = (
    "Partner,SubID,Campaign,SKU,Sale_amount,Quantity\n"
    "Acme Media,lsu_tigers_01,Fall Promo,SKU-1,\"$1,200.50\",2\n"
    "Acme Media,auburn_55,Fall Promo,SKU-2,$100.00,1\n"
    "Other Partner,unknown_77,Spring,SKU-1,$20.00,\n"
)


@pytest.fixture
def sample_csv() -> str:
    return SAMPLE_CSV


@pytest.fixture
def rules_config() -> Dict:
    return {
        "teams": [
            {"team_id": "lsu-tigers", "display_name": "LSU Tigers", "subid_patterns": ["lsu"]},
            {"team_id": "auburn-tigers", "subid_patterns": ["auburn", "war_eagle"]},
        ],
        "manual_mappings": {"vip_001": "auburn-tigers"},
    }


@pytest.fixture
def fake_impact():
    """Factory for FakeImpactAPI instances"""
    return FakeImpactAPI


@pytest.fixture
def catalog():
    return [
        {"Id": "r1", "Name": "Action Listing", "ApiAccessible": True},
        {"Id": "r2", "Name": "Performance by SubID", "ApiAccessible": True},
        {"Id": "r3", "Name": "Internal Only", "ApiAccessible": False},
    ]
