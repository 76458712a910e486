"""
Impact Mediapartners API gateway with authentication, rate limiting, and retry logic.

Every upstream call goes through ``APIGateway.request``, which applies, in order:
- circuit breaker precondition (no network call while the circuit is open)
- request spacing via the shared RequestThrottle
- bounded exponential backoff via the shared RetryExecutor
- a single breaker success/failure record per request
"""

import base64
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx

from core.config import Credentials, Settings
from core.exceptions import (
    ApiError,
    AuthenticationError,
    CircuitOpenError,
    DownloadError,
    EmptyCatalogError,
    MalformedResponseError,
    RateLimitError,
)
from ingestion.resilience.circuit_breaker import CircuitBreaker
from ingestion.resilience.retry import RetryExecutor
from ingestion.resilience.throttle import RequestThrottle
from models.base import JobStatus
from schemas.pipeline import DateRange, ExportJob, ReportDescriptor
import logging

logger = logging.getLogger(__name__)

_JOB_ID = re.compile(r"/Jobs/([^/?#]+)")

BODY_LIMIT = 500

_STATUS_ALIASES = {
    "completed": JobStatus.COMPLETED,
    "complete": JobStatus.COMPLETED,
    "done": JobStatus.COMPLETED,
    "success": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "failure": JobStatus.FAILED,
    "error": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
    "queued": JobStatus.SCHEDULED,
    "pending": JobStatus.SCHEDULED,
    "scheduled": JobStatus.SCHEDULED,
    "running": JobStatus.RUNNING,
    "processing": JobStatus.RUNNING,
    "in_progress": JobStatus.RUNNING,
    "inprogress": JobStatus.RUNNING,
}


def normalize_status(raw: Any) -> JobStatus:
    """Map an upstream job ``Status`` string onto JobStatus."""
    key = str(raw or "").strip().lower().replace(" ", "_").replace("-", "_")
    status = _STATUS_ALIASES.get(key)
    if status is None:
        logger.warning(f"Unknown upstream job status {raw!r}; treating as running")
        return JobStatus.RUNNING
    return status


def basic_auth_header(credentials: Credentials) -> str:
    token = credentials.auth_token.get_secret_value()
    encoded = base64.b64encode(f"{credentials.account_sid}:{token}".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _matches(report: ReportDescriptor, selectors: Sequence[str]) -> bool:
    return report.id in selectors or report.name in selectors


class APIGateway:
    """
    Single entry point for Impact API calls.

    The breaker, retry executor and throttle are shared by every request of
    a run and never reset between report items.

    Counters:
        api_calls: Transport calls sent (retries included)
        successful_calls: Requests that ended with a 2xx
        failed_calls: Requests that failed after retries
        bytes_received: Response body bytes received
    """

    def __init__(
        self,
        credentials: Credentials,
        base_url: str = "https://api.impact.com",
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry: Optional[RetryExecutor] = None,
        throttle: Optional[RequestThrottle] = None,
        subid: str = "mula",
        included_reports: Optional[Sequence[str]] = None,
        excluded_reports: Optional[Sequence[str]] = None,
        timeout: float = 30.0
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.retry = retry or RetryExecutor()
        self.throttle = throttle or RequestThrottle()
        self.subid = subid
        self.included_reports = list(included_reports or [])
        self.excluded_reports = list(excluded_reports or [])
        self.timeout = timeout

        self.api_calls = 0
        self.successful_calls = 0
        self.failed_calls = 0
        self.bytes_received = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        sleep=None,
        clock=None
    ) -> "APIGateway":
        """Build a gateway with policies derived from settings."""
        return cls(
            credentials=settings.get_credentials(),
            base_url=settings.IMPACT_API_BASE_URL,
            client=client,
            circuit_breaker=CircuitBreaker.from_policy(settings.circuit_breaker_policy, clock=clock),
            retry=RetryExecutor.from_policy(settings.retry_policy, sleep=sleep),
            throttle=RequestThrottle(settings.REQUEST_DELAY, clock=clock, sleep=sleep),
            subid=settings.IMPACT_SUBID,
            included_reports=settings.INCLUDED_REPORTS,
            excluded_reports=settings.EXCLUDED_REPORTS,
            timeout=settings.REQUEST_TIMEOUT
        )

    async def __aenter__(self) -> "APIGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @property
    def account_path(self) -> str:
        return f"/Mediapartners/{self.credentials.account_sid}"

    def metrics(self) -> Dict[str, int]:
        return {
            "api_calls": self.api_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "bytes_received": self.bytes_received,
        }

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{self.base_url}{endpoint}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": basic_auth_header(self.credentials),
            "Accept": "application/json",
        }

    async def _send(self, url: str, params: Dict[str, Any]) -> httpx.Response:
        """One transport call; non-2xx responses become ApiError subclasses."""
        await self.throttle.wait()
        self.api_calls += 1

        try:
            response = await self.client.get(
                url,
                headers=self._headers(),
                params=params,
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise ApiError(
                f"Transport error calling {url}",
                status_code=None,
                context={"api_url": url, "transport_error": type(e).__name__},
                original_exception=e
            )

        self.bytes_received += len(response.content)

        if response.is_success:
            return response

        body = response.text[:BODY_LIMIT]
        context = {"api_url": url, "response_body": body}

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Authentication failed for {url}",
                status_code=response.status_code,
                body=body,
                context=context
            )

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitError(
                f"Rate limit exceeded for {url}",
                status_code=429,
                body=body,
                context=context,
                retry_after=retry_after
            )

        raise ApiError(
            f"HTTP {response.status_code} from {url}",
            status_code=response.status_code,
            body=body,
            context=context
        )

    async def request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        expect: str = "json"
    ) -> Any:
        """
        Make an authenticated GET request with resilience patterns.

        Args:
            endpoint: Path relative to the base URL, or an absolute URL
            params: Query parameters
            expect: "json" for a parsed payload, "text" for the raw body

        Raises:
            CircuitOpenError: Circuit is open; nothing was sent
            ApiError: Request failed after retries
            MalformedResponseError: 2xx body is not valid JSON
        """
        url = self._url(endpoint)

        if not self.circuit_breaker.can_execute():
            raise CircuitOpenError(
                f"Circuit breaker is open for {self.base_url}",
                context={
                    "api_url": url,
                    "retry_in": round(self.circuit_breaker.retry_in(), 3),
                    **self.circuit_breaker.snapshot()
                }
            )

        try:
            response = await self.retry.execute(lambda: self._send(url, dict(params or {})))
        except ApiError:
            self.failed_calls += 1
            self.circuit_breaker.record_failure()
            raise

        self.successful_calls += 1
        self.circuit_breaker.record_success()
        logger.debug(f"GET {url} -> {response.status_code} ({len(response.content)} bytes)")

        if expect == "text":
            return response.text

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Failed to parse JSON response",
                context={"api_url": url, "response_body": response.text[:BODY_LIMIT]},
                original_exception=e
            )

    async def discover_reports(self) -> List[ReportDescriptor]:
        """
        List API-accessible reports, filtered by the configured include or
        exclude lists. An include list takes precedence over the exclude list.

        Raises:
            MalformedResponseError: Payload lacks a ``Reports`` list
            EmptyCatalogError: Nothing accessible remains after filtering
        """
        payload = await self.request(f"{self.account_path}/Reports")
        entries = payload.get("Reports") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            raise MalformedResponseError(
                "Report catalog response has no Reports list",
                context={"keys": sorted(payload) if isinstance(payload, dict) else type(payload).__name__}
            )

        reports = []
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("Id") in (None, ""):
                logger.warning(f"Skipping malformed catalog entry: {entry!r}")
                continue
            reports.append(ReportDescriptor(
                id=entry["Id"],
                name=entry.get("Name") or "",
                accessible=bool(entry.get("ApiAccessible", False))
            ))

        accessible = [r for r in reports if r.accessible]
        if self.included_reports:
            selected = [r for r in accessible if _matches(r, self.included_reports)]
        else:
            selected = [r for r in accessible if not _matches(r, self.excluded_reports)]

        logger.info(
            f"Discovered {len(reports)} reports, {len(accessible)} accessible, "
            f"{len(selected)} selected"
        )

        if not selected:
            raise EmptyCatalogError(
                "No accessible reports to export",
                context={
                    "discovered": len(reports),
                    "accessible": len(accessible),
                    "included": self.included_reports,
                    "excluded": self.excluded_reports
                }
            )
        return selected

    async def schedule_export(
        self,
        report: ReportDescriptor,
        date_range: Optional[DateRange] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> ExportJob:
        """
        Queue an export job for a report.

        Raises:
            InvalidDateRangeError: Range ends in the future (checked before sending)
            MalformedResponseError: ``QueuedUri`` missing or without a job id
        """
        if date_range is not None:
            date_range.ensure_not_future()

        query: Dict[str, Any] = {"subid": self.subid}
        if date_range is not None:
            query.update(date_range.to_params())
        if params:
            query.update(params)

        payload = await self.request(f"{self.account_path}/ReportExport/{report.id}", query)

        queued_uri = payload.get("QueuedUri") if isinstance(payload, dict) else None
        match = _JOB_ID.search(queued_uri) if isinstance(queued_uri, str) else None
        if match is None:
            raise MalformedResponseError(
                f"Export response for report {report.id} has no job id",
                context={"report_id": report.id, "queued_uri": queued_uri}
            )

        job = ExportJob(
            report_id=report.id,
            report_name=report.name,
            job_id=match.group(1),
            date_range=date_range
        )
        logger.info(f"Scheduled export job {job.job_id} for report {report.id}")
        return job

    async def check_job_status(self, job: ExportJob) -> ExportJob:
        """Refresh a job from upstream; transitions are monotonic."""
        if job.is_terminal:
            return job

        payload = await self.request(f"{self.account_path}/Jobs/{job.job_id}")
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Job status response for {job.job_id} is not an object",
                context={"job_id": job.job_id}
            )

        status = normalize_status(payload.get("Status"))
        previous = job.status
        if job.advance(status, result_location=payload.get("ResultUri"), error=payload.get("Error")):
            if status is not previous:
                logger.info(f"Job {job.job_id} {previous.value} -> {status.value}")
        else:
            logger.debug(f"Ignored backward transition for job {job.job_id}: {previous.value} -> {status.value}")
        return job

    async def download_result(self, location: str) -> str:
        """
        Download an export result as text.

        Raises:
            DownloadError: Non-2xx after retries (retryable at the item level)
        """
        try:
            return await self.request(location, expect="text")
        except ApiError as e:
            raise DownloadError(
                "Failed to download export result",
                status_code=e.status_code,
                context={"location": location},
                original_exception=e
            )
