"""
Bulk API 2.0 job client

Drives one remote job through its life cycle:

    ingest: create → upload batch → UploadComplete → poll → fetch results
    query:  create → poll → fetch results

Polling is the only blocking part; it sleeps ``poll_interval`` between
status requests and gives up after ``max_wait`` seconds. Timed-out jobs are
left running on the remote side.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import httpx

from sheetloader.bulk.auth import TokenProvider
from sheetloader.bulk.correlation import IngestOutcome
from sheetloader.bulk.csv_codec import LINE_ENDING, generate_csv, parse_csv
from sheetloader.common.exceptions import (
    RemoteJobAbortedError,
    RemoteJobError,
    RemoteJobFailedError,
    RemoteJobTimeoutError,
    RemoteRequestError,
)
from sheetloader.common.logging import get_logger
from sheetloader.common.models import Dataset, ImportOperation, RunPolicy


class JobState(Enum):
    """Remote job states"""
    OPEN = "Open"
    UPLOAD_COMPLETE = "UploadComplete"
    IN_PROGRESS = "InProgress"
    JOB_COMPLETE = "JobComplete"
    FAILED = "Failed"
    ABORTED = "Aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.JOB_COMPLETE, JobState.FAILED, JobState.ABORTED)


class JobKind(Enum):
    INGEST = "ingest"
    QUERY = "query"


@dataclass
class JobInfo:
    """Snapshot of a remote job"""
    id: str
    kind: JobKind
    state: JobState
    error_message: Optional[str] = None
    records_processed: int = 0
    records_failed: int = 0

    @classmethod
    def from_response(cls, kind: JobKind, payload: dict) -> 'JobInfo':
        job_id = payload.get("id")
        if not job_id:
            raise RemoteJobError(f"Job response has no id: {payload}")
        try:
            state = JobState(payload.get("state"))
        except ValueError:
            raise RemoteJobError(f"Unknown job state {payload.get('state')!r} for job {job_id}")
        return cls(
            id=job_id,
            kind=kind,
            state=state,
            error_message=payload.get("errorMessage"),
            records_processed=int(payload.get("numberRecordsProcessed") or 0),
            records_failed=int(payload.get("numberRecordsFailed") or 0)
        )


class BulkJobClient:
    """
    Client for Bulk API 2.0 ingest and query jobs

    Example:
        provider = ClientCredentialsTokenProvider(url, client_id, secret)
        with BulkJobClient(provider, poll_interval=5, max_wait=600) as client:
            outcome = client.run_ingest("Account", ImportOperation.INSERT, headers, rows)
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        api_version: str = "58.0",
        poll_interval: float = 5.0,
        max_wait: float = 600.0,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize client

        Args:
            token_provider: Supplies (base_url, token)
            api_version: REST API version, with or without a leading 'v'
            poll_interval: Seconds between status polls
            max_wait: Seconds before polling gives up
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests, proxies)
            sleep: Sleep function used between polls
            clock: Monotonic clock used to measure max_wait
        """
        self.token_provider = token_provider
        self.api_version = api_version.lstrip("v")
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.timeout = timeout
        self.transport = transport
        self.sleep = sleep
        self.clock = clock
        self.logger = get_logger(self.__class__.__name__)

        self._http: Optional[httpx.Client] = None

    @classmethod
    def from_policy(cls, token_provider: TokenProvider, policy: RunPolicy, **kwargs) -> 'BulkJobClient':
        return cls(
            token_provider,
            api_version=policy.api_version,
            poll_interval=policy.poll_interval,
            max_wait=policy.max_wait,
            **kwargs
        )

    # ============================================================
    # HTTP plumbing
    # ============================================================

    def _connect(self) -> httpx.Client:
        if self._http is None:
            base_url, token = self.token_provider.get_connection()
            transport = self.transport or httpx.HTTPTransport(retries=3)
            self._http = httpx.Client(
                base_url=f"{base_url}/services/data/v{self.api_version}/jobs",
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                timeout=self.timeout,
                transport=transport
            )
        return self._http

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Send a request, re-authenticating once on 401

        Raises:
            RemoteRequestError: On transport errors or non-2xx responses
        """
        for attempt in range(2):
            try:
                response = self._connect().request(method, path, **kwargs)
            except httpx.HTTPError as e:
                raise RemoteRequestError(f"{method} {path} failed: {e}") from e

            if response.status_code == 401 and attempt == 0:
                self.logger.info("Access token rejected, refreshing")
                self.token_provider.refresh()
                self.close()
                continue

            if response.is_error:
                raise RemoteRequestError(
                    f"{method} {path} failed: {response.status_code} - {_error_text(response)}"
                )
            return response

        raise RemoteRequestError(f"{method} {path} failed: unauthorized after token refresh")

    # ============================================================
    # Job life cycle
    # ============================================================

    def create_ingest_job(
        self,
        object_name: str,
        operation: ImportOperation,
        external_id_field: Optional[str] = None
    ) -> JobInfo:
        body = {
            "object": object_name,
            "operation": operation.value,
            "contentType": "CSV",
            "lineEnding": LINE_ENDING,
        }
        if operation == ImportOperation.UPSERT and external_id_field:
            body["externalIdFieldName"] = external_id_field

        job = JobInfo.from_response(JobKind.INGEST, self._request("POST", "/ingest", json=body).json())
        self.logger.info(f"Created {operation.value} job {job.id} on {object_name}")
        return job

    def upload_batch(self, job_id: str, payload: str) -> None:
        self._request(
            "PUT",
            f"/ingest/{job_id}/batches",
            content=payload.encode("utf-8"),
            headers={"Content-Type": "text/csv"}
        )
        self.logger.debug(f"Uploaded {len(payload)} characters to job {job_id}")

    def close_job(self, job_id: str) -> JobInfo:
        response = self._request("PATCH", f"/ingest/{job_id}", json={"state": JobState.UPLOAD_COMPLETE.value})
        return JobInfo.from_response(JobKind.INGEST, response.json())

    def create_query_job(self, query: str) -> JobInfo:
        body = {
            "operation": "query",
            "query": query,
            "contentType": "CSV",
            "lineEnding": LINE_ENDING,
        }
        job = JobInfo.from_response(JobKind.QUERY, self._request("POST", "/query", json=body).json())
        self.logger.info(f"Created query job {job.id}")
        return job

    def get_job(self, job_id: str, kind: JobKind) -> JobInfo:
        response = self._request("GET", f"/{kind.value}/{job_id}")
        return JobInfo.from_response(kind, response.json())

    def wait_for_job(self, job_id: str, kind: JobKind) -> JobInfo:
        """
        Poll a job until it reaches a terminal state

        Returns:
            JobInfo in state JobComplete

        Raises:
            RemoteJobTimeoutError: If max_wait elapses first
            RemoteJobFailedError: If the job ends Failed
            RemoteJobAbortedError: If the job ends Aborted
        """
        start = self.clock()
        while True:
            job = self.get_job(job_id, kind)
            if job.state.is_terminal:
                break

            elapsed = self.clock() - start
            if elapsed >= self.max_wait:
                raise RemoteJobTimeoutError(
                    f"Job {job_id} still {job.state.value} after {elapsed:.0f}s "
                    f"(max wait {self.max_wait:.0f}s)"
                )
            self.logger.debug(f"Job {job_id} is {job.state.value}, waiting {self.poll_interval}s")
            self.sleep(min(self.poll_interval, self.max_wait - elapsed))

        if job.state == JobState.FAILED:
            raise RemoteJobFailedError(job.error_message or f"Job {job_id} failed")
        if job.state == JobState.ABORTED:
            raise RemoteJobAbortedError(job.error_message or f"Job {job_id} was aborted")

        self.logger.info(
            f"Job {job_id} complete: {job.records_processed} processed, {job.records_failed} failed"
        )
        return job

    def get_ingest_results(self, job_id: str, which: str) -> Tuple[List[str], List[List[str]]]:
        """
        Fetch one result stream of an ingest job

        Args:
            which: 'successfulResults' or 'failedResults'
        """
        response = self._request("GET", f"/ingest/{job_id}/{which}/", headers={"Accept": "text/csv"})
        return parse_csv(response.text)

    def get_query_results(self, job_id: str) -> str:
        """Fetch all result pages of a query job as one CSV text"""
        pages = []
        locator = None
        while True:
            params = {"locator": locator} if locator else None
            response = self._request(
                "GET", f"/query/{job_id}/results", params=params, headers={"Accept": "text/csv"}
            )
            text = response.text
            if pages:
                # Drop the repeated header of follow-up pages
                text = text.split("\n", 1)[1] if "\n" in text else ""
            pages.append(text)

            locator = response.headers.get("Sforce-Locator")
            if not locator or locator == "null":
                break
        return "".join(page if page.endswith("\n") else page + "\n" for page in pages if page)

    # ============================================================
    # End-to-end protocols
    # ============================================================

    def run_ingest(
        self,
        object_name: str,
        operation: ImportOperation,
        columns: Sequence[str],
        rows: Sequence[Sequence[str]],
        external_id_field: Optional[str] = None
    ) -> IngestOutcome:
        """
        Run an ingest job from creation to results

        Args:
            object_name: Target sObject
            operation: insert/update/upsert/delete
            columns: Header of the uploaded CSV
            rows: Rows to upload as a single batch
            external_id_field: Unique field for upsert

        Returns:
            IngestOutcome with successful and failed result rows
        """
        job = self.create_ingest_job(object_name, operation, external_id_field)
        self.upload_batch(job.id, generate_csv(columns, rows))
        self.close_job(job.id)
        self.wait_for_job(job.id, JobKind.INGEST)

        _, successful = self.get_ingest_results(job.id, "successfulResults")
        _, failed = self.get_ingest_results(job.id, "failedResults")
        self.logger.info(
            f"Job {job.id}: {len(successful)} successful, {len(failed)} failed result rows"
        )
        return IngestOutcome(submitted_columns=list(columns), successful=successful, failed=failed)

    def run_query(self, query: str, dataset_name: str) -> Dataset:
        """
        Run a query job and parse its result into a Dataset

        Column keys and display labels are both the returned header row.
        """
        job = self.create_query_job(query)
        self.wait_for_job(job.id, JobKind.QUERY)
        headers, rows = parse_csv(self.get_query_results(job.id))
        self.logger.info(f"Query job {job.id} returned {len(rows)} rows")
        return Dataset(
            name=dataset_name,
            display_labels=list(headers),
            column_keys=list(headers),
            rows=rows
        )


def _error_text(response: httpx.Response) -> str:
    """Remote error message, from the [{errorCode, message}] body when present"""
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, list):
        return "; ".join(
            f"{item.get('errorCode', '')}: {item.get('message', '')}" for item in payload if isinstance(item, dict)
        )
    return response.text
