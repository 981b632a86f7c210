import json
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx
import pytest

from sheetloader.bulk.auth import StaticTokenProvider
from sheetloader.bulk.client import BulkJobClient
from sheetloader.bulk.csv_codec import generate_csv, parse_csv
from sheetloader.common.models import Dataset

INSTANCE_URL = "https://example.my.salesforce.com"
JOBS_PREFIX = "/services/data/v58.0/jobs"


class FakeBulkApi:
    """In-memory Bulk API 2.0 served through httpx.MockTransport"""

    def __init__(self):
        self.jobs: Dict[str, dict] = {}
        self.requests: List[httpx.Request] = []
        self.polls_before_complete = 0
        self.final_state = "JobComplete"
        self.error_message: Optional[str] = None
        # row dict -> error message for rows the fake org rejects
        self.reject: Callable[[dict], Optional[str]] = lambda row: None
        self.query_pages: Dict[str, List[str]] = {}
        self._next_id = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def ingest_jobs(self) -> List[dict]:
        return [job for job in self.jobs.values() if job["kind"] == "ingest"]

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id:015d}"

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = urlparse(str(request.url)).path
        assert path.startswith(JOBS_PREFIX), path
        parts = [p for p in path[len(JOBS_PREFIX):].split("/") if p]
        method = request.method

        if method == "POST" and parts == ["ingest"]:
            body = json.loads(request.content)
            job_id = self._new_id("750")
            self.jobs[job_id] = {"kind": "ingest", "body": body, "csv": "", "polls": 0}
            return httpx.Response(200, json={"id": job_id, "state": "Open"})

        if method == "POST" and parts == ["query"]:
            body = json.loads(request.content)
            job_id = self._new_id("750")
            self.jobs[job_id] = {"kind": "query", "body": body, "polls": 0}
            return httpx.Response(200, json={"id": job_id, "state": "UploadComplete"})

        job = self.jobs.get(parts[1]) if len(parts) > 1 else None
        if job is None:
            return httpx.Response(404, json=[{"errorCode": "NOT_FOUND", "message": "no such job"}])

        if method == "PUT" and parts[2:] == ["batches"]:
            job["csv"] = request.content.decode("utf-8")
            return httpx.Response(201)

        if method == "PATCH" and len(parts) == 2:
            return httpx.Response(200, json={"id": parts[1], "state": "UploadComplete"})

        if method == "GET" and len(parts) == 2:
            job["polls"] += 1
            state = "InProgress"
            if job["polls"] > self.polls_before_complete:
                state = self.final_state
            return httpx.Response(200, json={
                "id": parts[1],
                "state": state,
                "errorMessage": self.error_message,
            })

        if method == "GET" and parts[2:] in (["successfulResults"], ["failedResults"]):
            return httpx.Response(200, text=self._ingest_results(parts[1], job, parts[2]))

        if method == "GET" and parts[2:] == ["results"]:
            pages = self.query_pages.get(job["body"]["query"], ["Id\n"])
            locator = request.url.params.get("locator")
            page = int(locator) if locator else 0
            headers = {"Sforce-Locator": str(page + 1) if page + 1 < len(pages) else "null"}
            return httpx.Response(200, text=pages[page], headers=headers)

        return httpx.Response(400, json=[{"errorCode": "BAD_REQUEST", "message": f"{method} {path}"}])

    def _ingest_results(self, job_id: str, job: dict, which: str) -> str:
        headers, rows = parse_csv(job["csv"])
        operation = job["body"]["operation"]
        successful, failed = [], []
        for row in rows:
            error = self.reject(dict(zip(headers, row)))
            if error:
                failed.append(["", error] + row)
            else:
                record = dict(zip(headers, row))
                record_id = record.get("Id") or self._new_id("001")
                successful.append([record_id, "true" if operation == "insert" else "false"] + row)

        if which == "successfulResults":
            return generate_csv(["sf__Id", "sf__Created"] + headers, successful)
        return generate_csv(["sf__Id", "sf__Error"] + headers, failed)


class FakeClock:
    """Monotonic clock advanced only by sleep()"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_api() -> FakeBulkApi:
    return FakeBulkApi()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bulk_client(fake_api: FakeBulkApi, clock: FakeClock) -> BulkJobClient:
    client = BulkJobClient(
        StaticTokenProvider(INSTANCE_URL, "token"),
        poll_interval=5.0,
        max_wait=60.0,
        transport=fake_api.transport,
        sleep=clock.sleep,
        clock=clock
    )
    yield client
    client.close()


def make_dataset(name: str, keys: List[str], rows: List[List[str]]) -> Dataset:
    return Dataset(name=name, display_labels=list(keys), column_keys=list(keys), rows=[list(r) for r in rows])
