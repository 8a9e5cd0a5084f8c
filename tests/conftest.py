# tests/conftest.py
# In-memory stand-in for the incident backend, served through
# httpx.MockTransport, plus the fixtures every test module shares.

import json
import os
import sys

import httpx
import pytest
import pytest_asyncio

# Add parent dir to path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend_client import BackendClient
from storage import MemoryStore, PersistenceAdapter

BASE_URL = "http://backend.test/api"

FULL_METRICS = {
    "/Dashboard/MetSLA": "93.50%",
    "/Dashboard/ExtraDaysAfterSLA": 8.5,
    "/Dashboard/Priority": [1, 4, 10, 2],
    "/Dashboard/NonFunctionalTeam": {"Included": 3, "NotIncluded": 14},
    "/Dashboard/AssignedTeamResponsible": [12, 5],
    "/Dashboard/AssignedTeamFixing": {"yes": 9, "no": "8"},
    "/Dashboard/System": [11, 6],
    "/Dashboard/Issues": [{"name": "Kernel crash", "count": 7}, {"Name": "Quota", "Count": 9}],
    "/Dashboard/DuplicateGroups": {"count": 3},
}


class FakeBackend:
    """Just enough of the /FrontEnd, AI and /Dashboard contract to drive the desk."""

    def __init__(self):
        self.records: dict[str, dict] = {}
        self.calls: list[tuple[str, str, dict, object]] = []
        self.failures: dict[tuple[str, str], tuple[int, object]] = {}
        self.timeouts: set[tuple[str, str]] = set()
        self.reject_create: dict[str, tuple[int, object]] = {}
        self.review_list: list[dict] = []
        self.review_by_date: list[dict] = []
        self.duplicate_list: list[dict] = []
        self.metrics: dict[str, object] = {}
        self._next_id = 1

    # ── Seeding & inspection ──────────────────────────────────────────────────

    def seed(self, incident_number: str, **fields) -> str:
        record_id = f"srv-{self._next_id}"
        self._next_id += 1
        self.records[record_id] = {"id": record_id, "incidentNumber": incident_number, **fields}
        return record_id

    def calls_to(self, method: str, prefix: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method and c[1].startswith(prefix)]

    def client(self) -> BackendClient:
        return BackendClient(base_url=BASE_URL, transport=httpx.MockTransport(self.handler))

    # ── Request handling ──────────────────────────────────────────────────────

    def _by_number(self, number: str) -> list[dict]:
        return [r for r in self.records.values() if r.get("incidentNumber") == number]

    @staticmethod
    def _reply(status: int, body: object = None) -> httpx.Response:
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path.removeprefix("/api")
        body = json.loads(request.content) if request.content else None
        self.calls.append((method, path, dict(request.url.params), body))

        if (method, path) in self.timeouts:
            raise httpx.ReadTimeout("timed out", request=request)
        if (method, path) in self.failures:
            return self._reply(*self.failures[(method, path)])

        if path.startswith("/FrontEnd/incident/details/"):
            found = self._by_number(path.rsplit("/", 1)[1])
            return self._reply(200, found) if found else self._reply(404, "Not Found")
        if path.startswith("/FrontEnd/incident/"):
            number = path.rsplit("/", 1)[1]
            found = self._by_number(number)
            if not found:
                return self._reply(500, f"Activity with IncidentNumber {number} not found")
            return self._reply(200, {"id": found[0]["id"]})

        if path == "/FrontEnd" and method == "POST":
            number = body.get("incidentNumber", "")
            if number in self.reject_create:
                return self._reply(*self.reject_create[number])
            record_id = self.seed(number, **{k: v for k, v in body.items() if k not in ("id", "incidentNumber")})
            return self._reply(200, {"id": record_id})
        if path == "/FrontEnd" and method == "PUT":
            if body.get("id") not in self.records:
                return self._reply(404, {"title": "Not Found"})
            self.records[body["id"]].update(body)
            return self._reply(204)
        if path.startswith("/FrontEnd/") and method == "DELETE":
            record_id = path.rsplit("/", 1)[1]
            if self.records.pop(record_id, None) is None:
                return self._reply(404, "Not Found")
            return self._reply(204)

        if path == "/FrontEnd/ReviewList":
            return self._reply(200, self.review_list)
        if path == "/FrontEnd/ReviewListByDate":
            return self._reply(200, self.review_by_date)
        if path == "/FrontEnd/DuplicateList":
            return self._reply(200, self.duplicate_list)

        if path.startswith("/Dashboard/"):
            if path not in self.metrics:
                return self._reply(500, "metric unavailable")
            return self._reply(200, self.metrics[path])

        if method == "POST":
            return self._reply(200, {"processed": path})
        return self._reply(404, "Not Found")


def ticket_row(incident_number: str = "INC100", **overrides) -> dict:
    row = {
        "id": f"temp-{incident_number.lower()}",
        "incidentNumber": incident_number,
        "assignedGroup": "ML Operation",
        "longDescription": "Notebook kernel keeps dying",
        "teamFixedIssue": "ML Operation",
        "teamIncludedInTicket": "ML Operation",
        "serviceOwner": "Mark",
        "priority": "P2",
        "openDate": "2024-03-05T10:15",
        "updatedDate": "2024-03-06T09:00",
    }
    row.update(overrides)
    return row


@pytest.fixture
def backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def client(backend):
    c = backend.client()
    yield c
    await c.aclose()


@pytest.fixture
def persistence():
    return PersistenceAdapter(MemoryStore()).init()
