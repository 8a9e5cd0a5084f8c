# tests/test_api.py
# Exercises the HTTP layer against FakeBackend; no real backend or Redis.
# Run: pytest tests/test_api.py -v

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import api_server
from api_server import Desk, app
from conftest import FULL_METRICS, ticket_row


@pytest_asyncio.fixture
async def desk(backend, persistence):
    desk = Desk(backend.client(), persistence).restore()
    api_server._desk = desk
    yield desk
    api_server._desk = None
    await desk.client.aclose()


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ─────────────────────────────────────────────────────────────────────────────
# HEALTH & ENTRY
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_health_reports_storage(desk):
    async with _client() as ac:
        resp = await ac.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "storage": "MemoryStore", "pending_writes": 0}


@pytest.mark.asyncio
async def test_entry_edit_roundtrip(desk):
    async with _client() as ac:
        state = (await ac.get("/entry")).json()
        row_id = state["records"][0]["id"]
        resp = await ac.patch(f"/entry/rows/{row_id}", json={"field": "incidentNumber", "value": "INC77"})
        assert resp.status_code == 200
        resp = await ac.patch(f"/entry/rows/{row_id}", json={"field": "teamFixedIssue", "value": ["SageMaker", "ML Operation"]})
        state = (await ac.get("/entry")).json()

    assert state["step"] == 0
    assert state["steps"][0]["name"] == "save"
    assert state["records"][0]["incidentNumber"] == "INC77"
    assert state["records"][0]["teamFixedIssue"] == "SageMaker, ML Operation"


@pytest.mark.asyncio
async def test_entry_patch_errors(desk):
    async with _client() as ac:
        missing = await ac.patch("/entry/rows/temp-nope", json={"field": "priority", "value": "P1"})
        row_id = desk.entry.records[0]["id"]
        bad_field = await ac.patch(f"/entry/rows/{row_id}", json={"field": "issue_AI", "value": "x"})
    assert missing.status_code == 404
    assert bad_field.status_code == 422


@pytest.mark.asyncio
async def test_entry_save_blocked_by_duplicates(desk, backend):
    desk.entry.records = [ticket_row("INC1"), ticket_row("INC1", id="temp-b")]
    async with _client() as ac:
        resp = await ac.post("/entry/save")
    data = resp.json()
    assert resp.status_code == 200
    assert data["success"] is False
    assert data["severity"] == "error"
    assert data["validation"]["blocking"] == "duplicates"
    assert data["validation"]["duplicates"] == [{"incident_number": "INC1", "positions": [1, 2]}]
    assert backend.calls == []


@pytest.mark.asyncio
async def test_entry_save_success(desk, backend):
    desk.entry.records = [ticket_row("INC1")]
    async with _client() as ac:
        resp = await ac.post("/entry/save")
    data = resp.json()
    assert data["success"] is True
    assert data["step"] == 1
    assert data["outcomes"][0]["method"] == "CREATE"
    assert data["outcomes"][0]["id"] == "srv-1"


@pytest.mark.asyncio
async def test_add_and_delete_rows(desk):
    async with _client() as ac:
        added = await ac.post("/entry/rows")
        assert added.status_code == 201
        deleted = await ac.delete(f"/entry/rows/{added.json()['id']}")
        last = await ac.delete(f"/entry/rows/{desk.entry.records[0]['id']}")
    assert deleted.json()["success"] is True
    assert last.json()["severity"] == "warning"


@pytest.mark.asyncio
async def test_incident_search_and_load(desk, backend):
    backend.seed("INC5", priority="P3")
    async with _client() as ac:
        found = await ac.get("/entry/incidents/INC5")
        loaded = await ac.post("/entry/incidents/INC5/load")
    assert found.json()["data"][0]["priority"] == "P3"
    assert loaded.json()["success"] is True
    assert desk.entry.records[0]["incidentNumber"] == "INC5"


# ─────────────────────────────────────────────────────────────────────────────
# REVIEW STEPS
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_locked_step_is_409_and_unknown_is_404(desk):
    async with _client() as ac:
        locked = await ac.post("/review/steps/copy_ai")
        unknown = await ac.post("/review/steps/explode")
        dated_locked = await ac.post("/dated-review/steps/manage_duplicates")
    assert locked.status_code == 409
    assert locked.json()["action"] == "copy_ai"
    assert unknown.status_code == 404
    assert dated_locked.status_code == 409


@pytest.mark.asyncio
async def test_review_steps_through_http(desk, backend):
    record_id = backend.seed("INC1", summary_Issue_AI="Disk full", summary_Issue="")
    backend.review_list = [dict(backend.records[record_id])]
    async with _client() as ac:
        for action in ("enrich", "load_review", "copy_ai"):
            resp = await ac.post(f"/review/steps/{action}")
            assert resp.json()["success"] is True, action
        state = (await ac.get("/review")).json()
        done = await ac.post("/review/steps/complete")

    assert state["step"] == 3
    assert state["records"][0]["summary_Issue"] == "Disk full"
    assert done.json()["step"] == 0
    assert backend.records[record_id]["summary_Issue"] == "Disk full"


@pytest.mark.asyncio
async def test_dated_scope_and_load(desk, backend):
    backend.review_by_date = [{"id": "srv-1", "incidentNumber": "INC1"}]
    async with _client() as ac:
        scope = await ac.put("/dated-review/scope", json={"year": "2024", "month": "07"})
        loaded = await ac.post("/dated-review/steps/load_by_date")
    assert scope.json() == {"year": "2024", "month": "07"}
    assert loaded.json()["step"] == 1
    assert backend.calls[0][2] == {"year": "2024", "month": "07"}


@pytest.mark.asyncio
async def test_duplicates_require_the_step(desk, backend):
    async with _client() as ac:
        resp = await ac.get("/duplicates")
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_duplicate_edit_and_save(desk, backend):
    record_id = backend.seed("INC1", duplicate_AI="[INC1, INC2]", duplicate="")
    backend.duplicate_list = [dict(backend.records[record_id])]
    desk.dated.machine.complete(4)
    async with _client() as ac:
        await ac.post("/dated-review/steps/manage_duplicates")
        state = (await ac.get("/duplicates")).json()
        copied = await ac.post("/duplicates/copy-ai")
        edited = await ac.patch(f"/duplicates/records/{record_id}", json={"field": "duplicate", "value": "INC2"})
        saved = await ac.post("/duplicates/save")

    assert state["groups"][0]["record_ids"] == [record_id]
    assert copied.json() == {"copied": 1}
    assert edited.json()["duplicate"] == "INC2"
    assert saved.json()["status"] == "success"
    assert backend.records[record_id]["duplicate"] == "INC2"


# ─────────────────────────────────────────────────────────────────────────────
# DASHBOARD
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dashboard_filters_validate_and_persist(desk):
    async with _client() as ac:
        bad = await ac.put("/dashboard/filters", json={"year": "2024", "service_owner": "Mark"})
        good = await ac.put("/dashboard/filters", json={
            "year": "2024", "service_owner": "Steve", "filter_mode": "yearOnly",
        })
        current = (await ac.get("/dashboard/filters")).json()
        reset = (await ac.delete("/dashboard/filters")).json()

    assert bad.status_code == 422
    assert good.status_code == 200
    assert current["serviceOwner"] == "Steve"
    assert current["years"][0] == "2024"
    assert reset["serviceOwner"] == "Mark"


@pytest.mark.asyncio
async def test_dashboard_returns_metrics(desk, backend):
    backend.metrics = dict(FULL_METRICS)
    async with _client() as ac:
        await ac.put("/dashboard/filters", json={
            "year": "2024", "service_owner": "Mark", "filter_mode": "yearOnly",
        })
        resp = await ac.get("/dashboard")
    data = resp.json()
    assert resp.status_code == 200
    assert data["met_sla"] == 93.5
    assert data["failed"] == []
    assert data["totals"]["priority"] == 17
    assert data["issues_sorted"][0] == ["Quota", 9]
