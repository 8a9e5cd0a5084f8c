# api_server.py
# FastAPI service for the review desk: entry page, both review pages,
# duplicate reconciliation and the dashboard. One Desk per process.

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Callable, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend_client import BackendClient
from config import LOG_LEVEL, STORAGE_BACKEND
from dashboard import DashboardFilters, fetch_dashboard, year_options
from duplicates import DuplicateReconciliation, EditInProgressError
from shared_types import ActionResult
from storage import PersistenceAdapter, make_store
from workflow import (
    CheckpointedWorkflow,
    DatedReviewWorkflow,
    EntryWorkflow,
    ReviewWorkflow,
    StepLockedError,
)

logger = logging.getLogger(__name__)


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ── Desk ──────────────────────────────────────────────────────────────────────

class Desk:
    """Everything one operator session works with."""

    def __init__(self, client: BackendClient, persistence: PersistenceAdapter):
        self.client = client
        self.persistence = persistence
        self.entry = EntryWorkflow(client, persistence)
        self.review = ReviewWorkflow(client, persistence)
        self.dated = DatedReviewWorkflow(client, persistence)

    def restore(self) -> "Desk":
        self.entry.restore()
        self.review.restore()
        self.dated.restore()
        return self

    async def aclose(self) -> None:
        warnings = self.persistence.flush()
        for warning in warnings:
            logger.warning("⚠️  %s", warning)
        await self.client.aclose()


_desk: Optional[Desk] = None


def get_desk() -> Desk:
    global _desk
    if _desk is None:
        persistence = PersistenceAdapter(make_store(STORAGE_BACKEND)).init()
        _desk = Desk(BackendClient(), persistence).restore()
    return _desk


# ── App Lifespan ──────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    global _desk
    setup_logging()
    get_desk()
    logger.info("✅  Review desk ready (storage=%s)", STORAGE_BACKEND)
    yield
    if _desk is not None:
        await _desk.aclose()
        _desk = None


app = FastAPI(
    title="Incident Ticket Review Desk",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(StepLockedError)
async def _step_locked(request: Request, exc: StepLockedError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "action": exc.action})


@app.exception_handler(EditInProgressError)
async def _edit_conflict(request: Request, exc: EditInProgressError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def _unexpected(request: Request, exc: Exception):
    logger.exception("❌ Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


# ── Request / Response Models ─────────────────────────────────────────────────

class FieldUpdate(BaseModel):
    field: str
    value: str | list[str]


class ScopeRequest(BaseModel):
    year: str
    month: str | None = None


class FiltersRequest(BaseModel):
    year: str
    month: str = ""
    service_owner: str
    filter_mode: str = "yearMonth"


class ActionResponse(BaseModel):
    success: bool
    message: str
    severity: str
    step: int
    data: Any = None
    outcomes: list[dict] = []
    validation: dict | None = None


class WorkflowState(BaseModel):
    step: int
    steps: list[dict]
    records: list[dict]
    auxiliary_result: dict | None = None
    warnings: list[str] = []


class HealthResponse(BaseModel):
    status: str
    storage: str
    pending_writes: int


def _action_response(result: ActionResult) -> ActionResponse:
    validation = None
    if result.validation is not None:
        validation = {**asdict(result.validation), "blocking": result.validation.blocking}
    return ActionResponse(
        success=result.success,
        message=result.message,
        severity=result.severity,
        step=result.step,
        data=result.data,
        outcomes=[asdict(o) for o in result.outcomes],
        validation=validation,
    )


def _state(flow: CheckpointedWorkflow) -> WorkflowState:
    return WorkflowState(
        step=flow.step,
        steps=flow.machine.describe()["steps"],
        records=flow.records,
        auxiliary_result=flow.auxiliary_result,
        warnings=flow.warnings,
    )


def _update_field(flow: CheckpointedWorkflow, record_id: str, update: FieldUpdate) -> dict:
    try:
        if isinstance(update.value, list):
            if not isinstance(flow, EntryWorkflow):
                raise ValueError("List values are only accepted on entry rows")
            return flow.set_multi_value(record_id, update.field, update.value)
        return flow.update_field(record_id, update.field, update.value)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Record {record_id} not found")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


# ── GET /health ───────────────────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    desk = get_desk()
    return HealthResponse(
        status="ok",
        storage=type(desk.persistence.store).__name__,
        pending_writes=len(desk.persistence.pending_keys),
    )


# ── Entry page ────────────────────────────────────────────────────────────────

@app.get("/entry")
async def entry_state():
    return _state(get_desk().entry)


@app.post("/entry/rows", status_code=201)
async def add_entry_row():
    return get_desk().entry.add_row()


@app.patch("/entry/rows/{row_id}")
async def update_entry_row(row_id: str, update: FieldUpdate):
    return _update_field(get_desk().entry, row_id, update)


@app.delete("/entry/rows/{row_id}")
async def delete_entry_row(row_id: str):
    try:
        return _action_response(get_desk().entry.delete_row(row_id))
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Row {row_id} not found")


@app.post("/entry/clear")
async def clear_entry():
    return _action_response(get_desk().entry.clear())


@app.post("/entry/save")
async def save_entry():
    """Save & Next: validate, sync every row, then hand over to review."""
    return _action_response(await get_desk().entry.save())


@app.get("/entry/incidents/{incident_number}")
async def search_incident(incident_number: str):
    return _action_response(await get_desk().entry.search_incident(incident_number))


@app.post("/entry/incidents/{incident_number}/load")
async def load_incident(incident_number: str, record_id: str | None = None):
    return _action_response(await get_desk().entry.load_incident(incident_number, record_id))


@app.delete("/entry/incidents/{record_id}")
async def delete_incident(record_id: str):
    return _action_response(await get_desk().entry.delete_incident(record_id))


# ── Review pages ──────────────────────────────────────────────────────────────

def review_router(prefix: str, pick: Callable[[Desk], CheckpointedWorkflow]) -> APIRouter:
    router = APIRouter(prefix=prefix)

    @router.get("")
    async def review_state():
        return _state(pick(get_desk()))

    @router.post("/steps/{action}")
    async def run_step(action: str):
        flow = pick(get_desk())
        try:
            flow.machine.index(action)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0])
        return _action_response(await flow.run(action))

    @router.patch("/records/{record_id}")
    async def update_record(record_id: str, update: FieldUpdate):
        return _update_field(pick(get_desk()), record_id, update)

    @router.post("/clear")
    async def clear_review():
        return _action_response(pick(get_desk()).clear())

    return router


app.include_router(review_router("/review", lambda desk: desk.review))
app.include_router(review_router("/dated-review", lambda desk: desk.dated))


@app.put("/dated-review/scope")
async def set_dated_scope(scope: ScopeRequest):
    dated = get_desk().dated
    dated.set_scope(scope.year, scope.month)
    return {"year": dated.year, "month": dated.month}


# ── Duplicates ────────────────────────────────────────────────────────────────

def _duplicates() -> DuplicateReconciliation:
    flow = get_desk().dated.duplicates
    if flow is None:
        raise HTTPException(status_code=409, detail="Run the manage_duplicates step first")
    return flow


@app.get("/duplicates")
async def duplicate_state():
    flow = _duplicates()
    return {
        "records": flow.records,
        "groups": [asdict(g) for g in flow.groups()],
        "editing": asdict(flow.edit) if flow.edit else None,
    }


@app.post("/duplicates/copy-ai")
async def duplicates_copy_ai():
    return {"copied": _duplicates().copy_ai_to_manual()}


@app.patch("/duplicates/records/{record_id}")
async def edit_duplicate(record_id: str, update: FieldUpdate):
    flow = _duplicates()
    if isinstance(update.value, list):
        raise HTTPException(status_code=422, detail="Duplicate edits take a single value")
    try:
        flow.begin_edit(record_id, update.field)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Record {record_id} not found")
    flow.set_edit_value(update.value)
    return flow.commit_edit()


@app.post("/duplicates/save")
async def save_duplicates():
    summary = await _duplicates().save()
    return {
        "status": summary.status,
        "message": summary.message(),
        "outcomes": [asdict(o) for o in summary.outcomes],
    }


# ── Dashboard ─────────────────────────────────────────────────────────────────

@app.get("/dashboard/filters")
async def get_filters():
    filters = DashboardFilters.load(get_desk().persistence)
    return {**filters.to_dict(), "years": year_options()}


@app.put("/dashboard/filters")
async def put_filters(req: FiltersRequest):
    filters = DashboardFilters(req.year, req.month, req.service_owner, req.filter_mode)
    error = filters.validate()
    if error:
        raise HTTPException(status_code=422, detail=error)
    warning = filters.save(get_desk().persistence)
    return {**filters.to_dict(), "warning": warning}


@app.delete("/dashboard/filters")
async def reset_filters():
    return DashboardFilters.reset(get_desk().persistence).to_dict()


@app.get("/dashboard")
async def dashboard():
    desk = get_desk()
    filters = DashboardFilters.load(desk.persistence)
    try:
        data = await fetch_dashboard(desk.client, filters)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {
        "filters": filters.to_dict(),
        **asdict(data),
        "totals": data.totals(),
        "issues_sorted": data.issues_sorted(),
    }


# ── Entry Point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    from config import API_HOST, API_PORT
    uvicorn.run("api_server:app", host=API_HOST, port=API_PORT, reload=True)
