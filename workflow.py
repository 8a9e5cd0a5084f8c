# workflow.py  ──  step-gated page workflows with checkpointed state
# An action at index k unlocks once the cursor reaches k; success moves the
# cursor to k + 1, never backwards. Cursor, working set and last AI result are
# persisted after every mutation so a restarted session resumes where it left.
#
#     Entry          : save
#     Review         : enrich -> load_review -> copy_ai -> complete
#     Dated review   : load_by_date -> enrich -> copy_ai -> complete -> manage_duplicates
#
# Validation and backend failures come back as an ActionResult with a
# severity. Calling a locked action raises StepLockedError.

import logging
from typing import Any, Optional, Sequence

from backend_client import BackendClient, BackendError
from config import (
    DATED_REVIEW_STORAGE_KEYS,
    DEFAULT_TEAM,
    ENTRY_STORAGE_KEY,
    REVIEW_STORAGE_KEYS,
)
from duplicates import DuplicateReconciliation
from enrichment import DATED_PIPELINE, NEW_DATA_PIPELINE, EnrichmentReport, run_enrichment
from field_mapper import join_multi_value, to_ticket_row
from shared_types import (
    AI_FIELD_PAIRS,
    TICKET_FIELDS,
    ActionResult,
    Record,
    Severity,
    WorkflowCheckpoint,
    is_blank,
    new_temp_id,
)
from storage import PersistenceAdapter
from sync_client import SyncSummary, apply_outcomes, sync_batch
from validation import validate_batch

logger = logging.getLogger(__name__)

READ_ONLY_SUFFIX = "_AI"


class StepLockedError(Exception):
    def __init__(self, action: str, current: int, required: int):
        super().__init__(
            f"Step '{action}' is locked: current step is {current}, needs {required}"
        )
        self.action = action
        self.current = current
        self.required = required


class StepMachine:
    def __init__(self, actions: Sequence[str], current: int = 0):
        self.actions = tuple(actions)
        self.current = 0
        self.jump(current)

    @property
    def final_state(self) -> int:
        return len(self.actions)

    def index(self, action: str) -> int:
        try:
            return self.actions.index(action)
        except ValueError:
            raise KeyError(f"Unknown step {action!r}; expected one of {self.actions}") from None

    def can_advance(self, action: str) -> bool:
        return self.current >= self.index(action)

    def require(self, action: str) -> None:
        if not self.can_advance(action):
            raise StepLockedError(action, self.current, self.index(action))

    def advance(self, action: str) -> int:
        self.require(action)
        self.current = max(self.current, self.index(action) + 1)
        return self.current

    def jump(self, state: int) -> int:
        """Set the cursor directly (restore, completion). Clamped to the valid range."""
        self.current = min(max(int(state), 0), self.final_state)
        return self.current

    def complete(self, reset_to: int = 0) -> int:
        """Finish a cycle: the cursor lands on `reset_to` instead of moving forward."""
        return self.jump(reset_to)

    def reset(self) -> None:
        self.current = 0

    def describe(self) -> dict:
        return {
            "current": self.current,
            "steps": [
                {"name": name, "unlocked": self.current >= i, "done": self.current > i}
                for i, name in enumerate(self.actions)
            ],
        }


def copy_ai_suggestions(records: Sequence[Record]) -> tuple[list[Record], int]:
    """Overwrite manual fields with non-blank AI values; return (records, fields changed).

    A blank AI value never replaces or blanks a manual value.
    """
    updated, changed = [], 0
    for record in records:
        copy = dict(record)
        for manual, suggestion in AI_FIELD_PAIRS:
            ai_value = record.get(suggestion)
            if not is_blank(ai_value):
                if copy.get(manual) != ai_value:
                    changed += 1
                copy[manual] = ai_value
        updated.append(copy)
    return updated, changed


class CheckpointedWorkflow:
    ACTIONS: tuple[str, ...] = ()

    def __init__(
        self,
        client: BackendClient,
        persistence: PersistenceAdapter,
        keys: dict[str, str],
    ):
        self.client = client
        self.persistence = persistence
        self.keys = keys
        self.machine = StepMachine(self.ACTIONS)
        self.records: list[Record] = []
        self.auxiliary_result: Optional[dict] = None
        self.warnings: list[str] = []

    @property
    def step(self) -> int:
        return self.machine.current

    # ── Checkpoint ────────────────────────────────────────────────────────────

    def restore(self) -> WorkflowCheckpoint:
        stored = self.persistence.load(self.keys["records"], [])
        self.records = [r for r in stored if isinstance(r, dict)]
        if "step" in self.keys:
            self.machine.jump(self.persistence.load(self.keys["step"], 0))
        if "aux" in self.keys:
            self.auxiliary_result = self.persistence.load(self.keys["aux"], {}) or None
        logger.info(
            "📦 Restored %s: %d record(s) at step %d",
            type(self).__name__, len(self.records), self.step,
        )
        return self.snapshot()

    def snapshot(self) -> WorkflowCheckpoint:
        return WorkflowCheckpoint(
            records=[dict(r) for r in self.records],
            current_step=self.step,
            auxiliary_result=self.auxiliary_result,
        )

    def checkpoint(self) -> list[str]:
        warnings = [self.persistence.save(self.keys["records"], self.records)]
        if "step" in self.keys:
            warnings.append(self.persistence.save(self.keys["step"], self.step))
        if "aux" in self.keys:
            if self.auxiliary_result is None:
                warnings.append(self.persistence.clear(self.keys["aux"]))
            else:
                warnings.append(self.persistence.save(self.keys["aux"], self.auxiliary_result))
        self.warnings = [w for w in warnings if w]
        return self.warnings

    def _forget(self) -> None:
        for key in self.keys.values():
            self.persistence.clear(key)

    def clear(self) -> ActionResult:
        self.records = []
        self.auxiliary_result = None
        self.machine.reset()
        self._forget()
        return self._result(True, "All data cleared successfully!", "success")

    # ── Editing ───────────────────────────────────────────────────────────────

    def find(self, record_id: str) -> Record:
        for record in self.records:
            if record.get("id") == record_id:
                return record
        raise KeyError(record_id)

    def update_field(self, record_id: str, field: str, value: Any) -> Record:
        if field == "id" or field.endswith(READ_ONLY_SUFFIX):
            raise ValueError(f"Field {field!r} is read-only")
        record = self.find(record_id)
        record[field] = value
        self.checkpoint()
        return record

    # ── Results ───────────────────────────────────────────────────────────────

    def _result(self, success: bool, message: str, severity: Severity, **extra) -> ActionResult:
        if self.warnings:
            message += "\n\n⚠️ " + "\n⚠️ ".join(self.warnings)
            if severity == "success":
                severity = "warning"
        return ActionResult(success=success, message=message, severity=severity, step=self.step, **extra)

    def _backend_failure(self, action: str, exc: BackendError) -> ActionResult:
        logger.error("❌ %s failed: %s", action, exc)
        return self._result(False, str(exc), "error")

    async def run(self, action: str) -> ActionResult:
        """Dispatch a step by name (used by the HTTP layer)."""
        self.machine.index(action)
        return await getattr(self, action)()


class EntryWorkflow(CheckpointedWorkflow):
    """Data entry page: edit ticket rows, then Save & Next."""

    ACTIONS = ("save",)

    def __init__(self, client: BackendClient, persistence: PersistenceAdapter, key: str = ENTRY_STORAGE_KEY):
        super().__init__(client, persistence, {"records": key})

    @staticmethod
    def template_row() -> Record:
        row: Record = {"id": new_temp_id()}
        for name in TICKET_FIELDS:
            row[name] = ""
        row["assignedGroup"] = DEFAULT_TEAM
        row["teamFixedIssue"] = DEFAULT_TEAM
        row["teamIncludedInTicket"] = DEFAULT_TEAM
        return row

    def _ensure_valid(self, rows: Sequence[Record]) -> list[Record]:
        valid = []
        for row in rows:
            merged = {**self.template_row(), **row}
            if not isinstance(row.get("id"), str) or not row.get("id"):
                merged["id"] = new_temp_id()
            valid.append(merged)
        return valid

    def restore(self) -> WorkflowCheckpoint:
        super().restore()
        if self.records:
            self.records = self._ensure_valid(self.records)
        else:
            self.records = [self.template_row()]
        return self.snapshot()

    def add_row(self) -> Record:
        row = self.template_row()
        self.records.append(row)
        self.checkpoint()
        return row

    def update_field(self, record_id: str, field: str, value: Any) -> Record:
        if field not in TICKET_FIELDS:
            raise ValueError(f"Unknown ticket field {field!r}")
        return super().update_field(record_id, field, value)

    def set_multi_value(self, record_id: str, field: str, values: Sequence[str]) -> Record:
        return self.update_field(record_id, field, join_multi_value(values))

    def delete_row(self, record_id: str) -> ActionResult:
        if len(self.records) <= 1:
            return self._result(False, "You must have at least one row", "warning")
        self.find(record_id)
        self.records = [r for r in self.records if r.get("id") != record_id]
        self.checkpoint()
        return self._result(True, "Row deleted successfully", "success")

    def clear(self) -> ActionResult:
        self.machine.reset()
        self._forget()
        self.records = [self.template_row()]
        self.checkpoint()
        return self._result(True, "All data cleared! Reset to default template.", "info")

    async def search_incident(self, incident_number: str) -> ActionResult:
        number = (incident_number or "").strip()
        if not number:
            return self._result(False, "Please enter an incident number", "warning", data=[])
        try:
            found = await self.client.incident_details(number)
        except BackendError as exc:
            if exc.is_not_found:
                return self._result(False, f'No incidents found with number "{number}"', "error", data=[])
            return self._backend_failure("search", exc)
        rows = [to_ticket_row(r) for r in found]
        return self._result(True, f"Found {len(rows)} incident(s) successfully!", "success", data=rows)

    async def load_incident(self, incident_number: str, record_id: Optional[str] = None) -> ActionResult:
        """Replace the working set with one fetched incident row."""
        result = await self.search_incident(incident_number)
        if not result.success:
            return result
        rows = result.data
        if record_id is not None:
            rows = [r for r in rows if r["id"] == record_id]
        if not rows:
            return self._result(False, f'No incidents found with number "{incident_number}"', "error")
        self.records = [rows[0]]
        self.checkpoint()
        return self._result(True, f"Incident {rows[0]['incidentNumber']} loaded for editing!", "success", data=rows[0])

    async def delete_incident(self, record_id: str) -> ActionResult:
        try:
            await self.client.delete_activity(record_id)
        except BackendError as exc:
            return self._backend_failure("delete", exc)
        return self._result(True, f"Incident {record_id} deleted successfully!", "success")

    async def save(self) -> ActionResult:
        self.machine.require("save")
        self.records = self._ensure_valid(self.records)
        report = validate_batch(self.records)
        if not report.ok:
            return self._result(False, report.message(), "error", validation=report)

        outcomes = await sync_batch(self.client, self.records)
        summary = SyncSummary(outcomes)
        if summary.succeeded:
            self.records = apply_outcomes(self.records, outcomes)
            self.machine.advance("save")
        self.checkpoint()

        severity: Severity = {"success": "success", "partial": "warning", "failed": "error"}[summary.status]
        return self._result(bool(summary.succeeded), summary.message(), severity, validation=report, outcomes=outcomes)


class _ReviewBase(CheckpointedWorkflow):
    PIPELINE = NEW_DATA_PIPELINE
    # cursor after a fully successful save
    COMPLETED_STATE = 0

    async def _enrich(self, year: Optional[str] = None, month: Optional[str] = None) -> ActionResult:
        report = await run_enrichment(self.client, self.PIPELINE, year, month)
        self.auxiliary_result = report.to_dict()
        if not report.any_succeeded:
            self.checkpoint()
            return self._result(False, "AI processing failed: every stage returned an error", "error", data=report.to_dict())
        self.machine.advance("enrich")
        self.checkpoint()
        if report.failed:
            return self._result(
                True, f"AI processing finished with failures in: {', '.join(report.failed)}", "warning",
                data=report.to_dict(),
            )
        return self._result(True, "AI and Automation processing completed successfully!", "success", data=report.to_dict())

    @property
    def enrichment_report(self) -> Optional[EnrichmentReport]:
        if self.auxiliary_result is None:
            return None
        return EnrichmentReport.from_dict(self.auxiliary_result)

    async def copy_ai(self) -> ActionResult:
        self.machine.require("copy_ai")
        if not self.records:
            return self._result(False, "No records to copy AI content into", "warning")
        self.records, changed = copy_ai_suggestions(self.records)
        self.machine.advance("copy_ai")
        self.checkpoint()
        return self._result(
            True, f"AI content copied to review fields ({changed} field(s) changed)", "success",
        )

    async def complete(self) -> ActionResult:
        self.machine.require("complete")
        if not self.records:
            return self._result(False, "No activities found to save", "warning")

        outcomes = await sync_batch(self.client, self.records)
        summary = SyncSummary(outcomes)

        if summary.status == "success":
            self.records = []
            self.auxiliary_result = None
            self._forget()
            self.machine.complete(self.COMPLETED_STATE)
            self.checkpoint()
            return self._result(True, f"Review completed! {summary.message()}", "success", outcomes=outcomes)

        self.records = apply_outcomes(self.records, outcomes)
        if summary.status == "partial":
            self.machine.advance("complete")
            self.checkpoint()
            return self._result(True, summary.message(), "warning", outcomes=outcomes)

        self.checkpoint()
        return self._result(False, summary.message(), "error", outcomes=outcomes)


class ReviewWorkflow(_ReviewBase):
    """New-data review: AI first, then load the review list."""

    ACTIONS = ("enrich", "load_review", "copy_ai", "complete")

    def __init__(self, client: BackendClient, persistence: PersistenceAdapter, keys: Optional[dict] = None):
        super().__init__(client, persistence, dict(keys or REVIEW_STORAGE_KEYS))

    async def enrich(self) -> ActionResult:
        self.machine.require("enrich")
        return await self._enrich()

    async def load_review(self) -> ActionResult:
        self.machine.require("load_review")
        try:
            records = await self.client.review_list()
        except BackendError as exc:
            return self._backend_failure("load_review", exc)
        self.records = records
        self.machine.advance("load_review")
        self.checkpoint()
        return self._result(True, f"Loaded {len(records)} records for review", "success")


class DatedReviewWorkflow(_ReviewBase):
    """Existing-data review scoped to a year and optional month."""

    ACTIONS = ("load_by_date", "enrich", "copy_ai", "complete", "manage_duplicates")
    PIPELINE = DATED_PIPELINE
    COMPLETED_STATE = 4   # unlocks manage_duplicates

    def __init__(self, client: BackendClient, persistence: PersistenceAdapter, keys: Optional[dict] = None):
        super().__init__(client, persistence, dict(keys or DATED_REVIEW_STORAGE_KEYS))
        self.year: str = ""
        self.month: str = ""
        self.duplicates: Optional[DuplicateReconciliation] = None

    def restore(self) -> WorkflowCheckpoint:
        scope = self.persistence.load(self.keys["scope"], {})
        self.year = str(scope.get("year") or "")
        self.month = str(scope.get("month") or "")
        return super().restore()

    def checkpoint(self) -> list[str]:
        warnings = super().checkpoint()
        warning = self.persistence.save(self.keys["scope"], {"year": self.year, "month": self.month})
        if warning:
            warnings.append(warning)
        return warnings

    def set_scope(self, year: str, month: Optional[str] = None) -> None:
        self.year = str(year or "").strip()
        self.month = str(month or "").strip()
        self.checkpoint()

    def clear(self) -> ActionResult:
        self.duplicates = None
        return super().clear()

    async def load_by_date(self) -> ActionResult:
        self.machine.require("load_by_date")
        if not self.year:
            return self._result(False, "Please select a year to enable the first step.", "warning")
        try:
            records = await self.client.review_list_by_date(self.year, self.month or None)
        except BackendError as exc:
            return self._backend_failure("load_by_date", exc)
        if self.step >= self.COMPLETED_STATE:
            # a finished cycle starts over from the beginning
            self.machine.reset()
        self.records = records
        self.auxiliary_result = None
        self.machine.advance("load_by_date")
        self.checkpoint()
        scope = f"{self.year}-{self.month}" if self.month else self.year
        if not records:
            return self._result(
                True,
                f"No records found for {scope}. Please try a different year/month combination.",
                "warning",
            )
        return self._result(True, f"Loaded {len(records)} records for {scope}", "success")

    async def enrich(self) -> ActionResult:
        self.machine.require("enrich")
        if not self.records:
            return self._result(False, "No records loaded; AI processing skipped", "warning")
        return await self._enrich(self.year, self.month or None)

    async def manage_duplicates(self) -> ActionResult:
        self.machine.require("manage_duplicates")
        flow = DuplicateReconciliation(self.client)
        try:
            records = await flow.load()
        except BackendError as exc:
            return self._backend_failure("manage_duplicates", exc)
        self.duplicates = flow
        self.machine.advance("manage_duplicates")
        self.checkpoint()
        return self._result(
            True, f"Loaded {len(records)} duplicate record(s) in {len(flow.groups())} group(s)", "success",
        )
