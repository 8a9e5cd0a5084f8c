# shared_types.py  ──  record helpers and result types every module shares
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from config import TEMP_ID_PREFIX

Record = dict[str, Any]
Severity = Literal["success", "info", "warning", "error"]
SyncMethod = Literal["CREATE", "UPDATE"]

# Entry-stage (camelCase) business fields, in display order
TICKET_FIELDS: tuple[str, ...] = (
    "incidentNumber",
    "assignedGroup",
    "longDescription",
    "teamFixedIssue",
    "teamIncludedInTicket",
    "serviceOwner",
    "priority",
    "openDate",
    "updatedDate",
)

# Manual field -> read-only AI suggestion
AI_FIELD_PAIRS: tuple[tuple[str, str], ...] = (
    ("summary_Issue", "summary_Issue_AI"),
    ("system", "system_AI"),
    ("issue", "issue_AI"),
    ("root_Cause", "root_Cause_AI"),
    ("duplicate", "duplicate_AI"),
)


def is_blank(value: Any) -> bool:
    """None, missing, or a string that is empty after trimming."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def new_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex[:12]}"


def is_temp_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


@dataclass
class SyncOutcome:
    position: int                      # 1-based row number for display
    id: Optional[str]
    incident_number: str
    method: Optional[SyncMethod]       # None when the lookup itself failed
    success: bool
    error: Optional[str] = None
    field_errors: list[str] = field(default_factory=list)
    status_code: Optional[int] = None


@dataclass
class WorkflowCheckpoint:
    records: list[Record] = field(default_factory=list)
    current_step: int = 0
    auxiliary_result: Optional[dict] = None


@dataclass
class ActionResult:
    success: bool
    message: str
    severity: Severity
    step: int
    validation: Optional[Any] = None       # validation.ValidationReport
    outcomes: list[SyncOutcome] = field(default_factory=list)
    data: Any = None
