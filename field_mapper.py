# field_mapper.py
# Translates between the camelCase entry rows and the backend's mixed-case
# record shape. Pure structural translation, no validation.

from datetime import datetime
from typing import Any, Iterable

from shared_types import Record, TICKET_FIELDS

# UI name -> backend name. Every TicketRecord field is listed so the table is
# the single source of truth, even where the name is unchanged.
FIELD_MAP: dict[str, str] = {
    "id": "id",
    "incidentNumber": "incidentNumber",
    "assignedGroup": "assignedGroup",
    "longDescription": "longDescription",
    "teamFixedIssue": "team_Fixed_Issue",
    "teamIncludedInTicket": "team_Included_in_Ticket",
    "serviceOwner": "serviceOwner",
    "priority": "priority",
    "openDate": "openDate",
    "updatedDate": "updatedDate",
}
REVERSE_FIELD_MAP: dict[str, str] = {v: k for k, v in FIELD_MAP.items()}

INPUT_DATETIME_FORMAT = "%Y-%m-%dT%H:%M"


def to_backend_shape(record: Record) -> Record:
    """Rename recognized fields and drop every None value.

    The backend treats an absent field differently from an explicit null,
    so nulls never leave the client.
    """
    return {
        FIELD_MAP.get(key, key): value
        for key, value in record.items()
        if value is not None
    }


def from_backend_shape(record: Record) -> Record:
    return {REVERSE_FIELD_MAP.get(key, key): value for key, value in record.items()}


def to_ticket_row(record: Record) -> Record:
    """Full entry row from a backend record: blanks filled, dates normalized."""
    mapped = from_backend_shape(record)
    row: Record = {"id": mapped.get("id") or ""}
    for name in TICKET_FIELDS:
        value = mapped.get(name)
        row[name] = "" if value is None else str(value)
    row["openDate"] = format_datetime_for_input(row["openDate"])
    row["updatedDate"] = format_datetime_for_input(row["updatedDate"])
    return row


# ── Dates ─────────────────────────────────────────────────────────────────────

def _parse_datetime(value: str) -> datetime | None:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def format_datetime_for_input(value: Any) -> str:
    """Normalize to YYYY-MM-DDTHH:MM; unparseable or blank values become ''."""
    if not value:
        return ""
    text = str(value)
    parsed = _parse_datetime(text)
    if parsed is None:
        return ""
    return parsed.strftime(INPUT_DATETIME_FORMAT)


def is_valid_datetime(value: Any) -> bool:
    if not value:
        return True  # blank is allowed while drafting
    return _parse_datetime(str(value)) is not None


def current_datetime() -> str:
    return datetime.now().strftime(INPUT_DATETIME_FORMAT)


# ── Multi-value fields ────────────────────────────────────────────────────────
# assignedGroup / teamFixedIssue / teamIncludedInTicket hold a comma-joined
# mix of known options and free-text values.

def split_multi_value(text: Any) -> list[str]:
    if not text:
        return []
    return [part.strip() for part in str(text).split(",") if part.strip()]


def join_multi_value(values: Iterable[str]) -> str:
    return ", ".join(v.strip() for v in values if v and v.strip())


def selected_options(text: Any, options: Iterable[str]) -> list[str]:
    known = set(options)
    return [v for v in split_multi_value(text) if v in known]


def custom_values(text: Any, options: Iterable[str]) -> list[str]:
    known = set(options)
    return [v for v in split_multi_value(text) if v not in known]
