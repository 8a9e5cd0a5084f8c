# validation.py
# Pure checks over a working set. Each returns structured findings (which
# rows, which fields) so the caller can show them before allowing a retry.

from dataclasses import dataclass, field
from typing import Optional, Sequence

from shared_types import Record, is_blank

REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("incidentNumber", "Incident Number"),
    ("assignedGroup", "Assigned Group"),
    ("longDescription", "Long Description"),
    ("teamFixedIssue", "Team Fixed Issue"),
    ("teamIncludedInTicket", "Team Included in Ticket"),
    ("serviceOwner", "Service Owner"),
    ("priority", "Priority"),
    ("openDate", "Open Date"),
    ("updatedDate", "Updated Date"),
)

# assignedGroup and the team fields are preset on the template, so they do
# not count as content
CONTENT_FIELDS: tuple[str, ...] = (
    "incidentNumber",
    "longDescription",
    "serviceOwner",
    "priority",
    "openDate",
    "updatedDate",
)


@dataclass
class DuplicateKey:
    incident_number: str
    positions: list[int]


@dataclass
class IncompleteRow:
    position: int
    row_id: Optional[str]
    missing_fields: list[str]


@dataclass
class EmptyRow:
    position: int
    row_id: Optional[str]


def find_duplicate_keys(records: Sequence[Record]) -> list[DuplicateKey]:
    positions: dict[str, list[int]] = {}
    for index, row in enumerate(records, start=1):
        key = row.get("incidentNumber")
        if is_blank(key):
            continue
        positions.setdefault(str(key).strip(), []).append(index)
    return [DuplicateKey(key, rows) for key, rows in positions.items() if len(rows) > 1]


def missing_fields(row: Record, required: Sequence[tuple[str, str]] = REQUIRED_FIELDS) -> list[str]:
    return [label for name, label in required if is_blank(row.get(name))]


def is_row_complete(row: Record, required: Sequence[tuple[str, str]] = REQUIRED_FIELDS) -> bool:
    return not missing_fields(row, required)


def find_incomplete_rows(
    records: Sequence[Record],
    required: Sequence[tuple[str, str]] = REQUIRED_FIELDS,
) -> list[IncompleteRow]:
    found = []
    for index, row in enumerate(records, start=1):
        missing = missing_fields(row, required)
        if missing:
            found.append(IncompleteRow(index, row.get("id"), missing))
    return found


def is_empty_row(row: Record) -> bool:
    return all(is_blank(row.get(name)) for name in CONTENT_FIELDS)


def find_empty_rows(records: Sequence[Record]) -> list[EmptyRow]:
    return [
        EmptyRow(index, row.get("id"))
        for index, row in enumerate(records, start=1)
        if is_empty_row(row)
    ]


@dataclass
class ValidationReport:
    record_count: int
    duplicates: list[DuplicateKey] = field(default_factory=list)
    empty_rows: list[EmptyRow] = field(default_factory=list)
    incomplete_rows: list[IncompleteRow] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.record_count > 0 and not (
            self.duplicates or self.empty_rows or self.incomplete_rows
        )

    @property
    def blocking(self) -> Optional[str]:
        """First failing category: no_data, duplicates, empty_rows, incomplete_rows."""
        if self.record_count == 0:
            return "no_data"
        if self.duplicates:
            return "duplicates"
        if self.empty_rows:
            return "empty_rows"
        if self.incomplete_rows:
            return "incomplete_rows"
        return None

    def message(self) -> str:
        reason = self.blocking
        if reason is None:
            return f"{self.record_count} row(s) ready to save"
        if reason == "no_data":
            return "No data to save"
        if reason == "duplicates":
            details = "\n".join(
                f'Incident "{d.incident_number}" appears in rows: {", ".join(map(str, d.positions))}'
                for d in self.duplicates
            )
            return (
                "Cannot save: Duplicate Incident Numbers detected.\n\n"
                f"Please ensure each Incident Number is unique:\n{details}"
            )
        if reason == "empty_rows":
            details = ", ".join(f"Row {r.position} (ID: {r.row_id})" for r in self.empty_rows)
            return (
                f"Cannot save: {len(self.empty_rows)} empty row(s) detected. "
                f"Please fill in required fields.\nEmpty rows: {details}"
            )
        details = "\n".join(
            f"Row {r.position} (ID: {r.row_id}): Missing {', '.join(r.missing_fields)}"
            for r in self.incomplete_rows
        )
        return (
            f"Cannot save: {len(self.incomplete_rows)} incomplete row(s) detected. "
            f"Please fill in all required fields.\n\nIncomplete rows:\n{details}"
        )


def validate_batch(records: Sequence[Record]) -> ValidationReport:
    return ValidationReport(
        record_count=len(records),
        duplicates=find_duplicate_keys(records),
        empty_rows=find_empty_rows(records),
        incomplete_rows=find_incomplete_rows(records),
    )
