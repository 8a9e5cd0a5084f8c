# sync_client.py  ──  persists a batch one row at a time, one SyncOutcome per row
# Rows run strictly in order. Two rows may share an incident number that does
# not exist on the server yet; the first creates it and the second's lookup
# must see that create. Keep this loop sequential.

import logging
from typing import Callable, Optional, Sequence

from backend_client import BackendClient, BackendError
from field_mapper import to_backend_shape
from shared_types import Record, SyncOutcome, is_blank, is_temp_id

logger = logging.getLogger(__name__)

PayloadBuilder = Callable[[Record], Record]


def _failed(position: int, record: Record, method, exc: BackendError) -> SyncOutcome:
    return SyncOutcome(
        position=position,
        id=record.get("id"),
        incident_number=str(record.get("incidentNumber") or ""),
        method=method,
        success=False,
        error=exc.message,
        field_errors=list(exc.field_errors),
        status_code=exc.status_code,
    )


async def sync_record(
    client: BackendClient,
    record: Record,
    position: int,
    to_payload: PayloadBuilder = to_backend_shape,
) -> SyncOutcome:
    """Create-or-update a single record, addressed by its incident number or, without one, its server id."""
    incident_number = str(record.get("incidentNumber") or "").strip()
    payload = to_payload(record)

    existing_id: Optional[str] = None
    if incident_number:
        try:
            existing_id = await client.lookup_incident_id(incident_number)
        except BackendError as exc:
            logger.error("❌ Lookup failed for %s: %s", incident_number, exc.message)
            return _failed(position, record, None, exc)
    else:
        # No key to look up: a record the server already knows is updated by its own id
        own_id = record.get("id")
        if not is_blank(own_id) and not is_temp_id(own_id):
            existing_id = str(own_id)

    if existing_id:
        # Address the server's record, not whatever id the client holds
        payload["id"] = existing_id
        try:
            await client.update_activity(payload)
        except BackendError as exc:
            logger.error("❌ Update failed for %s: %s", incident_number or "<blank>", exc.message)
            return _failed(position, record, "UPDATE", exc)
        logger.info("🔄 Updated %s (id=%s)", incident_number or "<blank>", existing_id)
        return SyncOutcome(position, existing_id, incident_number, "UPDATE", True)

    if is_temp_id(payload.get("id")) or is_blank(payload.get("id")):
        payload.pop("id", None)
    try:
        new_id = await client.create_activity(payload)
    except BackendError as exc:
        # A failed create is terminal for this row; it is not retried.
        logger.error("❌ Create failed for %s: %s", incident_number or "<blank>", exc.message)
        return _failed(position, record, "CREATE", exc)
    logger.info("🆕 Created %s (id=%s)", incident_number or "<blank>", new_id)
    return SyncOutcome(position, new_id, incident_number, "CREATE", True)


async def sync_batch(
    client: BackendClient,
    records: Sequence[Record],
    to_payload: PayloadBuilder = to_backend_shape,
) -> list[SyncOutcome]:
    logger.info("💾 Syncing %d record(s)", len(records))
    outcomes = []
    for position, record in enumerate(records, start=1):
        outcomes.append(await sync_record(client, record, position, to_payload))
    return outcomes


async def update_batch(
    client: BackendClient,
    records: Sequence[Record],
    to_payload: PayloadBuilder = to_backend_shape,
) -> list[SyncOutcome]:
    """PUT every record by its own id, sequentially."""
    outcomes = []
    for position, record in enumerate(records, start=1):
        incident_number = str(record.get("incidentNumber") or "")
        try:
            await client.update_activity(to_payload(record))
        except BackendError as exc:
            logger.error("❌ Update failed for %s: %s", incident_number or "<blank>", exc.message)
            outcomes.append(_failed(position, record, "UPDATE", exc))
            continue
        outcomes.append(SyncOutcome(position, record.get("id"), incident_number, "UPDATE", True))
    return outcomes


def apply_outcomes(records: Sequence[Record], outcomes: Sequence[SyncOutcome]) -> list[Record]:
    """Copy of `records` with server ids merged in for successful rows only."""
    merged = []
    for record, outcome in zip(records, outcomes):
        if outcome.success and outcome.id:
            merged.append({**record, "id": outcome.id})
        else:
            merged.append(dict(record))
    return merged


class SyncSummary:
    def __init__(self, outcomes: Sequence[SyncOutcome]):
        self.outcomes = list(outcomes)

    @property
    def succeeded(self) -> list[SyncOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[SyncOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def created(self) -> int:
        return sum(1 for o in self.succeeded if o.method == "CREATE")

    @property
    def updated(self) -> int:
        return sum(1 for o in self.succeeded if o.method == "UPDATE")

    @property
    def status(self) -> str:
        if not self.failed:
            return "success"
        if self.succeeded:
            return "partial"
        return "failed"

    def message(self) -> str:
        total = len(self.outcomes)
        ok_lines = "\n".join(
            f"Row {o.position}: {o.incident_number or 'No Incident Number'} (ID: {o.id}) - ✅ {o.method}"
            for o in self.succeeded
        )
        if self.status == "success":
            parts = []
            if self.created:
                parts.append(f"{self.created} new record(s) created")
            if self.updated:
                parts.append(f"{self.updated} existing record(s) updated")
            head = f"All {total} record(s) saved successfully!"
            if parts:
                head += " " + ", ".join(parts) + "."
            return f"{head}\n\nSuccess details:\n{ok_lines}"

        fail_lines = []
        for o in self.failed:
            line = (
                f"Row {o.position}: {o.incident_number or 'No Incident Number'} (ID: {o.id})"
                f" - ❌ {o.method or 'LOOKUP'} failed: {o.error}"
            )
            fail_lines.extend([line] + [f"    • {e}" for e in o.field_errors])
        title = "All operations failed" if self.status == "failed" else "Partial success"
        return (
            f"{title}:\n\n✅ Successful ({len(self.succeeded)}):\n{ok_lines or 'None'}"
            f"\n\n❌ Failed ({len(self.failed)}):\n" + "\n".join(fail_lines)
        )
