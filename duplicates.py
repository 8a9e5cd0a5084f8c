# duplicates.py  ──  reconciliation of AI-flagged duplicate records
# Records are fetched from the server on their own, never from a page's
# working set. duplicate_AI blank or NO_DUPLICATE means not a duplicate;
# otherwise it is a comma-separated token list, optionally wrapped in [ ],
# e.g. "[INC100, INC104]". Records sharing any token form one DuplicateGroup.

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from backend_client import BackendClient
from config import NO_DUPLICATE_SENTINEL
from shared_types import Record, is_blank
from sync_client import SyncSummary, apply_outcomes, update_batch

logger = logging.getLogger(__name__)


def parse_duplicate_group(value: Any) -> list[str]:
    if is_blank(value) or str(value).strip() == NO_DUPLICATE_SENTINEL:
        return []
    cleaned = str(value).replace("[", "").replace("]", "")
    return [token.strip() for token in cleaned.split(",") if token.strip()]


def is_duplicate_flagged(record: Record) -> bool:
    return bool(parse_duplicate_group(record.get("duplicate_AI")))


@dataclass
class DuplicateGroup:
    token: str              # smallest token in the group, used as its label
    record_ids: list[str]
    tokens: list[str]


def group_duplicates(records: Sequence[Record]) -> list[DuplicateGroup]:
    """Connected components of records linked by shared duplicate tokens."""
    parent: dict[str, str] = {}

    def find(x: str) -> str:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(a: str, b: str) -> None:
        ra, rb = find(a), find(b)
        if ra != rb:
            parent[max(ra, rb)] = min(ra, rb)

    record_tokens: list[tuple[str, list[str]]] = []
    for record in records:
        tokens = parse_duplicate_group(record.get("duplicate_AI"))
        if not tokens:
            continue
        for token in tokens:
            parent.setdefault(token, token)
        for token in tokens[1:]:
            union(tokens[0], token)
        record_tokens.append((str(record.get("id")), tokens))

    members: dict[str, list[str]] = {}
    for record_id, tokens in record_tokens:
        root = find(tokens[0])
        if record_id not in members.setdefault(root, []):
            members[root].append(record_id)

    groups = []
    for root, ids in members.items():
        tokens = sorted(t for t in parent if find(t) == root)
        groups.append(DuplicateGroup(token=root, record_ids=ids, tokens=tokens))
    return sorted(groups, key=lambda g: g.token)


@dataclass
class EditSession:
    record_id: str
    field: str
    value: str


class EditInProgressError(RuntimeError):
    pass


class DuplicateReconciliation:
    def __init__(self, client: BackendClient):
        self.client = client
        self.records: list[Record] = []
        self.edit: Optional[EditSession] = None
        self.last_summary: Optional[SyncSummary] = None

    async def load(self) -> list[Record]:
        fetched = await self.client.duplicate_list()
        self.records = [r for r in fetched if is_duplicate_flagged(r)]
        self.edit = None
        logger.info("🔍 Loaded %d duplicate-flagged record(s)", len(self.records))
        return self.records

    def _find(self, record_id: str) -> Record:
        for record in self.records:
            if record.get("id") == record_id:
                return record
        raise KeyError(record_id)

    def copy_ai_to_manual(self) -> int:
        copied = 0
        for record in self.records:
            if is_duplicate_flagged(record):
                record["duplicate"] = record["duplicate_AI"]
                copied += 1
        return copied

    # ── Inline edit: explicit save/cancel, nothing on blur ────────────────────

    def begin_edit(self, record_id: str, field: str) -> EditSession:
        if self.edit is not None:
            raise EditInProgressError(
                f"Finish editing {self.edit.field} on {self.edit.record_id} first"
            )
        current = self._find(record_id).get(field)
        self.edit = EditSession(record_id, field, "" if current is None else str(current))
        return self.edit

    def set_edit_value(self, value: str) -> None:
        if self.edit is None:
            raise EditInProgressError("No edit in progress")
        self.edit.value = value

    def commit_edit(self) -> Record:
        if self.edit is None:
            raise EditInProgressError("No edit in progress")
        record = self._find(self.edit.record_id)
        record[self.edit.field] = self.edit.value
        self.edit = None
        return record

    def cancel_edit(self) -> None:
        self.edit = None

    def groups(self) -> list[DuplicateGroup]:
        return group_duplicates(self.records)

    async def save(self) -> SyncSummary:
        outcomes = await update_batch(self.client, self.records)
        self.records = apply_outcomes(self.records, outcomes)
        self.last_summary = SyncSummary(outcomes)
        logger.info("💾 Duplicate records saved: %s", self.last_summary.status)
        return self.last_summary
