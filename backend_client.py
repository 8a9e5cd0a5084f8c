# backend_client.py
# Thin async wrapper over the incident backend's fixed HTTP contract.
# Every failure surfaces as BackendError; callers decide whether it is
# per-record, per-metric or fatal for the action.

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from config import (
    BACKEND_BASE_URL,
    BACKEND_TIMEOUT_SECONDS,
    FRONTEND_RESOURCE,
    NOT_FOUND_MARKERS,
    WRITE_TIMEOUT_SECONDS,
)
from shared_types import Record

logger = logging.getLogger(__name__)


class BackendError(Exception):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
        field_errors: Optional[list[str]] = None,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
        self.field_errors = field_errors or []
        self.timed_out = timed_out

    @property
    def is_not_found(self) -> bool:
        """404, or a 500 whose body says the incident was not found."""
        if self.status_code == 404:
            return True
        if self.status_code == 500:
            text = _body_text(self.body)
            return all(marker in text for marker in NOT_FOUND_MARKERS)
        return False

    def __str__(self) -> str:
        if self.field_errors:
            return f"{self.message}\n" + "\n".join(f"• {e}" for e in self.field_errors)
        return self.message


def _body_text(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, dict):
        for key in ("message", "title", "detail"):
            if isinstance(body.get(key), str):
                return body[key]
    return str(body)


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _field_errors(body: Any) -> list[str]:
    """Unpack ASP.NET-style `{"errors": {field: [msg, ...]}}` validation bodies."""
    if not isinstance(body, dict) or not isinstance(body.get("errors"), dict):
        return []
    found = []
    for name, messages in body["errors"].items():
        if isinstance(messages, str):
            messages = [messages]
        for msg in messages or []:
            found.append(f"{name}: {msg}")
    return found


def _error_from_response(response: httpx.Response, action: str) -> BackendError:
    body = _decode(response)
    fields = _field_errors(body)
    if fields:
        title = body.get("title") or "One or more validation errors occurred."
        message = f"Backend validation failed while trying to {action}: {title}"
    else:
        detail = _body_text(body) or response.reason_phrase
        message = f"{action} failed with HTTP {response.status_code}: {detail}"
    return BackendError(message, response.status_code, body, fields)


def extract_id(body: Any) -> Optional[str]:
    """Server id from a bare-string body or an object with an id field (any case)."""
    if isinstance(body, str):
        return body.strip().strip('"') or None
    if isinstance(body, dict):
        for key, value in body.items():
            if key.lower() == "id" and isinstance(value, str) and value:
                return value
    return None


class BackendClient:
    def __init__(
        self,
        base_url: str = BACKEND_BASE_URL,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
        write_timeout: float = WRITE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.write_timeout = write_timeout
        self.http = http or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Core request helper ───────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        kwargs: dict[str, Any] = {}
        if json is not None:
            kwargs["json"] = json
        if params:
            kwargs["params"] = params
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self.http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise BackendError(
                f"{action}: request timeout - server took too long to respond",
                timed_out=True,
            ) from exc
        except httpx.TransportError as exc:
            raise BackendError(f"{action}: connection failed ({exc})") from exc

        if response.status_code >= 400:
            raise _error_from_response(response, action)
        return _decode(response)

    # ── Activity resource ─────────────────────────────────────────────────────

    async def lookup_incident_id(self, incident_number: str) -> Optional[str]:
        """Server id stored for `incident_number`, or None if there is none."""
        path = f"{FRONTEND_RESOURCE}/incident/{quote(incident_number, safe='')}"
        try:
            body = await self._request("GET", path, f"check incident {incident_number}")
        except BackendError as exc:
            if exc.is_not_found:
                return None
            raise
        return extract_id(body)

    async def incident_details(self, incident_number: str) -> list[Record]:
        path = f"{FRONTEND_RESOURCE}/incident/details/{quote(incident_number, safe='')}"
        body = await self._request("GET", path, f"fetch incident {incident_number}")
        return body if isinstance(body, list) else []

    async def create_activity(self, payload: Record) -> str:
        body = await self._request(
            "POST", FRONTEND_RESOURCE, "create record",
            json=payload, timeout=self.write_timeout,
        )
        new_id = extract_id(body)
        if not new_id:
            raise BackendError(f"No valid ID received in create response: {body!r}", body=body)
        return new_id

    async def update_activity(self, payload: Record) -> Any:
        return await self._request(
            "PUT", FRONTEND_RESOURCE, "update record",
            json=payload, timeout=self.write_timeout,
        )

    async def delete_activity(self, record_id: str) -> None:
        await self._request(
            "DELETE", f"{FRONTEND_RESOURCE}/{quote(record_id, safe='')}",
            f"delete record {record_id}", timeout=self.write_timeout,
        )

    # ── Lists ─────────────────────────────────────────────────────────────────

    async def review_list(self) -> list[Record]:
        body = await self._request("GET", f"{FRONTEND_RESOURCE}/ReviewList", "fetch review list")
        return body if isinstance(body, list) else []

    async def review_list_by_date(self, year: str, month: Optional[str] = None) -> list[Record]:
        body = await self._request(
            "GET", f"{FRONTEND_RESOURCE}/ReviewListByDate", "fetch review list by date",
            params=date_params(year, month),
        )
        return body if isinstance(body, list) else []

    async def duplicate_list(self) -> list[Record]:
        body = await self._request("GET", f"{FRONTEND_RESOURCE}/DuplicateList", "fetch duplicate list")
        return body if isinstance(body, list) else []

    # ── Enrichment triggers & aggregates ──────────────────────────────────────

    async def trigger(self, path: str, params: Optional[dict] = None) -> Any:
        return await self._request("POST", path, f"run {path}", params=params)

    async def get_metric(self, path: str, params: dict) -> Any:
        return await self._request("GET", path, f"fetch {path}", params=params)


def date_params(year: Optional[str], month: Optional[str] = None) -> dict[str, str]:
    params = {}
    if year:
        params["year"] = str(year)
    if month:
        params["month"] = str(month)
    return params
