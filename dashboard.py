# dashboard.py  ──  nine aggregate metrics for a year / month / owner filter
# Calls run concurrently and fail independently: a metric whose call fails or
# whose body does not decode falls back to its zero value and is named in
# DashboardData.failed. Body shapes vary ("93.50%" or 93.5, [a, b] or
# {"yes": a, "no": b}), so each body passes through its decoder once, here.

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional, Sequence

from backend_client import BackendClient, BackendError
from config import DASHBOARD_DEFAULT_OWNER, DASHBOARD_FILTERS_KEY, DASHBOARD_FIRST_YEAR
from storage import PersistenceAdapter

logger = logging.getLogger(__name__)

FILTER_MODES = ("yearOnly", "yearMonth")


class MetricDecodeError(ValueError):
    pass


# ── Decoders ──────────────────────────────────────────────────────────────────

def _number(value: Any, metric: str) -> float:
    number = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().rstrip("%").strip())
        except ValueError:
            pass
    # NaN / Infinity parse as floats but are not counts or percentages
    if number is None or not math.isfinite(number):
        raise MetricDecodeError(f"{metric}: expected a number, got {value!r}")
    return number


def decode_percent(body: Any) -> float:
    """'93.50%', 93.5 or '93.5' -> 93.5"""
    return _number(body, "met_sla")


def decode_number(body: Any) -> float:
    return _number(body, "average_extra_days")


def decode_count(body: Any) -> int:
    if isinstance(body, dict):
        for key, value in body.items():
            if key.lower() == "count":
                return int(_number(value, "duplicate_groups"))
        raise MetricDecodeError(f"duplicate_groups: no count in {body!r}")
    return int(_number(body, "duplicate_groups"))


def counts_decoder(metric: str, keys: Sequence[str]) -> Callable[[Any], dict[str, float]]:
    """Decoder for a fixed set of counts sent either positionally or by (any-case) key."""

    def decode(body: Any) -> dict[str, float]:
        if isinstance(body, list):
            if len(body) != len(keys):
                raise MetricDecodeError(f"{metric}: expected {len(keys)} values, got {len(body)}")
            return {k: _number(v, metric) for k, v in zip(keys, body)}
        if isinstance(body, dict):
            lowered = {str(k).lower(): v for k, v in body.items()}
            missing = [k for k in keys if k.lower() not in lowered]
            if missing:
                raise MetricDecodeError(f"{metric}: missing {', '.join(missing)}")
            return {k: _number(lowered[k.lower()], metric) for k in keys}
        raise MetricDecodeError(f"{metric}: unexpected body {body!r}")

    return decode


def decode_issues(body: Any) -> dict[str, float]:
    if isinstance(body, dict):
        return {str(name): _number(n, "issues_breakdown") for name, n in body.items()}
    if isinstance(body, list):
        breakdown = {}
        for item in body:
            if not isinstance(item, dict):
                raise MetricDecodeError(f"issues_breakdown: unexpected item {item!r}")
            lowered = {str(k).lower(): v for k, v in item.items()}
            if "name" not in lowered or "count" not in lowered:
                raise MetricDecodeError(f"issues_breakdown: item needs name and count: {item!r}")
            breakdown[str(lowered["name"])] = _number(lowered["count"], "issues_breakdown")
        return breakdown
    raise MetricDecodeError(f"issues_breakdown: unexpected body {body!r}")


# ── Metrics ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Metric:
    name: str
    path: str
    decode: Callable[[Any], Any]
    default: Callable[[], Any]


def _zeros(*keys: str) -> Callable[[], dict[str, float]]:
    return lambda: {k: 0.0 for k in keys}


METRICS: tuple[Metric, ...] = (
    Metric("met_sla", "/Dashboard/MetSLA", decode_percent, float),
    Metric("average_extra_days", "/Dashboard/ExtraDaysAfterSLA", decode_number, float),
    Metric("priority", "/Dashboard/Priority",
           counts_decoder("priority", ("P1", "P2", "P3", "P4")), _zeros("P1", "P2", "P3", "P4")),
    Metric("non_functional_team", "/Dashboard/NonFunctionalTeam",
           counts_decoder("non_functional_team", ("included", "notIncluded")),
           _zeros("included", "notIncluded")),
    Metric("assigned_team_responsible", "/Dashboard/AssignedTeamResponsible",
           counts_decoder("assigned_team_responsible", ("yes", "no")), _zeros("yes", "no")),
    Metric("assigned_team_fixing", "/Dashboard/AssignedTeamFixing",
           counts_decoder("assigned_team_fixing", ("yes", "no")), _zeros("yes", "no")),
    Metric("system_distribution", "/Dashboard/System",
           counts_decoder("system_distribution", ("jupyterhub", "zeppelin")),
           _zeros("jupyterhub", "zeppelin")),
    Metric("issues_breakdown", "/Dashboard/Issues", decode_issues, dict),
    Metric("duplicate_groups", "/Dashboard/DuplicateGroups", decode_count, int),
)


@dataclass
class DashboardData:
    met_sla: float = 0.0
    average_extra_days: float = 0.0
    priority: dict = field(default_factory=_zeros("P1", "P2", "P3", "P4"))
    non_functional_team: dict = field(default_factory=_zeros("included", "notIncluded"))
    assigned_team_responsible: dict = field(default_factory=_zeros("yes", "no"))
    assigned_team_fixing: dict = field(default_factory=_zeros("yes", "no"))
    system_distribution: dict = field(default_factory=_zeros("jupyterhub", "zeppelin"))
    issues_breakdown: dict = field(default_factory=dict)
    duplicate_groups: int = 0
    failed: list[str] = field(default_factory=list)

    def totals(self) -> dict[str, float]:
        return {
            "priority": sum(self.priority.values()),
            "non_functional_team": sum(self.non_functional_team.values()),
            "assigned_team_responsible": sum(self.assigned_team_responsible.values()),
            "assigned_team_fixing": sum(self.assigned_team_fixing.values()),
            "system_distribution": sum(self.system_distribution.values()),
            "issues_breakdown": sum(self.issues_breakdown.values()),
        }

    def issues_sorted(self) -> list[tuple[str, float]]:
        return sorted(self.issues_breakdown.items(), key=lambda item: (-item[1], item[0]))


# ── Filters ───────────────────────────────────────────────────────────────────

@dataclass
class DashboardFilters:
    year: str = ""
    month: str = ""
    service_owner: str = DASHBOARD_DEFAULT_OWNER
    filter_mode: str = "yearMonth"

    @classmethod
    def defaults(cls, today: Optional[date] = None) -> "DashboardFilters":
        today = today or date.today()
        return cls(year=str(today.year), month=str(today.month))

    def validate(self) -> Optional[str]:
        """Error message for the first problem found, None when usable."""
        if self.filter_mode not in FILTER_MODES:
            return f"Unknown filter mode {self.filter_mode!r}"
        if not str(self.year).strip():
            return "Please select a year"
        if not str(self.service_owner).strip():
            return "Please select a service owner"
        if self.filter_mode == "yearMonth" and not str(self.month).strip():
            return "Please select a month or switch to year-only mode"
        return None

    def params(self) -> dict[str, str]:
        params = {"year": str(self.year), "ServiceOwner": self.service_owner}
        if self.filter_mode == "yearMonth" and str(self.month).strip():
            params["month"] = str(self.month)
        return params

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "month": self.month,
            "serviceOwner": self.service_owner,
            "filterMode": self.filter_mode,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DashboardFilters":
        base = cls.defaults()
        mode = data.get("filterMode", base.filter_mode)
        return cls(
            year=str(data.get("year") or base.year),
            month=str(data.get("month") or ""),
            service_owner=str(data.get("serviceOwner") or base.service_owner),
            filter_mode=mode if mode in FILTER_MODES else base.filter_mode,
        )

    @classmethod
    def load(cls, persistence: PersistenceAdapter) -> "DashboardFilters":
        stored = persistence.load(DASHBOARD_FILTERS_KEY, {})
        return cls.from_dict(stored) if stored else cls.defaults()

    def save(self, persistence: PersistenceAdapter) -> Optional[str]:
        return persistence.save(DASHBOARD_FILTERS_KEY, self.to_dict())

    @staticmethod
    def reset(persistence: PersistenceAdapter) -> "DashboardFilters":
        persistence.clear(DASHBOARD_FILTERS_KEY)
        return DashboardFilters.defaults()


def year_options(today: Optional[date] = None) -> list[str]:
    today = today or date.today()
    return [str(y) for y in range(DASHBOARD_FIRST_YEAR, today.year + 1)]


# ── Fetch ─────────────────────────────────────────────────────────────────────

async def _fetch_metric(client: BackendClient, metric: Metric, params: dict) -> tuple[str, Any, bool]:
    try:
        body = await client.get_metric(metric.path, params)
        return metric.name, metric.decode(body), True
    except (BackendError, MetricDecodeError) as exc:
        logger.warning("⚠️  %s unavailable: %s", metric.name, exc)
        return metric.name, metric.default(), False


async def fetch_dashboard(
    client: BackendClient,
    filters: DashboardFilters,
    metrics: Sequence[Metric] = METRICS,
) -> DashboardData:
    error = filters.validate()
    if error:
        raise ValueError(error)

    params = filters.params()
    logger.info("📊 Fetching %d dashboard metric(s) with %s", len(metrics), params)
    results = await asyncio.gather(*(_fetch_metric(client, m, params) for m in metrics))

    data = DashboardData()
    for name, value, ok in results:
        setattr(data, name, value)
        if not ok:
            data.failed.append(name)
    return data
