# tests/test_dashboard.py

from datetime import date

import pytest

from dashboard import (
    METRICS,
    DashboardData,
    DashboardFilters,
    MetricDecodeError,
    counts_decoder,
    decode_count,
    decode_issues,
    decode_percent,
    fetch_dashboard,
    year_options,
)
from conftest import FULL_METRICS

# ── Decoders ──────────────────────────────────────────────────────────────────

def test_percent_accepts_string_and_number():
    assert decode_percent("93.50%") == 93.5
    assert decode_percent(100) == 100.0
    assert decode_percent(" 12.5 ") == 12.5
    with pytest.raises(MetricDecodeError):
        decode_percent("n/a")
    with pytest.raises(MetricDecodeError):
        decode_percent(True)


def test_counts_accept_array_or_any_case_object():
    decode = counts_decoder("priority", ("P1", "P2", "P3", "P4"))
    assert decode([1, 2, 3, 4]) == {"P1": 1, "P2": 2, "P3": 3, "P4": 4}
    assert decode({"p1": 1, "P2": "2", "p3": 0, "P4": 4}) == {"P1": 1, "P2": 2, "P3": 0, "P4": 4}
    with pytest.raises(MetricDecodeError):
        decode([1, 2])
    with pytest.raises(MetricDecodeError):
        decode({"P1": 1})


def test_issue_and_count_shapes():
    assert decode_issues({"Quota": 2}) == {"Quota": 2}
    assert decode_issues([{"name": "Quota", "count": 2}]) == {"Quota": 2}
    with pytest.raises(MetricDecodeError):
        decode_issues("Quota")
    assert decode_count(4) == 4
    assert decode_count({"Count": "5"}) == 5


@pytest.mark.parametrize("body", ["NaN", "Infinity", "-inf%", float("nan"), float("inf"), {"count": "NaN"}])
def test_non_finite_values_do_not_decode(body):
    with pytest.raises(MetricDecodeError):
        decode_count(body)
    if not isinstance(body, dict):
        with pytest.raises(MetricDecodeError):
            decode_percent(body)


def test_totals_and_sorted_issues():
    data = DashboardData(issues_breakdown={"A": 1, "B": 5, "C": 5}, priority={"P1": 1, "P2": 2, "P3": 0, "P4": 0})
    assert data.issues_sorted() == [("B", 5), ("C", 5), ("A", 1)]
    assert data.totals()["priority"] == 3
    assert data.totals()["issues_breakdown"] == 11


# ── Filters ───────────────────────────────────────────────────────────────────

def test_filter_defaults_and_validation():
    filters = DashboardFilters.defaults(date(2025, 2, 14))
    assert filters.to_dict() == {
        "year": "2025", "month": "2", "serviceOwner": "Mark", "filterMode": "yearMonth",
    }
    assert filters.validate() is None
    assert DashboardFilters(year="2025", month="", service_owner="Mark").validate() is not None
    assert DashboardFilters(year="2025", service_owner="Mark", filter_mode="yearOnly").validate() is None
    assert DashboardFilters(year="", service_owner="Mark", filter_mode="yearOnly").validate() is not None
    assert DashboardFilters(year="2025", service_owner="", filter_mode="yearOnly").validate() is not None


def test_month_omitted_in_year_only_mode():
    filters = DashboardFilters("2024", "05", "Steve", "yearOnly")
    assert filters.params() == {"year": "2024", "ServiceOwner": "Steve"}
    filters.filter_mode = "yearMonth"
    assert filters.params() == {"year": "2024", "ServiceOwner": "Steve", "month": "05"}


def test_filters_persist_and_reset(persistence):
    DashboardFilters("2024", "", "Sarah", "yearOnly").save(persistence)
    loaded = DashboardFilters.load(persistence)
    assert (loaded.year, loaded.service_owner, loaded.filter_mode) == ("2024", "Sarah", "yearOnly")

    reset = DashboardFilters.reset(persistence)
    assert reset.service_owner == "Mark"
    assert DashboardFilters.load(persistence).filter_mode == "yearMonth"


def test_year_options_start_at_first_year():
    assert year_options(date(2026, 1, 1)) == ["2024", "2025", "2026"]


# ── Fetch ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fetch_decodes_every_metric(backend, client):
    backend.metrics = dict(FULL_METRICS)

    data = await fetch_dashboard(client, DashboardFilters("2024", "03", "Mark", "yearMonth"))

    assert data.failed == []
    assert data.met_sla == 93.5
    assert data.average_extra_days == 8.5
    assert data.priority == {"P1": 1, "P2": 4, "P3": 10, "P4": 2}
    assert data.non_functional_team == {"included": 3, "notIncluded": 14}
    assert data.assigned_team_fixing == {"yes": 9, "no": 8}
    assert data.system_distribution == {"jupyterhub": 11, "zeppelin": 6}
    assert data.issues_breakdown == {"Kernel crash": 7, "Quota": 9}
    assert data.duplicate_groups == 3


@pytest.mark.asyncio
async def test_year_only_fetch_with_failures_defaults_to_zero(backend, client):
    backend.metrics = dict(FULL_METRICS)
    del backend.metrics["/Dashboard/Priority"]
    backend.metrics["/Dashboard/System"] = "garbage"

    data = await fetch_dashboard(client, DashboardFilters("2024", "", "Mark", "yearOnly"))

    assert len(backend.calls) == len(METRICS)
    for _, _, params, _ in backend.calls:
        assert params == {"year": "2024", "ServiceOwner": "Mark"}
    assert sorted(data.failed) == ["priority", "system_distribution"]
    assert data.priority == {"P1": 0, "P2": 0, "P3": 0, "P4": 0}
    assert data.system_distribution == {"jupyterhub": 0, "zeppelin": 0}
    assert data.met_sla == 93.5


@pytest.mark.asyncio
async def test_non_finite_metric_fails_alone(backend, client):
    backend.metrics = dict(FULL_METRICS)
    backend.metrics["/Dashboard/DuplicateGroups"] = {"count": "Infinity"}
    backend.metrics["/Dashboard/ExtraDaysAfterSLA"] = "NaN"

    data = await fetch_dashboard(client, DashboardFilters("2024", "3", "Mark", "yearMonth"))

    assert sorted(data.failed) == ["average_extra_days", "duplicate_groups"]
    assert data.duplicate_groups == 0
    assert data.average_extra_days == 0.0
    assert data.met_sla == 93.5


@pytest.mark.asyncio
async def test_invalid_filters_make_no_calls(backend, client):
    with pytest.raises(ValueError):
        await fetch_dashboard(client, DashboardFilters("2024", "", "Mark", "yearMonth"))
    assert backend.calls == []
