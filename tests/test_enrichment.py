# tests/test_enrichment.py

import pytest

from enrichment import DATED_PIPELINE, NEW_DATA_PIPELINE, EnrichmentReport, run_enrichment


@pytest.mark.asyncio
async def test_runs_every_stage_in_order(backend, client):
    report = await run_enrichment(client, NEW_DATA_PIPELINE)

    paths = [c[1] for c in backend.calls]
    assert paths == [stage.path for stage in NEW_DATA_PIPELINE]
    assert report.failed == []
    assert report.any_succeeded
    assert report.results["AiSummary"] == {"processed": "/AISummary/AI_summary"}


@pytest.mark.asyncio
async def test_failed_stage_does_not_stop_the_rest(backend, client):
    backend.failures[("POST", "/System/AI_system")] = (500, "model offline")

    report = await run_enrichment(client, NEW_DATA_PIPELINE)

    assert len(backend.calls) == len(NEW_DATA_PIPELINE)
    assert report.failed == ["AiSystem"]
    assert "model offline" in report.results["AiSystem"]["error"]
    assert report.any_succeeded


@pytest.mark.asyncio
async def test_all_failed_means_nothing_succeeded(backend, client):
    for stage in DATED_PIPELINE:
        backend.failures[("POST", stage.path)] = (500, "down")

    report = await run_enrichment(client, DATED_PIPELINE, "2024", "03")

    assert not report.any_succeeded
    assert len(report.failed) == len(DATED_PIPELINE)


@pytest.mark.asyncio
async def test_dated_pipeline_sends_scope(backend, client):
    await run_enrichment(client, DATED_PIPELINE, "2024")

    for _, _, params, body in backend.calls:
        assert params == {"year": "2024"}
        assert body is None


def test_report_survives_persistence_shape():
    report = EnrichmentReport(results={"AiIssue": {"error": "x"}}, failed=["AiIssue"])
    assert EnrichmentReport.from_dict(report.to_dict()) == report
