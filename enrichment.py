# enrichment.py
# Triggers the backend's AI enrichment endpoints. Each stage is a POST with
# no body; a failed stage is recorded and the run moves on to the next one.

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from backend_client import BackendClient, BackendError, date_params

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichmentStage:
    name: str
    path: str


NEW_DATA_PIPELINE: tuple[EnrichmentStage, ...] = (
    EnrichmentStage("AutomationDataProcess", "/Activities/process"),
    EnrichmentStage("AiSummary", "/AISummary/AI_summary"),
    EnrichmentStage("AiSystem", "/System/AI_system"),
    EnrichmentStage("AiIssue", "/Issue/AI_Issue"),
    EnrichmentStage("AiRootCause", "/RootCause/AI_RootCause"),
    EnrichmentStage("AiDuplicate", "/Duplicate/AI_Duplicate"),
    EnrichmentStage("AutomationDataProcessFurther", "/Automation/process_further"),
)

DATED_PIPELINE: tuple[EnrichmentStage, ...] = (
    EnrichmentStage("AiExistingSummary", "/AISummaryDate/AI_summary_date"),
    EnrichmentStage("AiExistingSystem", "/SystemDate/AI_system_date"),
    EnrichmentStage("AiExistingIssue", "/IssueDate/AI_Issue_date"),
    EnrichmentStage("AiExistingRootCause", "/RootCauseDate/AI_RootCause_date"),
    EnrichmentStage("AiExistingDuplicate", "/DuplicateDate/AI_Duplicate_date"),
)


@dataclass
class EnrichmentReport:
    results: dict[str, Any] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)

    @property
    def any_succeeded(self) -> bool:
        return len(self.failed) < len(self.results)

    def to_dict(self) -> dict:
        return {"results": self.results, "failed": self.failed}

    @classmethod
    def from_dict(cls, data: dict) -> "EnrichmentReport":
        return cls(results=dict(data.get("results") or {}), failed=list(data.get("failed") or []))


async def run_stage(
    client: BackendClient,
    stage: EnrichmentStage,
    params: Optional[dict] = None,
) -> Any:
    return await client.trigger(stage.path, params or None)


async def run_enrichment(
    client: BackendClient,
    stages: Sequence[EnrichmentStage] = NEW_DATA_PIPELINE,
    year: Optional[str] = None,
    month: Optional[str] = None,
) -> EnrichmentReport:
    """Run every stage in order; one stage failing never stops the others."""
    params = date_params(year, month)
    report = EnrichmentReport()
    for stage in stages:
        logger.info("🤖 Running %s", stage.name)
        try:
            report.results[stage.name] = await run_stage(client, stage, params)
        except BackendError as exc:
            logger.error("❌ %s failed: %s", stage.name, exc.message)
            report.results[stage.name] = {"error": exc.message}
            report.failed.append(stage.name)
    logger.info(
        "🎉 Enrichment finished: %d/%d stage(s) succeeded",
        len(stages) - len(report.failed), len(stages),
    )
    return report
