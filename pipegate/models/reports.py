"""Report models — aggregated results, the final verdict and the run summary."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from pipegate.models.config import PipelineConfig
from pipegate.models.projects import ProjectDescriptor
from pipegate.models.stages import StageError, StageResult, StageStatus


class TestTotals(BaseModel):
    """Summed test counts across every test report of a run."""

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True)

    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    def __add__(self, other: TestTotals) -> TestTotals:
        return TestTotals(
            passed=self.passed + other.passed,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
        )


class FindingCounts(BaseModel):
    """Finding counts reported by one scanner."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(default=0, ge=0)
    critical: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _critical_within_total(self) -> FindingCounts:
        if self.critical > self.total:
            raise ValueError(
                f"critical findings ({self.critical}) exceed total ({self.total})"
            )
        return self

    def __add__(self, other: FindingCounts) -> FindingCounts:
        return FindingCounts(
            total=self.total + other.total,
            critical=self.critical + other.critical,
        )


class AggregatedReport(BaseModel):
    """Unified view over every StageResult of a run.

    Built by ``ReportAggregator.merge``; independent of result order.
    """

    model_config = ConfigDict(frozen=True)

    test_totals: TestTotals = TestTotals()
    coverage_percent: float | None = None
    security_findings: dict[str, FindingCounts] = {}
    stage_statuses: dict[str, StageStatus] = {}
    warnings: list[str] = []

    @property
    def total_critical(self) -> int:
        return sum(c.critical for c in self.security_findings.values())


class VerdictOutcome(str, Enum):
    """Three-state build result."""

    SUCCESS = "success"
    UNSTABLE = "unstable"
    FAILURE = "failure"


class Verdict(BaseModel):
    """Final, terminal outcome of a run."""

    model_config = ConfigDict(frozen=True)

    overall: VerdictOutcome
    reasons: list[str] = []


class ArchivedReport(BaseModel):
    """A per-tool report copied verbatim into the archive."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    name: str
    path: str  # relative to the report root
    sha256: str
    size_bytes: int


class RunSummary(BaseModel):
    """Everything a run produced; written as ``pipeline-summary.json``."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    configuration: PipelineConfig
    projects: list[ProjectDescriptor] = []
    stage_plan: dict[str, list[str]] = {}
    results: list[StageResult] = []
    report: AggregatedReport = AggregatedReport()
    verdict: Verdict
    errors: list[StageError] = []
    archived_reports: list[ArchivedReport] = []
    # SHA-256 of the canonical JSON of `report`; equal reports hash equally.
    report_sha256: str = ""
    cancelled: bool = False
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
