"""pipegate data models — all Pydantic v2, all frozen (immutable)."""

from pipegate.models.config import (
    GateThresholds,
    LogLevel,
    PipelineConfig,
    SecurityScanLevel,
    TestFramework,
)
from pipegate.models.projects import BuildSystem, ProjectDescriptor, ProjectFramework
from pipegate.models.reports import (
    AggregatedReport,
    ArchivedReport,
    FindingCounts,
    RunSummary,
    TestTotals,
    Verdict,
    VerdictOutcome,
)
from pipegate.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    GROUP_ORDER,
    Ecosystem,
    ErrorKind,
    ReportFormat,
    StageDefinition,
    StageError,
    StageGroup,
    StageKind,
    StageResult,
    StageStatus,
)

__all__ = [
    # config
    "GateThresholds",
    "LogLevel",
    "PipelineConfig",
    "SecurityScanLevel",
    "TestFramework",
    # projects
    "BuildSystem",
    "ProjectDescriptor",
    "ProjectFramework",
    # stages
    "DEFAULT_STAGE_DEFINITIONS",
    "GROUP_ORDER",
    "Ecosystem",
    "ErrorKind",
    "ReportFormat",
    "StageDefinition",
    "StageError",
    "StageGroup",
    "StageKind",
    "StageResult",
    "StageStatus",
    # reports
    "AggregatedReport",
    "ArchivedReport",
    "FindingCounts",
    "RunSummary",
    "TestTotals",
    "Verdict",
    "VerdictOutcome",
]
