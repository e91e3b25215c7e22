"""Stage models — declared topology, results and orchestration errors."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class StageStatus(str, Enum):
    """Terminal outcome of one tool invocation or stage."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    UNSTABLE = "unstable"
    FAILURE = "failure"

    @property
    def severity(self) -> int:
        return _STATUS_SEVERITY[self]

    @classmethod
    def worst(cls, statuses: list[StageStatus]) -> StageStatus:
        """Most severe status in *statuses* (SUCCESS when empty)."""
        return max(statuses, key=lambda s: s.severity, default=cls.SUCCESS)


_STATUS_SEVERITY: dict[StageStatus, int] = {
    StageStatus.SUCCESS: 0,
    StageStatus.SKIPPED: 1,
    StageStatus.UNSTABLE: 2,
    StageStatus.FAILURE: 3,
}

# Statuses that satisfy a downstream prerequisite.
SATISFYING_STATUSES: frozenset[StageStatus] = frozenset(
    {StageStatus.SUCCESS, StageStatus.UNSTABLE}
)


class StageKind(str, Enum):
    """What a stage does; drives gating and build-status policy."""

    INTERNAL = "internal"
    SETUP = "setup"
    BUILD = "build"
    TEST = "test"
    COVERAGE = "coverage"
    SECURITY = "security"
    LINT = "lint"
    ANALYSIS = "analysis"
    PUBLISH = "publish"

    @property
    def affects_build_status(self) -> bool:
        return self in (StageKind.SETUP, StageKind.BUILD)


class Ecosystem(str, Enum):
    """Toolchain a stage belongs to."""

    DOTNET = "dotnet"
    JVM = "jvm"
    ANY = "any"


class ReportFormat(str, Enum):
    """Native report formats the aggregator can read."""

    TRX = "trx"
    JUNIT_XML = "junit_xml"
    COBERTURA = "cobertura"
    JACOCO = "jacoco"
    SEMGREP_JSON = "semgrep_json"
    TRIVY_JSON = "trivy_json"
    GITLEAKS_JSON = "gitleaks_json"
    DEPENDENCY_CHECK_JSON = "dependency_check_json"
    FOSSA_JSON = "fossa_json"
    SARIF = "sarif"


class StageDefinition(BaseModel):
    """Declares one pipeline stage.

    ``prerequisites`` lists stage ids that must finish SUCCESS or UNSTABLE
    before this stage may run. Prerequisites that are not active in a run
    are ignored.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    group: str
    ordinal: float
    kind: StageKind
    ecosystem: Ecosystem = Ecosystem.ANY
    tool: str | None = None  # scanner name used in security_findings
    report_format: ReportFormat | None = None
    prerequisites: list[str] = []


class StageGroup(BaseModel):
    """One or more stages scheduled together.

    Stages in a concurrent group have no relative ordering and share no
    mutable state.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    stages: list[StageDefinition]

    @property
    def concurrent(self) -> bool:
        return len(self.stages) > 1

    @property
    def stage_ids(self) -> list[str]:
        return [s.stage_id for s in self.stages]


class StageResult(BaseModel):
    """Outcome of a single tool invocation (or internal stage step).

    Never mutated after creation; a stage that covers several projects
    produces one result per ``target``.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    status: StageStatus
    target: str = ""
    artifacts: list[Path] = []
    metrics: dict[str, float] = {}
    reason: str = ""
    exit_code: int | None = None
    duration_seconds: float = 0.0


class ErrorKind(str, Enum):
    """Fatal orchestration error categories."""

    DISCOVERY = "discovery"
    INVOCATION = "invocation"


class StageError(BaseModel):
    """A fatal error recorded against a stage (never a tool result)."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    kind: ErrorKind
    message: str
    target: str = ""


# Fixed execution order of stage groups.
GROUP_ORDER: list[str] = [
    "discovery",
    "environment",
    "restore",
    "build",
    "test",
    "coverage",
    "security",
    "publish",
    "quality_gate",
]


DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id="discovery",
        display_name="Project Discovery",
        group="discovery",
        ordinal=0.0,
        kind=StageKind.INTERNAL,
    ),
    # --- environment -------------------------------------------------------
    StageDefinition(
        stage_id="environment_dotnet",
        display_name=".NET Environment",
        group="environment",
        ordinal=1.0,
        kind=StageKind.SETUP,
        ecosystem=Ecosystem.DOTNET,
        prerequisites=["discovery"],
    ),
    StageDefinition(
        stage_id="environment_jvm",
        display_name="JVM Environment",
        group="environment",
        ordinal=1.1,
        kind=StageKind.SETUP,
        ecosystem=Ecosystem.JVM,
        prerequisites=["discovery"],
    ),
    # --- restore -----------------------------------------------------------
    StageDefinition(
        stage_id="restore_dotnet",
        display_name="Restore .NET Packages",
        group="restore",
        ordinal=2.0,
        kind=StageKind.BUILD,
        ecosystem=Ecosystem.DOTNET,
        prerequisites=["environment_dotnet"],
    ),
    StageDefinition(
        stage_id="restore_jvm",
        display_name="Resolve JVM Dependencies",
        group="restore",
        ordinal=2.1,
        kind=StageKind.BUILD,
        ecosystem=Ecosystem.JVM,
        prerequisites=["environment_jvm"],
    ),
    # --- build -------------------------------------------------------------
    StageDefinition(
        stage_id="build_dotnet",
        display_name="Build .NET Projects",
        group="build",
        ordinal=3.0,
        kind=StageKind.BUILD,
        ecosystem=Ecosystem.DOTNET,
        prerequisites=["restore_dotnet"],
    ),
    StageDefinition(
        stage_id="build_jvm",
        display_name="Build JVM Projects",
        group="build",
        ordinal=3.1,
        kind=StageKind.BUILD,
        ecosystem=Ecosystem.JVM,
        prerequisites=["restore_jvm"],
    ),
    # --- tests -------------------------------------------------------------
    StageDefinition(
        stage_id="test_nunit",
        display_name="NUnit Tests",
        group="test",
        ordinal=4.0,
        kind=StageKind.TEST,
        ecosystem=Ecosystem.DOTNET,
        report_format=ReportFormat.TRX,
        prerequisites=["build_dotnet"],
    ),
    StageDefinition(
        stage_id="test_xunit",
        display_name="xUnit Tests",
        group="test",
        ordinal=4.1,
        kind=StageKind.TEST,
        ecosystem=Ecosystem.DOTNET,
        report_format=ReportFormat.TRX,
        prerequisites=["build_dotnet"],
    ),
    StageDefinition(
        stage_id="test_junit",
        display_name="JUnit 5 Tests",
        group="test",
        ordinal=4.2,
        kind=StageKind.TEST,
        ecosystem=Ecosystem.JVM,
        report_format=ReportFormat.JUNIT_XML,
        prerequisites=["build_jvm"],
    ),
    # --- coverage ----------------------------------------------------------
    StageDefinition(
        stage_id="coverage_dotnet",
        display_name=".NET Coverage Report",
        group="coverage",
        ordinal=5.0,
        kind=StageKind.COVERAGE,
        ecosystem=Ecosystem.DOTNET,
        report_format=ReportFormat.COBERTURA,
        prerequisites=["test_nunit", "test_xunit"],
    ),
    StageDefinition(
        stage_id="coverage_jvm",
        display_name="JaCoCo Coverage Report",
        group="coverage",
        ordinal=5.1,
        kind=StageKind.COVERAGE,
        ecosystem=Ecosystem.JVM,
        report_format=ReportFormat.JACOCO,
        prerequisites=["test_junit"],
    ),
    # --- security ----------------------------------------------------------
    StageDefinition(
        stage_id="security_dependency_check",
        display_name="OWASP Dependency-Check",
        group="security",
        ordinal=6.0,
        kind=StageKind.SECURITY,
        tool="dependency-check",
        report_format=ReportFormat.DEPENDENCY_CHECK_JSON,
        prerequisites=["discovery"],
    ),
    StageDefinition(
        stage_id="security_sast",
        display_name="Semgrep SAST",
        group="security",
        ordinal=6.1,
        kind=StageKind.SECURITY,
        tool="semgrep",
        report_format=ReportFormat.SEMGREP_JSON,
        prerequisites=["discovery"],
    ),
    StageDefinition(
        stage_id="security_lint",
        display_name="Linting",
        group="security",
        ordinal=6.2,
        kind=StageKind.LINT,
        prerequisites=["discovery"],
    ),
    StageDefinition(
        stage_id="security_secrets",
        display_name="Gitleaks Secrets Scan",
        group="security",
        ordinal=6.3,
        kind=StageKind.SECURITY,
        tool="gitleaks",
        report_format=ReportFormat.GITLEAKS_JSON,
        prerequisites=["discovery"],
    ),
    StageDefinition(
        stage_id="security_license",
        display_name="FOSSA License Check",
        group="security",
        ordinal=6.4,
        kind=StageKind.SECURITY,
        tool="fossa",
        report_format=ReportFormat.FOSSA_JSON,
        prerequisites=["discovery"],
    ),
    StageDefinition(
        stage_id="security_sonarqube",
        display_name="SonarQube Analysis",
        group="security",
        ordinal=6.5,
        kind=StageKind.ANALYSIS,
        prerequisites=["discovery"],
    ),
    StageDefinition(
        stage_id="security_container",
        display_name="Trivy Filesystem Scan",
        group="security",
        ordinal=6.6,
        kind=StageKind.SECURITY,
        tool="trivy",
        report_format=ReportFormat.TRIVY_JSON,
        prerequisites=["discovery"],
    ),
    # --- publish -----------------------------------------------------------
    StageDefinition(
        stage_id="publish_reports",
        display_name="Archive Reports",
        group="publish",
        ordinal=7.0,
        kind=StageKind.INTERNAL,
    ),
    StageDefinition(
        stage_id="publish_artifacts",
        display_name="Publish to Artifactory",
        group="publish",
        ordinal=7.1,
        kind=StageKind.PUBLISH,
        prerequisites=["build_dotnet", "build_jvm"],
    ),
    StageDefinition(
        stage_id="quality_gate",
        display_name="Quality Gate",
        group="quality_gate",
        ordinal=8.0,
        kind=StageKind.INTERNAL,
    ),
]
