"""Runtime settings — env-driven knobs shared by every run.

Centralized config using pydantic-settings. Reads from a .env file and
PIPEGATE_* environment variables. Per-run parameters live in
``pipegate.models.config.PipelineConfig``; this module holds the ambient
values an operator sets once per agent or container.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pipegate.models.config import GateThresholds
from pipegate.models.projects import BuildSystem, ProjectDescriptor, ProjectFramework


def _sample_projects() -> list[ProjectDescriptor]:
    return [
        ProjectDescriptor(
            path="csharp-nunit/Calculator.Tests/Calculator.Tests.csproj",
            build_system=BuildSystem.SOLUTION,
            test_framework=ProjectFramework.NUNIT,
            name="Calculator.Tests (NUnit)",
        ),
        ProjectDescriptor(
            path="csharp-xunit/Calculator.Tests/Calculator.Tests.csproj",
            build_system=BuildSystem.SOLUTION,
            test_framework=ProjectFramework.XUNIT,
            name="Calculator.Tests (xUnit)",
        ),
        ProjectDescriptor(
            path="java-junit/pom.xml",
            build_system=BuildSystem.MAVEN,
            test_framework=ProjectFramework.JUNIT,
            name="java-junit",
        ),
    ]


class Settings(BaseSettings):
    """Runtime settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export PIPEGATE_REPORT_ROOT=/workspace/reports
        export PIPEGATE_RUN_TIMEOUT_SECONDS=1800
        export PIPEGATE_THRESHOLDS='{"min_coverage_percent": 70}'

    Or via .env file::

        PIPEGATE_MAX_PARALLEL_TASKS=4
        PIPEGATE_JFROG_REPOSITORY=libs-snapshot-local
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PIPEGATE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Output layout
    report_root: Path = Path("reports")
    summary_file: str = "pipeline-summary.json"

    # Scheduling
    run_timeout_seconds: float = Field(default=3600.0, gt=0)
    tool_timeout_seconds: float = Field(default=900.0, gt=0)
    max_parallel_tasks: int = Field(default=6, ge=1)
    cancel_poll_seconds: float = Field(default=0.2, gt=0)

    # Verdict policy
    unstable_exit_code: int = 2
    thresholds: GateThresholds = GateThresholds()

    # Discovery
    fallback_projects: list[ProjectDescriptor] = Field(
        default_factory=_sample_projects
    )

    # Tool binaries
    dotnet_bin: str = "dotnet"
    maven_bin: str = "mvn"
    gradle_bin: str = "gradle"
    java_bin: str = "java"
    reportgenerator_bin: str = "reportgenerator"
    semgrep_bin: str = "semgrep"
    trivy_bin: str = "trivy"
    gitleaks_bin: str = "gitleaks"
    fossa_bin: str = "fossa"
    sonar_scanner_bin: str = "sonar-scanner"
    dependency_check_bin: str = "dependency-check"
    jfrog_bin: str = "jf"

    # Artifact publishing
    jfrog_repository: str = "pipegate-local"
    jfrog_upload_pattern: str = "**/bin/Release/**/*.dll"
    sonar_project_key: str = "pipegate"
    build_configuration: str = "Release"

