"""Shared test fixtures for pipegate."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from pipegate.config import Settings
from pipegate.core.stage_graph import StageGraph
from pipegate.core.tool_runner import ToolInvocation
from pipegate.models.projects import BuildSystem, ProjectDescriptor, ProjectFramework
from pipegate.models.stages import StageResult, StageStatus

NUNIT_CSPROJ = """<Project Sdk="Microsoft.NET.Sdk">
  <ItemGroup>
    <PackageReference Include="Microsoft.NET.Test.Sdk" Version="17.8.0" />
    <PackageReference Include="NUnit" Version="3.14.0" />
    <PackageReference Include="NUnit3TestAdapter" Version="4.5.0" />
  </ItemGroup>
</Project>
"""

XUNIT_CSPROJ = """<Project Sdk="Microsoft.NET.Sdk">
  <ItemGroup>
    <PackageReference Include="Microsoft.NET.Test.Sdk" Version="17.8.0" />
    <PackageReference Include="xunit" Version="2.6.1" />
    <PackageReference Include="xunit.runner.visualstudio" Version="2.5.3" />
  </ItemGroup>
</Project>
"""

JUNIT_POM = """<project>
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.example</groupId>
  <artifactId>calculator</artifactId>
  <dependencies>
    <dependency>
      <groupId>org.junit.jupiter</groupId>
      <artifactId>junit-jupiter</artifactId>
      <version>5.10.0</version>
      <scope>test</scope>
    </dependency>
  </dependencies>
</project>
"""

NUNIT_PATH = "csharp-nunit/Calculator.Tests/Calculator.Tests.csproj"
XUNIT_PATH = "csharp-xunit/Calculator.Tests/Calculator.Tests.csproj"
JUNIT_PATH = "java-junit/pom.xml"


def _write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    """A source tree with one NUnit, one xUnit and one JUnit project."""
    root = tmp_path / "src"
    _write(root, NUNIT_PATH, NUNIT_CSPROJ)
    _write(root, XUNIT_PATH, XUNIT_CSPROJ)
    _write(root, JUNIT_PATH, JUNIT_POM)
    _write(root, "csharp-nunit/Calculator/Calculator.cs", "public class Calculator {}\n")
    return root


@pytest.fixture
def sample_projects() -> list[ProjectDescriptor]:
    return [
        ProjectDescriptor(
            path=NUNIT_PATH,
            build_system=BuildSystem.SOLUTION,
            test_framework=ProjectFramework.NUNIT,
            name="Calculator.Tests",
        ),
        ProjectDescriptor(
            path=XUNIT_PATH,
            build_system=BuildSystem.SOLUTION,
            test_framework=ProjectFramework.XUNIT,
            name="Calculator.Tests",
        ),
        ProjectDescriptor(
            path=JUNIT_PATH,
            build_system=BuildSystem.MAVEN,
            test_framework=ProjectFramework.JUNIT,
            name="java-junit",
        ),
    ]


@pytest.fixture
def graph() -> StageGraph:
    """Provide a StageGraph with the default pipeline stages."""
    return StageGraph()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment, reporting into tmp_path."""
    return Settings(
        _env_file=None,
        report_root=tmp_path / "reports",
        run_timeout_seconds=60,
        tool_timeout_seconds=30,
        cancel_poll_seconds=0.05,
    )


# ---------------------------------------------------------------------------
# Report factories
# ---------------------------------------------------------------------------


@pytest.fixture
def write_trx() -> Callable[..., Path]:
    """Factory fixture: write a TRX file with the given counters."""

    def _factory(
        path: Path, total: int, passed: int, failed: int, *, error: int = 0
    ) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            '<?xml version="1.0" encoding="utf-8"?>\n'
            '<TestRun xmlns="http://microsoft.com/schemas/VisualStudio/TeamTest/2010">\n'
            '  <ResultSummary outcome="Completed">\n'
            f'    <Counters total="{total}" executed="{total}" passed="{passed}" '
            f'failed="{failed}" error="{error}" timeout="0" aborted="0" />\n'
            "  </ResultSummary>\n"
            "</TestRun>\n",
            encoding="utf-8",
        )
        return path

    return _factory


@pytest.fixture
def write_junit() -> Callable[..., Path]:
    """Factory fixture: write a Surefire-style JUnit XML file."""

    def _factory(
        path: Path, tests: int, failures: int = 0, errors: int = 0, skipped: int = 0
    ) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f'<testsuite name="com.example.CalculatorTest" tests="{tests}" '
            f'failures="{failures}" errors="{errors}" skipped="{skipped}" time="0.1">\n'
            "</testsuite>\n",
            encoding="utf-8",
        )
        return path

    return _factory


@pytest.fixture
def write_semgrep() -> Callable[..., Path]:
    """Factory fixture: write a semgrep JSON report with ERROR/WARNING results."""

    def _factory(path: Path, errors: int = 0, warnings: int = 0) -> Path:
        results = [{"check_id": f"e{i}", "extra": {"severity": "ERROR"}} for i in range(errors)]
        results += [
            {"check_id": f"w{i}", "extra": {"severity": "WARNING"}} for i in range(warnings)
        ]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"results": results, "errors": []}), encoding="utf-8")
        return path

    return _factory


# ---------------------------------------------------------------------------
# Fake runner
# ---------------------------------------------------------------------------


Behavior = Callable[[ToolInvocation], StageResult]


class FakeRunner:
    """Runner double: records invocations and returns scripted results.

    ``behaviors`` maps a stage id to a callable producing that stage's
    result; every other stage succeeds with no artifacts.
    """

    def __init__(self, behaviors: dict[str, Behavior] | None = None) -> None:
        self.behaviors = behaviors or {}
        self.invocations: list[ToolInvocation] = []
        self._lock = threading.Lock()

    def run(
        self, invocation: ToolInvocation, cancel_event: threading.Event | None = None
    ) -> StageResult:
        with self._lock:
            self.invocations.append(invocation)
        behavior = self.behaviors.get(invocation.stage_id)
        if behavior is not None:
            return behavior(invocation)
        return StageResult(
            stage_id=invocation.stage_id,
            status=StageStatus.SUCCESS,
            target=invocation.target,
            exit_code=0,
        )

    @property
    def stage_ids(self) -> set[str]:
        return {inv.stage_id for inv in self.invocations}


@pytest.fixture
def fake_runner() -> Callable[..., FakeRunner]:
    """Factory fixture: build a FakeRunner with per-stage behaviors."""
    return FakeRunner


@pytest.fixture
def trx_behavior(write_trx) -> Callable[..., Behavior]:
    """Factory fixture: a behavior that writes a TRX report and exits like dotnet test."""

    def _factory(passed: int, failed: int = 0) -> Behavior:
        def _behavior(invocation: ToolInvocation) -> StageResult:
            report = write_trx(
                invocation.output_dir / "results.trx",
                total=passed + failed,
                passed=passed,
                failed=failed,
            )
            if failed == 0:
                status = StageStatus.SUCCESS
            else:
                status = StageStatus.FAILURE if invocation.gating else StageStatus.UNSTABLE
            return StageResult(
                stage_id=invocation.stage_id,
                status=status,
                target=invocation.target,
                artifacts=[report],
                exit_code=1 if failed else 0,
            )

        return _behavior

    return _factory


@pytest.fixture
def semgrep_behavior(write_semgrep) -> Callable[..., Behavior]:
    """Factory fixture: a behavior that writes a semgrep report and exits 0."""

    def _factory(errors: int = 0, warnings: int = 0) -> Behavior:
        def _behavior(invocation: ToolInvocation) -> StageResult:
            report = write_semgrep(
                invocation.output_dir / "semgrep.json", errors=errors, warnings=warnings
            )
            return StageResult(
                stage_id=invocation.stage_id,
                status=StageStatus.SUCCESS,
                target=invocation.target,
                artifacts=[report],
                exit_code=0,
            )

        return _behavior

    return _factory
