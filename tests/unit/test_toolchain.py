"""Tests for Toolchain — command lines, gating and report directories."""

from __future__ import annotations

from pathlib import Path

import pytest

from pipegate.config import Settings
from pipegate.core.stage_graph import StageGraph
from pipegate.core.toolchain import Toolchain, is_gating, slugify
from pipegate.models.config import PipelineConfig, SecurityScanLevel, TestFramework
from pipegate.models.projects import BuildSystem, ProjectDescriptor, ProjectFramework
from tests.conftest import JUNIT_PATH, NUNIT_PATH, XUNIT_PATH


@pytest.fixture
def toolchain(sample_tree: Path, settings: Settings) -> Toolchain:
    return Toolchain(sample_tree, settings, run_id="pg-test")


def _steps(toolchain: Toolchain, graph: StageGraph, stage_id: str, projects, **config):
    return toolchain.invocations(graph.get(stage_id), PipelineConfig(**config), projects)


class TestSlugify:
    def test_path_separators_replaced(self):
        assert slugify(NUNIT_PATH) == "csharp-nunit-Calculator.Tests-Calculator.Tests.csproj"

    def test_empty_falls_back(self):
        assert slugify("///") == "default"


class TestGating:
    @pytest.mark.parametrize(
        ("stage_id", "config", "expected"),
        [
            ("build_dotnet", PipelineConfig(), True),
            ("environment_jvm", PipelineConfig(), True),
            ("test_nunit", PipelineConfig(fail_on_test_failure=True), True),
            ("test_nunit", PipelineConfig(fail_on_test_failure=False), False),
            ("security_sast", PipelineConfig(fail_on_security_issues=True), True),
            ("security_sast", PipelineConfig(), False),
            ("security_lint", PipelineConfig(fail_on_security_issues=True), False),
            ("security_sonarqube", PipelineConfig(fail_on_security_issues=True), False),
            ("coverage_jvm", PipelineConfig(), False),
        ],
    )
    def test_by_kind(self, graph: StageGraph, stage_id: str, config, expected: bool):
        assert is_gating(graph.get(stage_id), config) is expected


class TestInvocations:
    def test_internal_stages_have_none(self, toolchain, graph, sample_projects):
        for stage_id in ("discovery", "publish_reports", "quality_gate"):
            assert _steps(toolchain, graph, stage_id, sample_projects) == []

    def test_one_step_per_project(self, toolchain, graph, sample_projects):
        steps = _steps(toolchain, graph, "build_dotnet", sample_projects)
        assert [s.target for s in steps] == [NUNIT_PATH, XUNIT_PATH]
        assert steps[0].argv[:3] == ["dotnet", "build", NUNIT_PATH]
        assert "--no-restore" in steps[0].argv

    def test_framework_hint_filters_projects(self, toolchain, graph, sample_projects):
        steps = _steps(
            toolchain, graph, "build_dotnet", sample_projects, test_framework=TestFramework.NUNIT
        )
        assert [s.target for s in steps] == [NUNIT_PATH]

    def test_output_dirs_partitioned(self, toolchain, graph, sample_projects, settings):
        steps = _steps(toolchain, graph, "test_nunit", sample_projects) + _steps(
            toolchain, graph, "test_xunit", sample_projects
        )
        dirs = [s.output_dir for s in steps]
        assert len(set(dirs)) == len(dirs)
        for step in steps:
            assert step.output_dir.parent == settings.report_root / step.stage_id

    def test_dotnet_test_command(self, toolchain, graph, sample_projects):
        (step,) = _steps(toolchain, graph, "test_xunit", sample_projects)
        assert "trx;LogFileName=results.trx" in step.argv
        assert str(step.output_dir) in step.argv
        assert "XPlat Code Coverage" in step.argv
        assert step.report_globs == ["*.trx"]
        assert step.gating is True

    def test_coverage_flag_omitted(self, toolchain, graph, sample_projects):
        (step,) = _steps(
            toolchain, graph, "test_nunit", sample_projects, generate_coverage=False
        )
        assert "XPlat Code Coverage" not in step.argv

    def test_maven_junit(self, toolchain, graph, sample_projects, sample_tree):
        (step,) = _steps(toolchain, graph, "test_junit", sample_projects)
        assert step.argv[:4] == ["mvn", "-B", "-f", "pom.xml"]
        assert step.argv[-1] == "test"
        assert step.cwd == sample_tree.resolve() / "java-junit"
        assert step.external_report_globs == ["target/surefire-reports/TEST-*.xml"]

    def test_gradle_junit(self, toolchain, graph):
        project = ProjectDescriptor(
            path="java-gradle/build.gradle",
            build_system=BuildSystem.GRADLE,
            test_framework=ProjectFramework.JUNIT,
        )
        (step,) = _steps(toolchain, graph, "test_junit", [project])
        assert step.argv == ["gradle", "--no-daemon", "test"]
        assert step.external_report_globs == ["build/test-results/test/TEST-*.xml"]

    def test_environment_jvm_checks_maven(self, toolchain, graph, sample_projects):
        steps = _steps(toolchain, graph, "environment_jvm", sample_projects)
        assert [s.target for s in steps] == ["java", "maven"]

    def test_workspace_scanners(self, toolchain, graph, sample_projects):
        (sast,) = _steps(toolchain, graph, "security_sast", sample_projects)
        (secrets,) = _steps(toolchain, graph, "security_secrets", sample_projects)
        assert sast.target == secrets.target == "workspace"
        assert "--no-git" in secrets.argv
        assert sast.report_globs == ["semgrep.json"]
        assert "--error" not in sast.argv
        assert sast.gating is False

    def test_semgrep_rulesets_follow_level(self, toolchain, graph, sample_projects):
        (step,) = _steps(
            toolchain, graph, "security_sast", sample_projects,
            security_scan_level=SecurityScanLevel.FULL, fail_on_security_issues=True,
        )
        assert "p/owasp-top-ten" in step.argv
        assert "--error" in step.argv
        assert step.gating is True

    def test_fossa_writes_stdout_report(self, toolchain, graph, sample_projects):
        (step,) = _steps(toolchain, graph, "security_license", sample_projects)
        assert step.stdout_file == "fossa.json"

    def test_lint_covers_both_ecosystems(self, toolchain, graph, sample_projects):
        steps = _steps(toolchain, graph, "security_lint", sample_projects)
        assert [s.target for s in steps] == [NUNIT_PATH, XUNIT_PATH, JUNIT_PATH]
        assert steps[-1].argv[-1] == "checkstyle:check"
        assert all(s.gating is False for s in steps)

    def test_publish_uses_run_id(self, toolchain, graph, sample_projects):
        (step,) = _steps(toolchain, graph, "publish_artifacts", sample_projects)
        assert step.argv[:3] == ["jf", "rt", "upload"]
        assert "pipegate-local/pg-test/" in step.argv

    def test_relative_report_root_resolved_against_root(self, sample_tree: Path):
        settings = Settings(_env_file=None, report_root=Path("out"))
        toolchain = Toolchain(sample_tree, settings)
        assert toolchain.stage_dir("build_jvm") == sample_tree.resolve() / "out" / "build_jvm"

    def test_tool_timeout_applied(self, toolchain, graph, sample_projects, settings):
        steps = _steps(toolchain, graph, "restore_jvm", sample_projects)
        assert steps and all(s.timeout_seconds == settings.tool_timeout_seconds for s in steps)
