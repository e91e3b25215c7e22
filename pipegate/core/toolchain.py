"""Toolchain — concrete command lines for every tool-backed stage.

``Toolchain.invocations`` turns a stage definition plus the run's
configuration and projects into the ``ToolInvocation`` steps for that
stage. Internal stages (discovery, report archiving, quality gate) have no
invocations; the orchestrator handles them itself.

Report directories are partitioned as ``<report_root>/<stage_id>/<target>``
so concurrent stages never write to the same path.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from pathlib import Path

from pipegate.config import Settings
from pipegate.core.discovery import select_projects
from pipegate.core.tool_runner import ToolInvocation
from pipegate.models.config import LogLevel, PipelineConfig, SecurityScanLevel
from pipegate.models.projects import BuildSystem, ProjectDescriptor, ProjectFramework
from pipegate.models.stages import StageDefinition, StageKind

_SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")

_DOTNET_VERBOSITY: dict[LogLevel, str] = {
    LogLevel.DEBUG: "detailed",
    LogLevel.INFO: "minimal",
    LogLevel.WARN: "quiet",
    LogLevel.ERROR: "quiet",
}

_SEMGREP_RULESETS: dict[SecurityScanLevel, list[str]] = {
    SecurityScanLevel.BASIC: ["p/default"],
    SecurityScanLevel.COMPREHENSIVE: ["p/default", "p/security-audit"],
    SecurityScanLevel.FULL: ["p/default", "p/security-audit", "p/secrets", "p/owasp-top-ten"],
}

_TRIVY_SEVERITIES: dict[SecurityScanLevel, str] = {
    SecurityScanLevel.BASIC: "HIGH,CRITICAL",
    SecurityScanLevel.COMPREHENSIVE: "MEDIUM,HIGH,CRITICAL",
    SecurityScanLevel.FULL: "UNKNOWN,LOW,MEDIUM,HIGH,CRITICAL",
}

_JACOCO = "org.jacoco:jacoco-maven-plugin"


def slugify(value: str) -> str:
    """Filesystem-safe directory name for a target."""
    return _SLUG_RE.sub("-", value).strip("-") or "default"


def is_gating(definition: StageDefinition, config: PipelineConfig) -> bool:
    """Whether a non-zero exit of this stage's tools means FAILURE."""
    if definition.kind in (StageKind.SETUP, StageKind.BUILD, StageKind.PUBLISH):
        return True
    if definition.kind is StageKind.TEST:
        return config.fail_on_test_failure
    if definition.kind is StageKind.SECURITY:
        return config.fail_on_security_issues
    return False


class Toolchain:
    """Builds tool invocations for one run.

    Parameters
    ----------
    root:
        Source tree the projects were discovered in.
    settings:
        Runtime settings (binary names, report root, timeouts).
    run_id:
        Identifier used for published artifact paths.
    """

    def __init__(self, root: Path, settings: Settings, run_id: str = "local") -> None:
        self.root = Path(root).resolve()
        self.settings = settings
        self.report_root = Path(settings.report_root)
        if not self.report_root.is_absolute():
            self.report_root = self.root / self.report_root
        self.run_id = run_id

        self._builders: dict[str, Callable[..., list[ToolInvocation]]] = {
            "environment_dotnet": self._environment_dotnet,
            "environment_jvm": self._environment_jvm,
            "restore_dotnet": self._restore_dotnet,
            "restore_jvm": self._restore_jvm,
            "build_dotnet": self._build_dotnet,
            "build_jvm": self._build_jvm,
            "test_nunit": self._test_nunit,
            "test_xunit": self._test_xunit,
            "test_junit": self._test_junit,
            "coverage_dotnet": self._coverage_dotnet,
            "coverage_jvm": self._coverage_jvm,
            "security_dependency_check": self._dependency_check,
            "security_sast": self._sast,
            "security_lint": self._lint,
            "security_secrets": self._secrets,
            "security_license": self._license,
            "security_sonarqube": self._sonarqube,
            "security_container": self._container,
            "publish_artifacts": self._publish_artifacts,
        }

    def stage_dir(self, stage_id: str) -> Path:
        return self.report_root / stage_id

    def invocations(
        self,
        definition: StageDefinition,
        config: PipelineConfig,
        projects: Sequence[ProjectDescriptor],
    ) -> list[ToolInvocation]:
        """Ordered invocation steps for *definition*; empty for internal stages."""
        builder = self._builders.get(definition.stage_id)
        if builder is None:
            return []
        selected = select_projects(projects, config.test_framework)
        gating = is_gating(definition, config)
        return builder(definition, config, selected, gating)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _invocation(
        self,
        definition: StageDefinition,
        target: str,
        argv: list[str],
        gating: bool,
        *,
        cwd: Path | None = None,
        **kwargs,
    ) -> ToolInvocation:
        return ToolInvocation(
            stage_id=definition.stage_id,
            target=target,
            argv=argv,
            cwd=cwd or self.root,
            output_dir=self._out(definition, target),
            gating=gating,
            timeout_seconds=self.settings.tool_timeout_seconds,
            **kwargs,
        )

    def _out(self, definition: StageDefinition, target: str) -> Path:
        return self.stage_dir(definition.stage_id) / slugify(target)

    @staticmethod
    def _dotnet(projects: Sequence[ProjectDescriptor]) -> list[ProjectDescriptor]:
        return [p for p in projects if p.build_system.is_dotnet]

    @staticmethod
    def _jvm(projects: Sequence[ProjectDescriptor]) -> list[ProjectDescriptor]:
        return [p for p in projects if p.build_system.is_jvm]

    def _jvm_cmd(self, project: ProjectDescriptor, *args: str) -> tuple[list[str], Path]:
        """argv and cwd for a Maven or Gradle project."""
        cwd = self.root / project.directory
        if project.build_system is BuildSystem.MAVEN:
            return [self.settings.maven_bin, "-B", "-f", Path(project.path).name, *args], cwd
        return [self.settings.gradle_bin, "--no-daemon", *args], cwd

    # ------------------------------------------------------------------
    # Environment / restore / build
    # ------------------------------------------------------------------

    def _environment_dotnet(self, definition, config, projects, gating):
        return [
            self._invocation(definition, "dotnet", [self.settings.dotnet_bin, "--info"], gating)
        ]

    def _environment_jvm(self, definition, config, projects, gating):
        steps = [
            self._invocation(definition, "java", [self.settings.java_bin, "-version"], gating)
        ]
        systems = {p.build_system for p in self._jvm(projects)}
        if BuildSystem.MAVEN in systems:
            steps.append(
                self._invocation(definition, "maven", [self.settings.maven_bin, "-v"], gating)
            )
        if BuildSystem.GRADLE in systems:
            steps.append(
                self._invocation(
                    definition, "gradle", [self.settings.gradle_bin, "--version"], gating
                )
            )
        return steps

    def _restore_dotnet(self, definition, config, projects, gating):
        verbosity = _DOTNET_VERBOSITY[config.log_level]
        return [
            self._invocation(
                definition,
                p.path,
                [self.settings.dotnet_bin, "restore", p.path, "--verbosity", verbosity],
                gating,
            )
            for p in self._dotnet(projects)
        ]

    def _restore_jvm(self, definition, config, projects, gating):
        steps = []
        for p in self._jvm(projects):
            goal = "dependency:go-offline" if p.build_system is BuildSystem.MAVEN else "dependencies"
            argv, cwd = self._jvm_cmd(p, goal)
            steps.append(self._invocation(definition, p.path, argv, gating, cwd=cwd))
        return steps

    def _build_dotnet(self, definition, config, projects, gating):
        verbosity = _DOTNET_VERBOSITY[config.log_level]
        return [
            self._invocation(
                definition,
                p.path,
                [
                    self.settings.dotnet_bin, "build", p.path,
                    "--configuration", self.settings.build_configuration,
                    "--no-restore",
                    "--verbosity", verbosity,
                ],
                gating,
            )
            for p in self._dotnet(projects)
        ]

    def _build_jvm(self, definition, config, projects, gating):
        steps = []
        for p in self._jvm(projects):
            if p.build_system is BuildSystem.MAVEN:
                argv, cwd = self._jvm_cmd(p, "test-compile")
            else:
                argv, cwd = self._jvm_cmd(p, "testClasses")
            steps.append(self._invocation(definition, p.path, argv, gating, cwd=cwd))
        return steps

    # ------------------------------------------------------------------
    # Tests and coverage
    # ------------------------------------------------------------------

    def _dotnet_tests(self, definition, config, projects, gating, framework):
        steps = []
        for p in projects:
            if p.test_framework is not framework:
                continue
            out = self._out(definition, p.path)
            argv = [
                self.settings.dotnet_bin, "test", p.path,
                "--configuration", self.settings.build_configuration,
                "--no-build",
                "--logger", "trx;LogFileName=results.trx",
                "--results-directory", str(out),
                "--verbosity", _DOTNET_VERBOSITY[config.log_level],
            ]
            if config.generate_coverage:
                argv += ["--collect", "XPlat Code Coverage"]
            steps.append(
                self._invocation(definition, p.path, argv, gating, report_globs=["*.trx"])
            )
        return steps

    def _test_nunit(self, definition, config, projects, gating):
        return self._dotnet_tests(definition, config, projects, gating, ProjectFramework.NUNIT)

    def _test_xunit(self, definition, config, projects, gating):
        return self._dotnet_tests(definition, config, projects, gating, ProjectFramework.XUNIT)

    def _test_junit(self, definition, config, projects, gating):
        steps = []
        for p in projects:
            if p.test_framework is not ProjectFramework.JUNIT:
                continue
            if p.build_system is BuildSystem.MAVEN:
                goals = [f"{_JACOCO}:prepare-agent", "test"] if config.generate_coverage else ["test"]
                argv, cwd = self._jvm_cmd(p, *goals)
                reports = ["target/surefire-reports/TEST-*.xml"]
            else:
                argv, cwd = self._jvm_cmd(p, "test")
                reports = ["build/test-results/test/TEST-*.xml"]
            steps.append(
                self._invocation(
                    definition, p.path, argv, gating, cwd=cwd, external_report_globs=reports
                )
            )
        return steps

    def _coverage_dotnet(self, definition, config, projects, gating):
        out = self._out(definition, "dotnet")
        sources = ";".join(
            str(self.stage_dir(stage) / "**" / "coverage.cobertura.xml")
            for stage in ("test_nunit", "test_xunit")
        )
        argv = [
            self.settings.reportgenerator_bin,
            f"-reports:{sources}",
            f"-targetdir:{out}",
            "-reporttypes:Cobertura;HtmlSummary",
        ]
        return [
            self._invocation(definition, "dotnet", argv, gating, report_globs=["Cobertura.xml"])
        ]

    def _coverage_jvm(self, definition, config, projects, gating):
        steps = []
        for p in projects:
            if p.test_framework is not ProjectFramework.JUNIT:
                continue
            if p.build_system is BuildSystem.MAVEN:
                argv, cwd = self._jvm_cmd(p, f"{_JACOCO}:report")
                reports = ["target/site/jacoco/jacoco.xml"]
            else:
                argv, cwd = self._jvm_cmd(p, "jacocoTestReport")
                reports = ["build/reports/jacoco/test/jacocoTestReport.xml"]
            steps.append(
                self._invocation(
                    definition, p.path, argv, gating, cwd=cwd, external_report_globs=reports
                )
            )
        return steps

    # ------------------------------------------------------------------
    # Security analysis
    # ------------------------------------------------------------------

    def _dependency_check(self, definition, config, projects, gating):
        out = self._out(definition, "workspace")
        argv = [
            self.settings.dependency_check_bin,
            "--project", self.root.name,
            "--scan", str(self.root),
            "--format", "JSON",
            "--out", str(out),
            "--exclude", f"{self.report_root}/**",
        ]
        if config.fail_on_security_issues:
            argv += ["--failOnCVSS", "9"]
        if config.security_scan_level is SecurityScanLevel.FULL:
            argv.append("--enableExperimental")
        return [
            self._invocation(
                definition, "workspace", argv, gating,
                report_globs=["dependency-check-report.json"],
            )
        ]

    def _sast(self, definition, config, projects, gating):
        out = self._out(definition, "workspace")
        argv = [self.settings.semgrep_bin, "scan"]
        for ruleset in _SEMGREP_RULESETS[config.security_scan_level]:
            argv += ["--config", ruleset]
        argv += ["--json", "--output", str(out / "semgrep.json"), "--metrics", "off"]
        if config.fail_on_security_issues:
            argv.append("--error")
        argv.append(".")
        return [
            self._invocation(definition, "workspace", argv, gating, report_globs=["semgrep.json"])
        ]

    def _lint(self, definition, config, projects, gating):
        steps = []
        for p in self._dotnet(projects):
            argv = [
                self.settings.dotnet_bin, "format", p.path,
                "--verify-no-changes",
                "--verbosity", _DOTNET_VERBOSITY[config.log_level],
            ]
            steps.append(self._invocation(definition, p.path, argv, gating))
        for p in self._jvm(projects):
            goal = "checkstyle:check" if p.build_system is BuildSystem.MAVEN else "checkstyleMain"
            argv, cwd = self._jvm_cmd(p, goal)
            steps.append(self._invocation(definition, p.path, argv, gating, cwd=cwd))
        return steps

    def _secrets(self, definition, config, projects, gating):
        out = self._out(definition, "workspace")
        argv = [
            self.settings.gitleaks_bin, "detect",
            "--source", str(self.root),
            "--report-format", "json",
            "--report-path", str(out / "gitleaks.json"),
            "--no-banner",
        ]
        if not (self.root / ".git").exists():
            argv.append("--no-git")
        return [
            self._invocation(definition, "workspace", argv, gating, report_globs=["gitleaks.json"])
        ]

    def _license(self, definition, config, projects, gating):
        return [
            self._invocation(
                definition, "workspace",
                [self.settings.fossa_bin, "test", "--format", "json"],
                gating,
                stdout_file="fossa.json",
            )
        ]

    def _sonarqube(self, definition, config, projects, gating):
        argv = [
            self.settings.sonar_scanner_bin,
            f"-Dsonar.projectKey={self.settings.sonar_project_key}",
            "-Dsonar.sources=.",
            f"-Dsonar.host.url={config.sonar_host_url}",
            f"-Dsonar.exclusions={self.report_root.name}/**",
        ]
        if config.log_level is LogLevel.DEBUG:
            argv.append("-X")
        return [self._invocation(definition, "workspace", argv, gating)]

    def _container(self, definition, config, projects, gating):
        out = self._out(definition, "workspace")
        argv = [
            self.settings.trivy_bin, "fs",
            "--format", "json",
            "--output", str(out / "trivy.json"),
            "--severity", _TRIVY_SEVERITIES[config.security_scan_level],
            "--skip-dirs", str(self.report_root),
        ]
        if config.fail_on_security_issues:
            argv += ["--exit-code", "1"]
        argv.append(str(self.root))
        return [
            self._invocation(definition, "workspace", argv, gating, report_globs=["trivy.json"])
        ]

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _publish_artifacts(self, definition, config, projects, gating):
        argv = [
            self.settings.jfrog_bin, "rt", "upload",
            self.settings.jfrog_upload_pattern,
            f"{self.settings.jfrog_repository}/{self.run_id}/",
            "--flat=false",
        ]
        return [self._invocation(definition, "artifactory", argv, gating)]
