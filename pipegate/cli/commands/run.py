"""``pipegate run ROOT`` — execute the full pipeline against a source tree.

Discovers projects, runs the active stage groups, archives every report,
evaluates the quality gate and writes ``pipeline-summary.json``. The exit
code is 0 for SUCCESS, 1 for FAILURE and ``PIPEGATE_UNSTABLE_EXIT_CODE``
(default 2) for UNSTABLE.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from pipegate.cli.options import (
    EnableLicenseCheckOption,
    EnableLintingOption,
    EnableSecretsScanOption,
    EnableSecurityScanOption,
    FailOnSecurityIssuesOption,
    FailOnTestFailureOption,
    GenerateCoverageOption,
    LogLevelOption,
    PublishArtifactsOption,
    ReportRootOption,
    RootArgument,
    SecurityScanLevelOption,
    SonarHostUrlOption,
    TestFrameworkOption,
    build_config,
    configure_logging,
    console,
    load_settings,
    resolve_log_level,
)
from pipegate.core.orchestrator import Orchestrator
from pipegate.models.config import LogLevel, SecurityScanLevel, TestFramework
from pipegate.monitor.renderer import PipelineRenderer


def run_cmd(
    root: Path = RootArgument,
    generate_coverage: bool = GenerateCoverageOption,
    fail_on_test_failure: bool = FailOnTestFailureOption,
    log_level: Optional[LogLevel] = LogLevelOption,
    test_framework: TestFramework = TestFrameworkOption,
    security_scan_level: SecurityScanLevel = SecurityScanLevelOption,
    enable_security_scan: bool = EnableSecurityScanOption,
    fail_on_security_issues: bool = FailOnSecurityIssuesOption,
    enable_linting: bool = EnableLintingOption,
    enable_secrets_scan: bool = EnableSecretsScanOption,
    enable_license_check: bool = EnableLicenseCheckOption,
    publish_artifacts: bool = PublishArtifactsOption,
    sonar_host_url: Optional[str] = SonarHostUrlOption,
    report_root: Optional[Path] = ReportRootOption,
    timeout: Optional[float] = typer.Option(
        None, "--timeout", min=1.0, help="Wall-clock budget for the whole run, in seconds."
    ),
) -> None:
    """Run the pipeline and exit with the verdict's code."""
    settings = load_settings(report_root)
    if timeout is not None:
        settings = settings.model_copy(update={"run_timeout_seconds": timeout})
    level = resolve_log_level(log_level, settings)
    configure_logging(level)

    config = build_config(
        generate_coverage=generate_coverage,
        fail_on_test_failure=fail_on_test_failure,
        log_level=level,
        test_framework=test_framework,
        security_scan_level=security_scan_level,
        enable_security_scan=enable_security_scan,
        fail_on_security_issues=fail_on_security_issues,
        enable_linting=enable_linting,
        enable_secrets_scan=enable_secrets_scan,
        enable_license_check=enable_license_check,
        publish_artifacts=publish_artifacts,
        sonar_host_url=sonar_host_url,
    )

    orchestrator = Orchestrator(config=config, root=root, settings=settings)
    summary = orchestrator.run()

    PipelineRenderer(console=console).print_summary(summary)
    console.print(f"[dim]Summary written to {orchestrator.summary_path}[/dim]")
    raise typer.Exit(code=orchestrator.exit_code(summary.verdict))
