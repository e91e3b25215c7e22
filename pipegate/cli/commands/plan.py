"""``pipegate plan ROOT`` — show which stages a run would execute.

Runs discovery only and prints the active stage groups in order, marking
the groups that execute concurrently. Nothing is built or scanned.
"""

from __future__ import annotations

import json
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
    RootArgument,
    SecurityScanLevelOption,
    SonarHostUrlOption,
    TestFrameworkOption,
    build_config,
    configure_logging,
    console,
    err_console,
    load_settings,
    resolve_log_level,
)
from pipegate.core.discovery import DiscoveryError
from pipegate.core.orchestrator import Orchestrator
from pipegate.models.config import LogLevel, SecurityScanLevel, TestFramework
from pipegate.monitor.renderer import PipelineRenderer


def plan_cmd(
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
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON."),
) -> None:
    """Print the active stage groups for ROOT."""
    settings = load_settings()
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

    try:
        projects = orchestrator.discoverer.discover(orchestrator.root, config.test_framework)
    except DiscoveryError as exc:
        err_console.print(f"[bold red]Discovery failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    groups = orchestrator.plan(projects)
    if as_json:
        typer.echo(json.dumps({g.name: g.stage_ids for g in groups}, indent=2))
        return

    renderer = PipelineRenderer(console=console)
    renderer.print_projects(projects)
    renderer.print_plan(groups)
