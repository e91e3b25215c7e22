"""Shared CLI options and helpers for the pipegate commands.

Every run parameter is a named option with a default; enum options accept
values case-insensitively and reject anything else before a stage runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from pipegate.config import Settings
from pipegate.models.config import LogLevel, PipelineConfig, SecurityScanLevel, TestFramework

console = Console()
err_console = Console(stderr=True)

RootArgument = typer.Argument(
    Path("."),
    help="Source tree to discover projects in.",
    exists=True,
    file_okay=False,
    dir_okay=True,
    resolve_path=True,
)

GenerateCoverageOption = typer.Option(
    True, "--generate-coverage/--no-generate-coverage", help="Collect and merge code coverage."
)
FailOnTestFailureOption = typer.Option(
    True,
    "--fail-on-test-failure/--no-fail-on-test-failure",
    help="Failed tests make the build FAILURE instead of UNSTABLE.",
)
LogLevelOption = typer.Option(
    None, "--log-level", case_sensitive=False, help="Log and tool verbosity."
)
TestFrameworkOption = typer.Option(
    TestFramework.AUTO, "--test-framework", "-t", case_sensitive=False,
    help="Which test frameworks to run.",
)
SecurityScanLevelOption = typer.Option(
    SecurityScanLevel.BASIC, "--security-scan-level", "-s", case_sensitive=False,
    help="Depth of the security analysis group.",
)
EnableSecurityScanOption = typer.Option(
    True, "--enable-security-scan/--no-enable-security-scan", help="Run the security group."
)
FailOnSecurityIssuesOption = typer.Option(
    False,
    "--fail-on-security-issues/--no-fail-on-security-issues",
    help="Critical findings make the build FAILURE.",
)
EnableLintingOption = typer.Option(
    True, "--enable-linting/--no-enable-linting", help="Run the lint sub-stage."
)
EnableSecretsScanOption = typer.Option(
    True, "--enable-secrets-scan/--no-enable-secrets-scan", help="Run the Gitleaks sub-stage."
)
EnableLicenseCheckOption = typer.Option(
    False, "--enable-license-check/--no-enable-license-check", help="Run the FOSSA sub-stage."
)
PublishArtifactsOption = typer.Option(
    False,
    "--publish-artifacts/--no-publish-artifacts",
    help="Upload build outputs with the JFrog CLI.",
)
SonarHostUrlOption = typer.Option(
    None, "--sonar-host-url", help="SonarQube server; enables the SonarQube sub-stage."
)
ReportRootOption = typer.Option(
    None, "--report-root", "-r", help="Report directory (default: PIPEGATE_REPORT_ROOT)."
)


def configure_logging(level: LogLevel) -> None:
    """Route ``logging`` through Rich on stderr at *level*."""
    logging.basicConfig(
        level=level.logging_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def resolve_log_level(log_level: Optional[LogLevel], settings: Settings) -> LogLevel:
    if log_level is not None:
        return log_level
    try:
        return LogLevel(settings.log_level.upper())
    except ValueError:
        err_console.print(
            f"[bold red]Invalid PIPEGATE_LOG_LEVEL:[/bold red] {settings.log_level}"
        )
        raise typer.Exit(code=2)


def build_config(**values) -> PipelineConfig:
    """Validate CLI values into a ``PipelineConfig``; exit 2 when invalid."""
    try:
        return PipelineConfig(**values)
    except ValidationError as exc:
        err_console.print(f"[bold red]Invalid configuration:[/bold red]\n{exc}")
        raise typer.Exit(code=2)


def load_settings(report_root: Optional[Path] = None) -> Settings:
    """Runtime settings, with a report root override from the command line."""
    try:
        settings = Settings()
    except ValidationError as exc:
        err_console.print(f"[bold red]Invalid PIPEGATE_* settings:[/bold red]\n{exc}")
        raise typer.Exit(code=2)
    if report_root is not None:
        settings = settings.model_copy(update={"report_root": report_root})
    return settings
