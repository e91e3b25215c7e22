"""``pipegate discover ROOT`` — list the test projects found under a tree."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from pipegate.cli.options import (
    LogLevelOption,
    RootArgument,
    TestFrameworkOption,
    configure_logging,
    console,
    err_console,
    load_settings,
    resolve_log_level,
)
from pipegate.core.discovery import DiscoveryError, ProjectDiscoverer
from pipegate.models.config import LogLevel, TestFramework
from pipegate.monitor.renderer import PipelineRenderer


def discover_cmd(
    root: Path = RootArgument,
    test_framework: TestFramework = TestFrameworkOption,
    log_level: Optional[LogLevel] = LogLevelOption,
    no_fallback: bool = typer.Option(
        False, "--no-fallback", help="Do not fall back to the configured sample projects."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the projects as JSON."),
) -> None:
    """Discover and classify test projects under ROOT."""
    settings = load_settings()
    configure_logging(resolve_log_level(log_level, settings))

    discoverer = ProjectDiscoverer(() if no_fallback else settings.fallback_projects)
    try:
        projects = discoverer.discover(root, test_framework)
    except DiscoveryError as exc:
        err_console.print(f"[bold red]Discovery failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps([p.model_dump(mode="json") for p in projects], indent=2))
        return
    PipelineRenderer(console=console).print_projects(projects)
