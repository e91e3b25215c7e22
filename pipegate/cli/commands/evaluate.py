"""``pipegate evaluate SUMMARY`` — re-apply the quality gate to a finished run.

Reads a ``pipeline-summary.json``, re-evaluates its aggregated report under
the recorded configuration (optionally with the gating flags overridden)
and the current thresholds, and exits with the verdict's code. Useful for
trying a stricter policy on an existing run without rebuilding anything.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from pipegate.cli.options import console, err_console, load_settings
from pipegate.core.hasher import canonical_json_bytes, sha256_hex
from pipegate.core.quality_gate import QualityGateEvaluator, exit_code_for
from pipegate.core.report_archive import ReportArchive
from pipegate.models.reports import RunSummary
from pipegate.monitor.renderer import PipelineRenderer


def evaluate_cmd(
    summary_file: Path = typer.Argument(
        ...,
        help="Path to a pipeline-summary.json written by 'pipegate run'.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    fail_on_test_failure: Optional[bool] = typer.Option(
        None,
        "--fail-on-test-failure/--no-fail-on-test-failure",
        help="Override the recorded test gating.",
    ),
    fail_on_security_issues: Optional[bool] = typer.Option(
        None,
        "--fail-on-security-issues/--no-fail-on-security-issues",
        help="Override the recorded security gating.",
    ),
    min_coverage: Optional[float] = typer.Option(
        None, "--min-coverage", min=0.0, max=100.0, help="Minimum line coverage percent."
    ),
    verify_archive: bool = typer.Option(
        False, "--verify-archive", help="Re-hash the archived reports and the aggregated report."
    ),
) -> None:
    """Re-evaluate the quality gate for a recorded run."""
    try:
        summary = RunSummary.model_validate_json(summary_file.read_text(encoding="utf-8"))
    except ValidationError as exc:
        err_console.print(f"[bold red]Not a pipegate run summary:[/bold red]\n{exc}")
        raise typer.Exit(code=2)

    settings = load_settings()
    overrides = {
        key: value
        for key, value in (
            ("fail_on_test_failure", fail_on_test_failure),
            ("fail_on_security_issues", fail_on_security_issues),
        )
        if value is not None
    }
    config = summary.configuration.model_copy(update=overrides)
    thresholds = settings.thresholds
    if min_coverage is not None:
        thresholds = thresholds.model_copy(update={"min_coverage_percent": min_coverage})

    if verify_archive:
        archive = ReportArchive(summary_file.parent, summary.run_id)
        broken = archive.verify(summary.archived_reports)
        for path in broken:
            err_console.print(f"[bold red]Archived report altered or missing:[/bold red] {path}")
        digest = sha256_hex(canonical_json_bytes(summary.report))
        edited = bool(summary.report_sha256) and digest != summary.report_sha256
        if edited:
            err_console.print(
                "[bold red]Aggregated report does not match its recorded digest.[/bold red]"
            )
        if broken or edited:
            raise typer.Exit(code=1)
        console.print(
            f"[green]{len(summary.archived_reports)} archived report(s) verified.[/green]"
        )

    verdict = QualityGateEvaluator(thresholds).evaluate_run(
        summary.report, config, summary.results, summary.errors, summary.cancelled
    )

    PipelineRenderer(console=console).print_verdict(verdict)
    raise typer.Exit(code=exit_code_for(verdict, settings.unstable_exit_code))
