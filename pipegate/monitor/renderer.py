"""Rich terminal renderer for pipegate runs.

Turns discovered projects, stage plans and ``RunSummary`` objects into
Rich renderables, with color-coded stage statuses and verdicts.

Color scheme
------------
- green     : SUCCESS
- yellow    : UNSTABLE
- red       : FAILURE
- dim       : SKIPPED
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pipegate.models.projects import ProjectDescriptor
from pipegate.models.reports import AggregatedReport, RunSummary, Verdict, VerdictOutcome
from pipegate.models.stages import StageGroup, StageResult, StageStatus

# ---------------------------------------------------------------------------
# Status -> Rich style mapping
# ---------------------------------------------------------------------------

_STATUS_LABELS: dict[StageStatus, str] = {
    StageStatus.SUCCESS: "[green]SUCCESS[/green]",
    StageStatus.UNSTABLE: "[yellow]UNSTABLE[/yellow]",
    StageStatus.FAILURE: "[bold red]FAILURE[/bold red]",
    StageStatus.SKIPPED: "[dim]SKIPPED[/dim]",
}

_VERDICT_STYLES: dict[VerdictOutcome, str] = {
    VerdictOutcome.SUCCESS: "green",
    VerdictOutcome.UNSTABLE: "yellow",
    VerdictOutcome.FAILURE: "red",
}


class PipelineRenderer:
    """Renders pipegate plans and summaries as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def projects_table(self, projects: Sequence[ProjectDescriptor]) -> Table:
        table = Table(title="Discovered Projects", header_style="bold cyan", expand=True)
        table.add_column("Name", style="cyan", min_width=20)
        table.add_column("Path", min_width=30)
        table.add_column("Build", justify="center")
        table.add_column("Framework", justify="center")
        for project in projects:
            framework = project.test_framework.value
            if not project.is_classified:
                framework = f"[yellow]{framework}[/yellow]"
            table.add_row(
                escape(project.name), escape(project.path), project.build_system.value, framework
            )
        return table

    def plan_table(self, groups: Sequence[StageGroup]) -> Table:
        table = Table(title="Stage Plan", header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Group", min_width=12)
        table.add_column("Stages", min_width=30)
        table.add_column("Mode", justify="center")
        for index, group in enumerate(groups):
            table.add_row(
                str(index),
                group.name,
                "\n".join(f"{s.display_name} [dim]({s.stage_id})[/dim]" for s in group.stages),
                "[magenta]concurrent[/magenta]" if group.concurrent else "sequential",
            )
        return table

    def results_table(self, results: Sequence[StageResult]) -> Table:
        table = Table(title="Stage Results", header_style="bold cyan", expand=True)
        table.add_column("Stage", min_width=22)
        table.add_column("Target", min_width=14)
        table.add_column("Status", justify="center", min_width=10)
        table.add_column("Time", justify="right", width=8)
        table.add_column("Details", min_width=20)
        for result in results:
            details = f"[red]{escape(result.reason)}[/red]" if result.reason else "[dim]-[/dim]"
            table.add_row(
                result.stage_id,
                escape(result.target) or "[dim]-[/dim]",
                _STATUS_LABELS[result.status],
                f"{result.duration_seconds:.1f}s" if result.duration_seconds else "",
                details,
            )
        return table

    def report_table(self, report: AggregatedReport) -> Table:
        table = Table(title="Aggregated Report", header_style="bold cyan", show_header=False)
        table.add_column("Metric", style="bold")
        table.add_column("Value")
        totals = report.test_totals
        table.add_row(
            "Tests",
            f"{totals.total} total, [green]{totals.passed} passed[/green], "
            f"[red]{totals.failed} failed[/red], [dim]{totals.skipped} skipped[/dim]",
        )
        coverage = (
            "[dim]n/a[/dim]"
            if report.coverage_percent is None
            else f"{report.coverage_percent:.2f}%"
        )
        table.add_row("Coverage", coverage)
        for tool, counts in report.security_findings.items():
            critical = f"[bold red]{counts.critical}[/bold red]" if counts.critical else "0"
            table.add_row(escape(tool), f"{counts.total} finding(s), {critical} critical")
        return table

    # ------------------------------------------------------------------
    # Panels
    # ------------------------------------------------------------------

    def verdict_panel(self, verdict: Verdict) -> Panel:
        style = _VERDICT_STYLES[verdict.overall]
        lines = [f"[bold {style}]{verdict.overall.value.upper()}[/bold {style}]"]
        lines.extend(f"  - {escape(reason)}" for reason in verdict.reasons)
        return Panel(
            "\n".join(lines),
            title="[bold]Quality Gate[/bold]",
            border_style=style,
            padding=(1, 2),
        )

    def render_summary(self, summary: RunSummary) -> Panel:
        """Full run summary: results, report, warnings and verdict."""
        parts: list = [
            self.results_table(summary.results),
            Text(""),
            self.report_table(summary.report),
        ]
        if summary.report.warnings:
            parts.append(Text(""))
            parts.extend(
                Text.from_markup(f"[yellow]warning:[/yellow] {escape(w)}")
                for w in summary.report.warnings
            )
        if summary.errors:
            parts.append(Text(""))
            parts.extend(
                Text.from_markup(
                    f"[bold red]{e.kind.value} error[/bold red] "
                    + escape(f"[{e.stage_id}] {e.message}")
                )
                for e in summary.errors
            )
        parts.extend([Text(""), self.verdict_panel(summary.verdict)])

        style = _VERDICT_STYLES[summary.verdict.overall]
        return Panel(
            Group(*parts),
            title=f"[bold]pipegate run {summary.run_id}[/bold]",
            subtitle=f"Finished: {summary.finished_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style=style,
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_projects(self, projects: Sequence[ProjectDescriptor]) -> None:
        self.console.print(self.projects_table(projects))

    def print_plan(self, groups: Sequence[StageGroup]) -> None:
        self.console.print(self.plan_table(groups))

    def print_summary(self, summary: RunSummary) -> None:
        self.console.print(self.render_summary(summary))

    def print_verdict(self, verdict: Verdict) -> None:
        self.console.print(self.verdict_panel(verdict))
