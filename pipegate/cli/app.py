"""Main Typer application — imports and registers all CLI commands.

Entry point: ``pipegate`` (configured via pyproject.toml scripts).

Commands: run, plan, discover, evaluate.
"""

from __future__ import annotations

import typer

from pipegate.cli.commands.discover import discover_cmd
from pipegate.cli.commands.evaluate import evaluate_cmd
from pipegate.cli.commands.plan import plan_cmd
from pipegate.cli.commands.run import run_cmd

app = typer.Typer(
    name="pipegate",
    help="pipegate: multi-language CI stage orchestration and quality gate.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Run the pipeline against a source tree.")(run_cmd)
app.command(name="plan", help="Show the active stage groups without running them.")(plan_cmd)
app.command(name="discover", help="Discover and classify test projects.")(discover_cmd)
app.command(name="evaluate", help="Re-apply the quality gate to a run summary.")(evaluate_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
