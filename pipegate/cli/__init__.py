"""pipegate CLI — Typer-based command-line interface.

Provides the ``pipegate`` command with subcommands for running the
pipeline, previewing the stage plan, discovering projects and
re-evaluating a recorded run.

All output uses Rich for formatted terminal display.
"""
