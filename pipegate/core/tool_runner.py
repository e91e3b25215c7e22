"""Tool runner — one external process per logical tool action.

A tool that runs and fails is a *result*, not an error: its non-zero exit
becomes a FAILURE (gating) or UNSTABLE (non-gating) ``StageResult``. Only a
tool that cannot be started at all raises ``ToolInvocationError``.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from pipegate.models.stages import StageResult, StageStatus

logger = logging.getLogger(__name__)


class ToolInvocationError(RuntimeError):
    """Raised when a tool cannot be invoked (missing binary, bad path)."""


class ToolInvocation(BaseModel):
    """Concrete parameters for one tool run.

    After the process exits, ``report_globs`` are matched inside
    ``output_dir`` (reports the tool wrote there directly) and
    ``external_report_globs`` inside ``cwd``; external matches are copied
    into ``output_dir`` so every report of a stage lives under that stage's
    directory. When ``stdout_file`` is set, standard output is written to
    that file inside ``output_dir`` (and collected) instead of the log.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    target: str
    argv: list[str]
    cwd: Path
    output_dir: Path
    report_globs: list[str] = []
    external_report_globs: list[str] = []
    gating: bool = True
    timeout_seconds: float | None = None
    env: dict[str, str] = {}
    stdout_file: str | None = None

    @property
    def tool(self) -> str:
        return Path(self.argv[0]).name if self.argv else ""


@runtime_checkable
class Runner(Protocol):
    """Anything that turns a ``ToolInvocation`` into a ``StageResult``."""

    def run(
        self, invocation: ToolInvocation, cancel_event: threading.Event | None = None
    ) -> StageResult:
        ...


class ToolRunner:
    """Runs external tools as subprocesses.

    Parameters
    ----------
    poll_seconds:
        How often a running process checks the cancel event.
    """

    def __init__(self, poll_seconds: float = 0.2) -> None:
        self._poll_seconds = poll_seconds

    def run(
        self, invocation: ToolInvocation, cancel_event: threading.Event | None = None
    ) -> StageResult:
        """Run *invocation* to completion, timeout or cancellation."""
        if not invocation.argv:
            raise ToolInvocationError(f"{invocation.stage_id}: empty command")

        binary = shutil.which(invocation.argv[0])
        if binary is None:
            raise ToolInvocationError(
                f"{invocation.stage_id}: '{invocation.argv[0]}' not found on PATH"
            )
        if not invocation.cwd.is_dir():
            raise ToolInvocationError(
                f"{invocation.stage_id}: working directory {invocation.cwd} does not exist"
            )

        log_path = invocation.output_dir / f"{invocation.tool}.log"
        env = {**os.environ, **invocation.env} if invocation.env else None

        logger.info(
            "[%s] %s: %s", invocation.stage_id, invocation.target, " ".join(invocation.argv)
        )
        started = time.monotonic()
        with contextlib.ExitStack() as stack:
            try:
                invocation.output_dir.mkdir(parents=True, exist_ok=True)
                log_file = stack.enter_context(log_path.open("wb"))
                stdout_target = log_file
                if invocation.stdout_file:
                    stdout_target = stack.enter_context(
                        (invocation.output_dir / invocation.stdout_file).open("wb")
                    )
                process = subprocess.Popen(
                    [binary, *invocation.argv[1:]],
                    cwd=invocation.cwd,
                    stdout=stdout_target,
                    stderr=log_file,
                    stdin=subprocess.DEVNULL,
                    env=env,
                )
            except OSError as exc:
                raise ToolInvocationError(
                    f"{invocation.stage_id}: cannot start {invocation.argv[0]}: {exc}"
                ) from exc

            outcome = self._wait(process, invocation.timeout_seconds, cancel_event)

        duration = round(time.monotonic() - started, 3)
        artifacts = [log_path, *self._collect_reports(invocation)]
        metrics = {"exit_code": float(process.returncode), "duration_seconds": duration}

        if outcome == "cancelled":
            logger.warning("[%s] %s cancelled", invocation.stage_id, invocation.target)
            return self._result(
                invocation, StageStatus.FAILURE, artifacts, metrics, duration,
                reason="cancelled", exit_code=process.returncode,
            )
        if outcome == "timeout":
            logger.warning(
                "[%s] %s timed out after %ss",
                invocation.stage_id, invocation.target, invocation.timeout_seconds,
            )
            return self._result(
                invocation, StageStatus.FAILURE, artifacts, metrics, duration,
                reason=f"timed out after {invocation.timeout_seconds:g}s",
                exit_code=process.returncode,
            )

        if process.returncode == 0:
            return self._result(
                invocation, StageStatus.SUCCESS, artifacts, metrics, duration,
                exit_code=0,
            )

        status = StageStatus.FAILURE if invocation.gating else StageStatus.UNSTABLE
        logger.warning(
            "[%s] %s exited with %d (%s)",
            invocation.stage_id, invocation.target, process.returncode, status.value,
        )
        return self._result(
            invocation, status, artifacts, metrics, duration,
            reason=f"{invocation.tool} exited with code {process.returncode}",
            exit_code=process.returncode,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _wait(
        self,
        process: subprocess.Popen,
        timeout: float | None,
        cancel_event: threading.Event | None,
    ) -> str:
        """Block until exit; kill on timeout or cancellation."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                process.wait(timeout=self._poll_seconds)
                return "exited"
            except subprocess.TimeoutExpired:
                pass
            if cancel_event is not None and cancel_event.is_set():
                self._kill(process)
                return "cancelled"
            if deadline is not None and time.monotonic() >= deadline:
                self._kill(process)
                return "timeout"

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        process.kill()
        process.wait()

    @staticmethod
    def _collect_reports(invocation: ToolInvocation) -> list[Path]:
        """Gather report files matching the invocation's globs."""
        collected: list[Path] = []
        seen: set[Path] = set()
        if invocation.stdout_file:
            stdout_path = invocation.output_dir / invocation.stdout_file
            seen.add(stdout_path)
            collected.append(stdout_path)
        for pattern in invocation.report_globs:
            for match in sorted(invocation.output_dir.glob(pattern)):
                if match.is_file() and match not in seen:
                    seen.add(match)
                    collected.append(match)

        for pattern in invocation.external_report_globs:
            for match in sorted(invocation.cwd.glob(pattern)):
                if not match.is_file():
                    continue
                target = invocation.output_dir / match.name
                if target in seen:
                    target = invocation.output_dir / f"{match.parent.name}-{match.name}"
                try:
                    shutil.copy2(match, target)
                except OSError as exc:
                    logger.warning(
                        "[%s] %s: cannot copy report %s: %s",
                        invocation.stage_id, invocation.target, match, exc,
                    )
                    continue
                seen.add(target)
                collected.append(target)
        return collected

    @staticmethod
    def _result(
        invocation: ToolInvocation,
        status: StageStatus,
        artifacts: list[Path],
        metrics: dict[str, float],
        duration: float,
        *,
        reason: str = "",
        exit_code: int | None = None,
    ) -> StageResult:
        return StageResult(
            stage_id=invocation.stage_id,
            status=status,
            target=invocation.target,
            artifacts=artifacts,
            metrics=metrics,
            reason=reason,
            exit_code=exit_code,
            duration_seconds=duration,
        )
