"""Pipeline orchestrator — the central coordinator for pipegate runs.

The Orchestrator wires together the ProjectDiscoverer, StageGraph,
Toolchain, ToolRunner, ReportArchive, ReportAggregator and
QualityGateEvaluator into one run:

1. discover projects (fatal on ``DiscoveryError``);
2. execute the active stage groups in their fixed order, one task per
   tool invocation on a thread pool, appending results to a
   ``StageResultLog``;
3. archive every report, merge the results and evaluate the quality gate;
4. write ``pipeline-summary.json`` under the report root.

A global wall-clock budget sets a cancel event: invocations in flight are
killed and every tool stage not yet started is recorded as FAILURE
"cancelled". Reporting and the quality gate still run.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path

from pipegate.config import Settings
from pipegate.core.aggregator import ReportAggregator
from pipegate.core.discovery import DiscoveryError, ProjectDiscoverer
from pipegate.core.hasher import canonical_json_bytes, pretty_json_text, sha256_hex
from pipegate.core.quality_gate import QualityGateEvaluator, exit_code_for
from pipegate.core.report_archive import ReportArchive, ReportArchiveError
from pipegate.core.stage_graph import StageGraph
from pipegate.core.tool_runner import Runner, ToolInvocation, ToolInvocationError, ToolRunner
from pipegate.core.toolchain import Toolchain
from pipegate.models.config import PipelineConfig
from pipegate.models.projects import ProjectDescriptor
from pipegate.models.reports import (
    AggregatedReport,
    ArchivedReport,
    RunSummary,
    Verdict,
    VerdictOutcome,
)
from pipegate.models.stages import (
    ErrorKind,
    StageDefinition,
    StageError,
    StageGroup,
    StageKind,
    StageResult,
    StageStatus,
)

logger = logging.getLogger(__name__)

_VERDICT_STATUS: dict[VerdictOutcome, StageStatus] = {
    VerdictOutcome.SUCCESS: StageStatus.SUCCESS,
    VerdictOutcome.UNSTABLE: StageStatus.UNSTABLE,
    VerdictOutcome.FAILURE: StageStatus.FAILURE,
}


class StageResultLog:
    """Append-only, lock-guarded collection of results and errors.

    The only mutable state shared between concurrent stage tasks.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: list[StageResult] = []
        self._errors: list[StageError] = []

    def append(self, result: StageResult) -> None:
        with self._lock:
            self._results.append(result)

    def record_error(self, error: StageError) -> None:
        with self._lock:
            self._errors.append(error)

    def results(self) -> list[StageResult]:
        with self._lock:
            return list(self._results)

    def errors(self) -> list[StageError]:
        with self._lock:
            return list(self._errors)

    def statuses(self) -> dict[str, StageStatus]:
        """Worst status recorded so far for each stage."""
        by_stage: dict[str, list[StageStatus]] = {}
        for result in self.results():
            by_stage.setdefault(result.stage_id, []).append(result.status)
        return {sid: StageStatus.worst(found) for sid, found in by_stage.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    config:
        Run parameters. Uses defaults if not provided.
    root:
        Source tree to discover projects in and run the tools against.
    settings:
        Runtime settings; a fresh ``Settings()`` if not provided.
    runner:
        Executes tool invocations. Defaults to a subprocess ``ToolRunner``.
    discoverer:
        Defaults to a ``ProjectDiscoverer`` using the configured fallback
        projects.
    graph:
        Stage topology. Defaults to the built-in stage set.
    run_id:
        Identifier for this run. Generated if None.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        root: Path = Path("."),
        *,
        settings: Settings | None = None,
        runner: Runner | None = None,
        discoverer: ProjectDiscoverer | None = None,
        graph: StageGraph | None = None,
        run_id: str | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.root = Path(root).resolve()
        self.settings = settings or Settings()

        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.run_id = run_id or f"pg-{ts}-{uuid.uuid4().hex[:6]}"

        self.graph = graph or StageGraph()
        self.runner = runner or ToolRunner(poll_seconds=self.settings.cancel_poll_seconds)
        self.discoverer = discoverer or ProjectDiscoverer(self.settings.fallback_projects)
        self.toolchain = Toolchain(self.root, self.settings, self.run_id)
        self.aggregator = ReportAggregator(self.graph)
        self.gate = QualityGateEvaluator(self.settings.thresholds, self.graph)

        self.log = StageResultLog()
        self._cancel_event = threading.Event()
        self._projects: list[ProjectDescriptor] = []
        self._active_ids: list[str] = []
        self._archived: list[ArchivedReport] = []
        self._report: AggregatedReport | None = None
        self._verdict: Verdict | None = None

    @property
    def report_root(self) -> Path:
        return self.toolchain.report_root

    @property
    def summary_path(self) -> Path:
        return self.report_root / self.settings.summary_file

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop the run: kill in-flight tools and cancel pending stages."""
        if not self._cancel_event.is_set():
            logger.warning("Run %s cancelled", self.run_id)
        self._cancel_event.set()

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, projects: Sequence[ProjectDescriptor]) -> list[StageGroup]:
        """Active stage groups for *projects* under this run's configuration."""
        return self.graph.active_stages(self.config, projects)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(self) -> RunSummary:
        """Execute the whole pipeline and write the run summary."""
        started_at = datetime.now(timezone.utc)
        logger.info("Starting run %s in %s", self.run_id, self.root)

        timer = threading.Timer(self.settings.run_timeout_seconds, self._on_timeout)
        timer.daemon = True
        timer.start()
        try:
            stage_plan = self._execute()
        finally:
            timer.cancel()

        report = self._report or AggregatedReport()
        summary = RunSummary(
            run_id=self.run_id,
            configuration=self.config,
            projects=self._projects,
            stage_plan=stage_plan,
            results=self._ordered_results(),
            report=report,
            verdict=self._verdict or Verdict(overall=VerdictOutcome.FAILURE),
            errors=self.log.errors(),
            archived_reports=self._archived,
            report_sha256=sha256_hex(canonical_json_bytes(report)),
            cancelled=self.cancelled,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        self.write_summary(summary)
        return summary

    def write_summary(self, summary: RunSummary) -> Path:
        path = self.summary_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(pretty_json_text(summary), encoding="utf-8")
        logger.info("Wrote run summary to %s", path)
        return path

    def exit_code(self, verdict: Verdict) -> int:
        """Process exit code for *verdict*."""
        return exit_code_for(verdict, self.settings.unstable_exit_code)

    def _on_timeout(self) -> None:
        logger.error(
            "Run %s exceeded its %gs budget", self.run_id, self.settings.run_timeout_seconds
        )
        self.cancel()

    def _execute(self) -> dict[str, list[str]]:
        try:
            self._projects = self.discoverer.discover(self.root, self.config.test_framework)
        except DiscoveryError as exc:
            logger.error("Discovery failed: %s", exc)
            self.log.record_error(
                StageError(stage_id="discovery", kind=ErrorKind.DISCOVERY, message=str(exc))
            )
            self.log.append(
                StageResult(stage_id="discovery", status=StageStatus.FAILURE, reason=str(exc))
            )
            self._evaluate()
            return {"discovery": ["discovery"]}

        self.log.append(
            StageResult(
                stage_id="discovery",
                status=StageStatus.SUCCESS,
                metrics={"projects": float(len(self._projects))},
            )
        )

        groups = self.plan(self._projects)
        self._active_ids = [sid for group in groups for sid in group.stage_ids]
        for group in groups:
            if group.name == "discovery":
                continue
            self._run_group(group)

        if self._verdict is None:
            self._evaluate()
        return {group.name: group.stage_ids for group in groups}

    # ------------------------------------------------------------------
    # Group execution
    # ------------------------------------------------------------------

    def _run_group(self, group: StageGroup) -> None:
        logger.info(
            "Group %s: %s%s",
            group.name,
            ", ".join(group.stage_ids),
            " (concurrent)" if group.concurrent else "",
        )
        statuses = self.log.statuses()
        tasks: list[ToolInvocation] = []
        internal: list[StageDefinition] = []

        for definition in group.stages:
            if definition.kind is StageKind.INTERNAL:
                internal.append(definition)
                continue
            if self.cancelled:
                self._record(definition.stage_id, StageStatus.FAILURE, "cancelled")
                continue
            blockers = self.graph.blocking_reasons(
                definition.stage_id, statuses, self._active_ids
            )
            if blockers:
                reason = "blocked by " + "; ".join(blockers)
                logger.warning("[%s] skipped: %s", definition.stage_id, reason)
                self._record(definition.stage_id, StageStatus.SKIPPED, reason)
                continue
            invocations = self.toolchain.invocations(definition, self.config, self._projects)
            if not invocations:
                self._record(definition.stage_id, StageStatus.SKIPPED, "no targets to run")
                continue
            tasks.extend(invocations)

        if tasks:
            workers = min(self.settings.max_parallel_tasks, len(tasks))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pipegate") as pool:
                futures = [pool.submit(self._invoke, invocation) for invocation in tasks]
                for future in as_completed(futures):
                    future.result()

        for definition in internal:
            if definition.stage_id == "publish_reports":
                self._publish_reports()
            elif definition.stage_id == "quality_gate":
                self._evaluate()
            else:
                self._record(definition.stage_id, StageStatus.SUCCESS)

    def _invoke(self, invocation: ToolInvocation) -> None:
        if self.cancelled:
            self.log.append(
                StageResult(
                    stage_id=invocation.stage_id,
                    status=StageStatus.FAILURE,
                    target=invocation.target,
                    reason="cancelled",
                )
            )
            return
        try:
            result = self.runner.run(invocation, self._cancel_event)
        except ToolInvocationError as exc:
            result = self._invocation_failed(invocation, str(exc))
        except Exception as exc:  # noqa: BLE001
            result = self._invocation_failed(
                invocation, f"{invocation.stage_id}: {type(exc).__name__}: {exc}"
            )
        self.log.append(result)

    def _invocation_failed(self, invocation: ToolInvocation, message: str) -> StageResult:
        logger.error("[%s] %s: %s", invocation.stage_id, invocation.target, message)
        self.log.record_error(
            StageError(
                stage_id=invocation.stage_id,
                kind=ErrorKind.INVOCATION,
                message=message,
                target=invocation.target,
            )
        )
        return StageResult(
            stage_id=invocation.stage_id,
            status=StageStatus.FAILURE,
            target=invocation.target,
            reason=message,
        )

    def _record(
        self,
        stage_id: str,
        status: StageStatus,
        reason: str = "",
        metrics: dict[str, float] | None = None,
    ) -> None:
        self.log.append(
            StageResult(stage_id=stage_id, status=status, reason=reason, metrics=metrics or {})
        )

    # ------------------------------------------------------------------
    # Internal stages
    # ------------------------------------------------------------------

    def _publish_reports(self) -> None:
        archive = ReportArchive(self.report_root, self.run_id)
        try:
            self._archived = archive.archive(self.log.results())
        except (ReportArchiveError, OSError) as exc:
            logger.warning("Report archiving failed: %s", exc)
            self._record("publish_reports", StageStatus.FAILURE, str(exc))
            return
        self._record(
            "publish_reports",
            StageStatus.SUCCESS,
            metrics={"archived_reports": float(len(self._archived))},
        )

    def _evaluate(self) -> None:
        results = self.log.results()
        report = self.aggregator.merge(results)
        verdict = self.gate.evaluate_run(
            report, self.config, results, self.log.errors(), self.cancelled
        )
        self._report = report
        self._verdict = verdict
        if "quality_gate" in self._active_ids:
            self._record(
                "quality_gate",
                _VERDICT_STATUS[verdict.overall],
                "; ".join(verdict.reasons),
            )

    def _ordered_results(self) -> list[StageResult]:
        order = {sid: index for index, sid in enumerate(self.graph.stage_ids)}
        return sorted(
            self.log.results(),
            key=lambda r: (order.get(r.stage_id, len(order)), r.target, r.status.severity),
        )
