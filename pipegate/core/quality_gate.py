"""Quality gate — threshold policy over the aggregated report.

Gating conditions force FAILURE:
    - the build failed;
    - ``fail_on_test_failure`` and at least one test failed;
    - ``fail_on_security_issues`` and any scanner reported a critical finding.

Without a gating condition, any non-gating issue gives UNSTABLE:
    - no tests were executed;
    - a scanner reported more findings than its informational limit;
    - coverage is below the configured minimum;
    - a non-build stage ended FAILURE or UNSTABLE.

Otherwise the verdict is SUCCESS. Counts are compared with a strict
greater-than, so a zero count never degrades the verdict.

``evaluate_run`` adds the run-level rules on top: a discovery error is
FAILURE regardless of the report, and a cancelled run is FAILURE with
"run cancelled" first.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pipegate.core.stage_graph import StageGraph
from pipegate.models.config import GateThresholds, PipelineConfig
from pipegate.models.reports import AggregatedReport, Verdict, VerdictOutcome
from pipegate.models.stages import ErrorKind, StageError, StageResult, StageStatus

logger = logging.getLogger(__name__)


class QualityGateEvaluator:
    """Applies the gate policy and produces the run's verdict.

    Parameters
    ----------
    thresholds:
        Informational limits and optional minimum coverage.
    graph:
        Used to tell build stages (already covered by ``build_status``)
        from the others.
    """

    def __init__(
        self,
        thresholds: GateThresholds | None = None,
        graph: StageGraph | None = None,
    ) -> None:
        self.thresholds = thresholds or GateThresholds()
        self._graph = graph or StageGraph()

    def evaluate(
        self,
        report: AggregatedReport,
        config: PipelineConfig,
        build_status: StageStatus = StageStatus.SUCCESS,
    ) -> Verdict:
        """Return the verdict for *report* under *config*."""
        gating = self._gating_reasons(report, config, build_status)
        issues = self._non_gating_reasons(report, config)

        if gating:
            verdict = Verdict(overall=VerdictOutcome.FAILURE, reasons=gating + issues)
        elif issues:
            verdict = Verdict(overall=VerdictOutcome.UNSTABLE, reasons=issues)
        else:
            verdict = Verdict(overall=VerdictOutcome.SUCCESS, reasons=[])

        logger.info(
            "Quality gate verdict: %s%s",
            verdict.overall.value.upper(),
            f" ({'; '.join(verdict.reasons)})" if verdict.reasons else "",
        )
        return verdict

    def evaluate_run(
        self,
        report: AggregatedReport,
        config: PipelineConfig,
        results: Iterable[StageResult],
        errors: Iterable[StageError] = (),
        cancelled: bool = False,
    ) -> Verdict:
        """Return the verdict for a whole run.

        A discovery error is fatal and short-circuits the gate. A cancelled
        run is always FAILURE, with "run cancelled" as its first reason.
        """
        for error in errors:
            if error.kind is ErrorKind.DISCOVERY:
                verdict = Verdict(
                    overall=VerdictOutcome.FAILURE,
                    reasons=[f"discovery failed: {error.message}"],
                )
                logger.info("Quality gate verdict: FAILURE (%s)", verdict.reasons[0])
                return verdict

        build_status = build_status_of(results, self._graph, cancelled)
        verdict = self.evaluate(report, config, build_status)
        if cancelled:
            verdict = Verdict(
                overall=VerdictOutcome.FAILURE,
                reasons=["run cancelled", *verdict.reasons],
            )
        return verdict

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    @staticmethod
    def _gating_reasons(
        report: AggregatedReport,
        config: PipelineConfig,
        build_status: StageStatus,
    ) -> list[str]:
        reasons: list[str] = []
        if build_status is StageStatus.FAILURE:
            reasons.append("build failed")

        failed = report.test_totals.failed
        if config.fail_on_test_failure and failed > 0:
            reasons.append(f"{failed} test(s) failed")

        if config.fail_on_security_issues:
            for tool, counts in report.security_findings.items():
                if counts.critical > 0:
                    reasons.append(f"{tool} reported {counts.critical} critical finding(s)")
        return reasons

    def _non_gating_reasons(
        self, report: AggregatedReport, config: PipelineConfig
    ) -> list[str]:
        reasons: list[str] = []
        totals = report.test_totals

        if totals.total == 0:
            reasons.append("no tests executed")
        elif totals.failed > 0 and not config.fail_on_test_failure:
            reasons.append(f"{totals.failed} test(s) failed (not gating)")

        for tool, counts in report.security_findings.items():
            limit = self.thresholds.informational_limit(tool)
            if counts.total > limit:
                reasons.append(
                    f"{tool} reported {counts.total} finding(s) "
                    f"({counts.critical} critical), above the informational limit of {limit}"
                )

        minimum = self.thresholds.min_coverage_percent
        if (
            minimum is not None
            and report.coverage_percent is not None
            and report.coverage_percent < minimum
        ):
            reasons.append(
                f"coverage {report.coverage_percent:.2f}% is below the minimum of {minimum:.2f}%"
            )

        for stage_id, status in report.stage_statuses.items():
            if status not in (StageStatus.FAILURE, StageStatus.UNSTABLE):
                continue
            if stage_id in self._graph and self._graph.get(stage_id).kind.affects_build_status:
                continue
            reasons.append(f"stage {stage_id} is {status.value}")
        return reasons


def build_status_of(
    results: Iterable[StageResult],
    graph: StageGraph | None = None,
    cancelled: bool = False,
) -> StageStatus:
    """FAILURE if any setup or build stage failed, or the run was cancelled."""
    if cancelled:
        return StageStatus.FAILURE
    graph = graph or StageGraph()
    for result in results:
        if result.status is not StageStatus.FAILURE or result.stage_id not in graph:
            continue
        if graph.get(result.stage_id).kind.affects_build_status:
            return StageStatus.FAILURE
    return StageStatus.SUCCESS


def exit_code_for(verdict: Verdict, unstable_exit_code: int = 2) -> int:
    """Process exit code: 0 success, 1 failure, *unstable_exit_code* unstable."""
    if verdict.overall is VerdictOutcome.SUCCESS:
        return 0
    if verdict.overall is VerdictOutcome.UNSTABLE:
        return unstable_exit_code
    return 1
