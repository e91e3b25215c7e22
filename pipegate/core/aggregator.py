"""Report aggregation — fold StageResults into one AggregatedReport.

Merging is a pure function of the *set* of results: only sums, worst-of and
sorted unions are used, so the same results in any order produce a
byte-identical report. A report that cannot be read contributes nothing
but a warning.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterable

from pipegate.core.parsers import REPORT_SUFFIXES, ReportParseError, parse_report
from pipegate.core.stage_graph import StageGraph
from pipegate.models.reports import AggregatedReport, FindingCounts, TestTotals
from pipegate.models.stages import StageDefinition, StageResult, StageStatus

logger = logging.getLogger(__name__)

TEST_KEYS = ("tests_passed", "tests_failed", "tests_skipped")
COVERAGE_KEYS = ("coverage_lines_covered", "coverage_lines_valid", "coverage_percent")
FINDING_KEYS = ("findings_total", "findings_critical")
REPORT_METRIC_KEYS = frozenset(TEST_KEYS + COVERAGE_KEYS + FINDING_KEYS)


class ReportAggregator:
    """Merges heterogeneous tool outputs into a unified record.

    Parameters
    ----------
    graph:
        Stage graph used to look up each result's report format and
        scanner name.
    """

    def __init__(self, graph: StageGraph | None = None) -> None:
        self._graph = graph or StageGraph()

    def merge(self, results: Iterable[StageResult]) -> AggregatedReport:
        """Fold *results* into an ``AggregatedReport``."""
        totals = TestTotals()
        lines_covered = 0.0
        lines_valid = 0.0
        percents: list[float] = []
        findings: dict[str, FindingCounts] = defaultdict(FindingCounts)
        statuses: dict[str, list[StageStatus]] = defaultdict(list)
        warnings: set[str] = set()

        for result in results:
            definition = self._graph.get(result.stage_id)
            statuses[result.stage_id].append(result.status)
            metrics = self.metrics_for(result, definition, warnings)

            if any(k in metrics for k in TEST_KEYS):
                totals = totals + TestTotals(
                    passed=_count(metrics, "tests_passed"),
                    failed=_count(metrics, "tests_failed"),
                    skipped=_count(metrics, "tests_skipped"),
                )

            if "coverage_lines_valid" in metrics:
                lines_covered += metrics.get("coverage_lines_covered", 0.0)
                lines_valid += metrics["coverage_lines_valid"]
            elif "coverage_percent" in metrics:
                percents.append(metrics["coverage_percent"])

            if any(k in metrics for k in FINDING_KEYS):
                tool = definition.tool or definition.stage_id
                critical = _count(metrics, "findings_critical")
                findings[tool] = findings[tool] + FindingCounts(
                    total=max(_count(metrics, "findings_total"), critical),
                    critical=critical,
                )

        for message in sorted(warnings):
            logger.warning(message)

        return AggregatedReport(
            test_totals=totals,
            coverage_percent=_coverage(lines_covered, lines_valid, percents),
            security_findings={tool: findings[tool] for tool in sorted(findings)},
            stage_statuses={
                sid: StageStatus.worst(statuses[sid]) for sid in sorted(statuses)
            },
            warnings=sorted(warnings),
        )

    @staticmethod
    def metrics_for(
        result: StageResult,
        definition: StageDefinition,
        warnings: set[str] | None = None,
    ) -> dict[str, float]:
        """Report metrics of one result: parsed artifacts, then explicit metrics.

        Metrics set directly on the result win over parsed values.
        """
        warnings = warnings if warnings is not None else set()
        label = f"{result.stage_id}[{result.target}]" if result.target else result.stage_id
        parsed: dict[str, float] = {}

        fmt = definition.report_format
        explicit = {k: v for k, v in result.metrics.items() if k in REPORT_METRIC_KEYS}
        if fmt is not None:
            reports = [
                a for a in result.artifacts
                if a.suffix.lower() in REPORT_SUFFIXES[fmt]
            ]
            for artifact in sorted(reports):
                try:
                    for key, value in parse_report(fmt, artifact).items():
                        parsed[key] = parsed.get(key, 0.0) + value
                except ReportParseError as exc:
                    warnings.add(f"{label}: unreadable {fmt.value} report ({exc})")
            if not reports and not explicit and result.status is not StageStatus.SKIPPED:
                warnings.add(f"{label}: no {fmt.value} report was produced")

        return {**parsed, **explicit}


def _count(metrics: dict[str, float], key: str) -> int:
    return max(int(round(metrics.get(key, 0.0))), 0)


def _coverage(covered: float, valid: float, percents: list[float]) -> float | None:
    if valid > 0:
        return round(covered / valid * 100.0, 2)
    if percents:
        return round(math.fsum(percents) / len(percents), 2)
    return None
