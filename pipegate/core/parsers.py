"""Native report parsers.

Each parser reads one tool's report file and returns a flat metrics dict
using the common keys below. Parsers raise ``ReportParseError`` on anything
they cannot read; the aggregator turns that into a warning.

Metric keys
-----------
tests_passed, tests_failed, tests_skipped
coverage_lines_covered, coverage_lines_valid
findings_total, findings_critical
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pipegate.models.stages import ReportFormat


class ReportParseError(ValueError):
    """Raised when a report file is missing, malformed or of the wrong shape."""


Metrics = dict[str, float]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _local(tag: str) -> str:
    """Strip an XML namespace: ``{ns}Counters`` -> ``Counters``."""
    return tag.rsplit("}", 1)[-1]


def _load_xml(path: Path) -> ET.Element:
    try:
        return ET.parse(path).getroot()
    except (ET.ParseError, OSError) as exc:
        raise ReportParseError(f"{path.name}: {exc}") from exc


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
        raise ReportParseError(f"{path.name}: {exc}") from exc


def _int_attr(element: ET.Element, name: str, default: int = 0) -> int:
    raw = element.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(float(raw))
    except ValueError as exc:
        raise ReportParseError(f"attribute {name}={raw!r} is not a number") from exc


def _expect(value: Any, kind: type, what: str) -> Any:
    if not isinstance(value, kind):
        raise ReportParseError(f"expected {what} to be {kind.__name__}")
    return value


def _findings(total: int, critical: int) -> Metrics:
    return {"findings_total": float(total), "findings_critical": float(critical)}


# ---------------------------------------------------------------------------
# Test reports
# ---------------------------------------------------------------------------


def parse_trx(path: Path) -> Metrics:
    """Visual Studio TRX written by ``dotnet test --logger trx``.

    NUnit and xUnit both report through the VSTest adapter, so one parser
    covers both frameworks.
    """
    root = _load_xml(path)
    if _local(root.tag) != "TestRun":
        raise ReportParseError(f"{path.name}: not a TRX TestRun document")
    counters = next((e for e in root.iter() if _local(e.tag) == "Counters"), None)
    if counters is None:
        raise ReportParseError(f"{path.name}: no ResultSummary/Counters element")

    total = _int_attr(counters, "total")
    passed = _int_attr(counters, "passed")
    failed = sum(
        _int_attr(counters, name) for name in ("failed", "error", "timeout", "aborted")
    )
    skipped = max(total - passed - failed, 0)
    return {
        "tests_passed": float(passed),
        "tests_failed": float(failed),
        "tests_skipped": float(skipped),
    }


def parse_junit_xml(path: Path) -> Metrics:
    """JUnit XML from Maven Surefire or Gradle (``testsuite``/``testsuites``)."""
    root = _load_xml(path)
    tag = _local(root.tag)
    if tag == "testsuite":
        suites = [root]
    elif tag == "testsuites":
        suites = [e for e in root if _local(e.tag) == "testsuite"]
    else:
        raise ReportParseError(f"{path.name}: not a JUnit XML report")

    passed = failed = skipped = 0
    for suite in suites:
        tests = _int_attr(suite, "tests")
        suite_failed = _int_attr(suite, "failures") + _int_attr(suite, "errors")
        suite_skipped = _int_attr(suite, "skipped")
        failed += suite_failed
        skipped += suite_skipped
        passed += max(tests - suite_failed - suite_skipped, 0)
    return {
        "tests_passed": float(passed),
        "tests_failed": float(failed),
        "tests_skipped": float(skipped),
    }


# ---------------------------------------------------------------------------
# Coverage reports
# ---------------------------------------------------------------------------


def parse_cobertura(path: Path) -> Metrics:
    """Cobertura XML (coverlet / ReportGenerator)."""
    root = _load_xml(path)
    if _local(root.tag) != "coverage":
        raise ReportParseError(f"{path.name}: not a Cobertura coverage document")
    if root.get("lines-valid") is not None:
        return {
            "coverage_lines_covered": float(_int_attr(root, "lines-covered")),
            "coverage_lines_valid": float(_int_attr(root, "lines-valid")),
        }
    rate = root.get("line-rate")
    if rate is None:
        raise ReportParseError(f"{path.name}: no line coverage attributes")
    try:
        return {"coverage_percent": round(float(rate) * 100.0, 2)}
    except ValueError as exc:
        raise ReportParseError(f"{path.name}: line-rate={rate!r}") from exc


def parse_jacoco(path: Path) -> Metrics:
    """JaCoCo XML; uses the report-level LINE counter."""
    root = _load_xml(path)
    if _local(root.tag) != "report":
        raise ReportParseError(f"{path.name}: not a JaCoCo report")
    for counter in root.findall("counter"):
        if counter.get("type") == "LINE":
            missed = _int_attr(counter, "missed")
            covered = _int_attr(counter, "covered")
            return {
                "coverage_lines_covered": float(covered),
                "coverage_lines_valid": float(covered + missed),
            }
    raise ReportParseError(f"{path.name}: no report-level LINE counter")


# ---------------------------------------------------------------------------
# Scanner reports
# ---------------------------------------------------------------------------


def parse_semgrep(path: Path) -> Metrics:
    """``semgrep --json``: ERROR severity counts as critical."""
    data = _expect(_load_json(path), dict, "semgrep report")
    results = _expect(data.get("results", []), list, "results")
    critical = sum(
        1
        for r in results
        if str(r.get("extra", {}).get("severity", "")).upper() == "ERROR"
    )
    return _findings(len(results), critical)


def parse_trivy(path: Path) -> Metrics:
    """``trivy --format json``: vulnerabilities, misconfigurations and secrets."""
    data = _expect(_load_json(path), dict, "trivy report")
    total = critical = 0
    for target in _expect(data.get("Results") or [], list, "Results"):
        for key in ("Vulnerabilities", "Misconfigurations", "Secrets"):
            for item in target.get(key) or []:
                total += 1
                if str(item.get("Severity", "")).upper() == "CRITICAL":
                    critical += 1
    return _findings(total, critical)


def parse_gitleaks(path: Path) -> Metrics:
    """``gitleaks --report-format json``: every leaked secret is critical."""
    data = _load_json(path)
    if data is None:
        return _findings(0, 0)
    leaks = _expect(data, list, "gitleaks report")
    return _findings(len(leaks), len(leaks))


def parse_dependency_check(path: Path) -> Metrics:
    """OWASP Dependency-Check JSON (``--format JSON``)."""
    data = _expect(_load_json(path), dict, "dependency-check report")
    total = critical = 0
    for dependency in _expect(data.get("dependencies", []), list, "dependencies"):
        for vuln in dependency.get("vulnerabilities") or []:
            total += 1
            severity = vuln.get("severity") or vuln.get("cvssv3", {}).get("baseSeverity", "")
            if str(severity).upper() == "CRITICAL":
                critical += 1
    return _findings(total, critical)


def parse_fossa(path: Path) -> Metrics:
    """``fossa test --format json``: policy conflicts are critical."""
    data = _expect(_load_json(path), dict, "fossa report")
    issues = _expect(data.get("issues", []), list, "issues")
    critical = sum(
        1 for issue in issues if str(issue.get("type", "")).lower() == "policy_conflict"
    )
    return _findings(len(issues), critical)


def parse_sarif(path: Path) -> Metrics:
    """SARIF 2.1.0: ``error`` level results count as critical."""
    data = _expect(_load_json(path), dict, "SARIF log")
    total = critical = 0
    for run in _expect(data.get("runs", []), list, "runs"):
        for result in run.get("results") or []:
            total += 1
            if result.get("level", "warning") == "error":
                critical += 1
    return _findings(total, critical)


PARSERS: dict[ReportFormat, Callable[[Path], Metrics]] = {
    ReportFormat.TRX: parse_trx,
    ReportFormat.JUNIT_XML: parse_junit_xml,
    ReportFormat.COBERTURA: parse_cobertura,
    ReportFormat.JACOCO: parse_jacoco,
    ReportFormat.SEMGREP_JSON: parse_semgrep,
    ReportFormat.TRIVY_JSON: parse_trivy,
    ReportFormat.GITLEAKS_JSON: parse_gitleaks,
    ReportFormat.DEPENDENCY_CHECK_JSON: parse_dependency_check,
    ReportFormat.FOSSA_JSON: parse_fossa,
    ReportFormat.SARIF: parse_sarif,
}

# File suffixes each format is read from; other artifacts (tool logs) are ignored.
REPORT_SUFFIXES: dict[ReportFormat, tuple[str, ...]] = {
    ReportFormat.TRX: (".trx",),
    ReportFormat.JUNIT_XML: (".xml",),
    ReportFormat.COBERTURA: (".xml",),
    ReportFormat.JACOCO: (".xml",),
    ReportFormat.SEMGREP_JSON: (".json",),
    ReportFormat.TRIVY_JSON: (".json",),
    ReportFormat.GITLEAKS_JSON: (".json",),
    ReportFormat.DEPENDENCY_CHECK_JSON: (".json",),
    ReportFormat.FOSSA_JSON: (".json",),
    ReportFormat.SARIF: (".sarif", ".json"),
}


def parse_report(fmt: ReportFormat, path: Path) -> Metrics:
    """Parse *path* as *fmt*."""
    path = Path(path)
    if not path.is_file():
        raise ReportParseError(f"{path.name}: report file not found")
    try:
        return PARSERS[fmt](path)
    except (AttributeError, TypeError, KeyError) as exc:
        raise ReportParseError(f"{path.name}: unexpected {fmt.value} structure: {exc}") from exc
