"""Tests for the native report parsers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pipegate.core.parsers import (
    ReportParseError,
    parse_cobertura,
    parse_dependency_check,
    parse_fossa,
    parse_gitleaks,
    parse_jacoco,
    parse_junit_xml,
    parse_report,
    parse_sarif,
    parse_semgrep,
    parse_trivy,
    parse_trx,
)
from pipegate.models.stages import ReportFormat


def _json(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestTestReports:
    def test_trx_counts(self, tmp_path: Path, write_trx):
        path = write_trx(tmp_path / "results.trx", total=10, passed=9, failed=1)
        assert parse_trx(path) == {
            "tests_passed": 9.0,
            "tests_failed": 1.0,
            "tests_skipped": 0.0,
        }

    def test_trx_errors_count_as_failed_and_rest_skipped(self, tmp_path: Path, write_trx):
        path = write_trx(tmp_path / "results.trx", total=12, passed=8, failed=1, error=1)
        metrics = parse_trx(path)
        assert metrics["tests_failed"] == 2
        assert metrics["tests_skipped"] == 2

    def test_trx_wrong_root(self, tmp_path: Path):
        path = tmp_path / "x.trx"
        path.write_text("<coverage/>")
        with pytest.raises(ReportParseError):
            parse_trx(path)

    def test_trx_without_counters(self, tmp_path: Path):
        path = tmp_path / "x.trx"
        path.write_text("<TestRun><ResultSummary/></TestRun>")
        with pytest.raises(ReportParseError):
            parse_trx(path)

    def test_junit_single_suite(self, tmp_path: Path, write_junit):
        path = write_junit(tmp_path / "TEST-a.xml", tests=7, failures=1, errors=1, skipped=2)
        assert parse_junit_xml(path) == {
            "tests_passed": 3.0,
            "tests_failed": 2.0,
            "tests_skipped": 2.0,
        }

    def test_junit_testsuites(self, tmp_path: Path):
        path = tmp_path / "all.xml"
        path.write_text(
            "<testsuites>"
            '<testsuite tests="3" failures="0" errors="0" skipped="0"/>'
            '<testsuite tests="2" failures="1" errors="0" skipped="1"/>'
            "</testsuites>"
        )
        assert parse_junit_xml(path) == {
            "tests_passed": 3.0,
            "tests_failed": 1.0,
            "tests_skipped": 1.0,
        }

    def test_malformed_xml(self, tmp_path: Path):
        path = tmp_path / "broken.xml"
        path.write_text("<testsuite tests='1'")
        with pytest.raises(ReportParseError):
            parse_junit_xml(path)

    def test_non_numeric_attribute(self, tmp_path: Path):
        path = tmp_path / "bad.xml"
        path.write_text('<testsuite tests="many"/>')
        with pytest.raises(ReportParseError):
            parse_junit_xml(path)


class TestCoverageReports:
    def test_cobertura_lines(self, tmp_path: Path):
        path = tmp_path / "Cobertura.xml"
        path.write_text('<coverage line-rate="0.8" lines-covered="80" lines-valid="100"/>')
        assert parse_cobertura(path) == {
            "coverage_lines_covered": 80.0,
            "coverage_lines_valid": 100.0,
        }

    def test_cobertura_rate_only(self, tmp_path: Path):
        path = tmp_path / "Cobertura.xml"
        path.write_text('<coverage line-rate="0.755"/>')
        assert parse_cobertura(path) == {"coverage_percent": 75.5}

    def test_cobertura_without_line_data(self, tmp_path: Path):
        path = tmp_path / "Cobertura.xml"
        path.write_text("<coverage/>")
        with pytest.raises(ReportParseError):
            parse_cobertura(path)

    def test_jacoco_report_level_counter(self, tmp_path: Path):
        path = tmp_path / "jacoco.xml"
        path.write_text(
            '<report name="calc">'
            '<package name="com/example"><counter type="LINE" missed="99" covered="1"/></package>'
            '<counter type="INSTRUCTION" missed="5" covered="50"/>'
            '<counter type="LINE" missed="10" covered="30"/>'
            "</report>"
        )
        assert parse_jacoco(path) == {
            "coverage_lines_covered": 30.0,
            "coverage_lines_valid": 40.0,
        }

    def test_jacoco_without_line_counter(self, tmp_path: Path):
        path = tmp_path / "jacoco.xml"
        path.write_text('<report name="calc"/>')
        with pytest.raises(ReportParseError):
            parse_jacoco(path)


class TestScannerReports:
    def test_semgrep(self, tmp_path: Path, write_semgrep):
        path = write_semgrep(tmp_path / "semgrep.json", errors=2, warnings=3)
        assert parse_semgrep(path) == {"findings_total": 5.0, "findings_critical": 2.0}

    def test_trivy(self, tmp_path: Path):
        path = _json(tmp_path / "trivy.json", {
            "Results": [
                {"Vulnerabilities": [{"Severity": "CRITICAL"}, {"Severity": "LOW"}]},
                {"Misconfigurations": [{"Severity": "HIGH"}], "Vulnerabilities": None},
                {"Secrets": [{"Severity": "CRITICAL"}]},
            ]
        })
        assert parse_trivy(path) == {"findings_total": 4.0, "findings_critical": 2.0}

    def test_trivy_clean(self, tmp_path: Path):
        path = _json(tmp_path / "trivy.json", {"SchemaVersion": 2})
        assert parse_trivy(path) == {"findings_total": 0.0, "findings_critical": 0.0}

    def test_gitleaks_every_leak_critical(self, tmp_path: Path):
        path = _json(tmp_path / "gitleaks.json", [{"RuleID": "aws"}, {"RuleID": "jwt"}])
        assert parse_gitleaks(path) == {"findings_total": 2.0, "findings_critical": 2.0}

    def test_gitleaks_null(self, tmp_path: Path):
        path = tmp_path / "gitleaks.json"
        path.write_text("null")
        assert parse_gitleaks(path) == {"findings_total": 0.0, "findings_critical": 0.0}

    def test_dependency_check(self, tmp_path: Path):
        path = _json(tmp_path / "dependency-check-report.json", {
            "dependencies": [
                {"fileName": "a.jar", "vulnerabilities": [
                    {"severity": "CRITICAL"}, {"severity": "MEDIUM"},
                ]},
                {"fileName": "b.jar"},
                {"fileName": "c.jar", "vulnerabilities": [
                    {"cvssv3": {"baseSeverity": "CRITICAL"}},
                ]},
            ]
        })
        assert parse_dependency_check(path) == {
            "findings_total": 3.0,
            "findings_critical": 2.0,
        }

    def test_fossa(self, tmp_path: Path):
        path = _json(tmp_path / "fossa.json", {
            "issues": [{"type": "policy_conflict"}, {"type": "unlicensed_dependency"}]
        })
        assert parse_fossa(path) == {"findings_total": 2.0, "findings_critical": 1.0}

    def test_sarif(self, tmp_path: Path):
        path = _json(tmp_path / "scan.sarif", {
            "version": "2.1.0",
            "runs": [{"results": [{"level": "error"}, {"level": "note"}, {}]}],
        })
        assert parse_sarif(path) == {"findings_total": 3.0, "findings_critical": 1.0}

    def test_wrong_shape(self, tmp_path: Path):
        path = _json(tmp_path / "semgrep.json", ["not", "a", "dict"])
        with pytest.raises(ReportParseError):
            parse_semgrep(path)

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "trivy.json"
        path.write_text("{not json")
        with pytest.raises(ReportParseError):
            parse_trivy(path)


class TestParseReport:
    def test_dispatches_by_format(self, tmp_path: Path, write_trx):
        path = write_trx(tmp_path / "r.trx", total=1, passed=1, failed=0)
        assert parse_report(ReportFormat.TRX, path)["tests_passed"] == 1

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ReportParseError):
            parse_report(ReportFormat.JACOCO, tmp_path / "nope.xml")

    def test_unexpected_structure_wrapped(self, tmp_path: Path):
        path = _json(tmp_path / "trivy.json", {"Results": [["not-a-dict"]]})
        with pytest.raises(ReportParseError):
            parse_report(ReportFormat.TRIVY_JSON, path)
