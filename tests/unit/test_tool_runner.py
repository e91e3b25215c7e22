"""Tests for ToolRunner — exit-code translation, reports, timeout and cancel.

The "tools" here are short Python snippets run with the current interpreter.
"""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import pytest

from pipegate.core import tool_runner
from pipegate.core.tool_runner import Runner, ToolInvocation, ToolInvocationError, ToolRunner
from pipegate.models.stages import StageStatus


def _invocation(tmp_path: Path, code: str, **overrides) -> ToolInvocation:
    values = dict(
        stage_id="test_junit",
        target="java-junit/pom.xml",
        argv=[sys.executable, "-c", code],
        cwd=tmp_path,
        output_dir=tmp_path / "reports" / "test_junit" / "java-junit",
        timeout_seconds=30,
    )
    values.update(overrides)
    return ToolInvocation(**values)


@pytest.fixture
def runner() -> ToolRunner:
    return ToolRunner(poll_seconds=0.05)


class TestExitCodes:
    def test_success(self, tmp_path: Path, runner: ToolRunner):
        result = runner.run(_invocation(tmp_path, "print('ok')"))
        assert result.status is StageStatus.SUCCESS
        assert result.exit_code == 0
        assert result.target == "java-junit/pom.xml"
        assert result.metrics["exit_code"] == 0

    def test_gating_failure(self, tmp_path: Path, runner: ToolRunner):
        result = runner.run(_invocation(tmp_path, "import sys; sys.exit(3)"))
        assert result.status is StageStatus.FAILURE
        assert result.exit_code == 3
        assert "exited with code 3" in result.reason

    def test_non_gating_failure_is_unstable(self, tmp_path: Path, runner: ToolRunner):
        result = runner.run(_invocation(tmp_path, "import sys; sys.exit(1)", gating=False))
        assert result.status is StageStatus.UNSTABLE
        assert result.exit_code == 1

    def test_output_logged(self, tmp_path: Path, runner: ToolRunner):
        result = runner.run(
            _invocation(tmp_path, "import sys; print('to-out'); print('to-err', file=sys.stderr)")
        )
        log = result.artifacts[0]
        assert log.name.endswith(".log")
        text = log.read_text()
        assert "to-out" in text and "to-err" in text


class TestInvocationErrors:
    def test_missing_binary(self, tmp_path: Path, runner: ToolRunner):
        inv = _invocation(tmp_path, "", argv=["pipegate-no-such-tool-xyz", "--version"])
        with pytest.raises(ToolInvocationError):
            runner.run(inv)

    def test_missing_working_directory(self, tmp_path: Path, runner: ToolRunner):
        inv = _invocation(tmp_path, "print(1)", cwd=tmp_path / "missing")
        with pytest.raises(ToolInvocationError):
            runner.run(inv)

    def test_empty_command(self, tmp_path: Path, runner: ToolRunner):
        with pytest.raises(ToolInvocationError):
            runner.run(_invocation(tmp_path, "", argv=[]))

    def test_output_dir_under_a_file(self, tmp_path: Path, runner: ToolRunner):
        blocker = tmp_path / "reports"
        blocker.write_text("not a directory")
        inv = _invocation(
            tmp_path, "print(1)", output_dir=blocker / "security_sast" / "workspace"
        )
        with pytest.raises(ToolInvocationError, match="cannot start"):
            runner.run(inv)

    def test_unwritable_stdout_file(self, tmp_path: Path, runner: ToolRunner):
        inv = _invocation(
            tmp_path, "print(1)", stage_id="security_license", stdout_file="fossa.json"
        )
        (inv.output_dir / "fossa.json").mkdir(parents=True)
        with pytest.raises(ToolInvocationError):
            runner.run(inv)


class TestReports:
    def test_reports_in_output_dir_collected(self, tmp_path: Path, runner: ToolRunner):
        out = tmp_path / "reports" / "security_sast" / "workspace"
        code = f"open(r'{out / 'semgrep.json'}', 'w').write('{{}}')"
        inv = _invocation(
            tmp_path, code, stage_id="security_sast", output_dir=out,
            report_globs=["semgrep.json"],
        )
        result = runner.run(inv)
        assert out / "semgrep.json" in result.artifacts

    def test_external_reports_copied(self, tmp_path: Path, runner: ToolRunner):
        project = tmp_path / "java-junit"
        code = (
            "import os; os.makedirs('target/surefire-reports', exist_ok=True); "
            "open('target/surefire-reports/TEST-Calc.xml', 'w').write('<testsuite/>')"
        )
        inv = _invocation(
            tmp_path, code, cwd=project,
            external_report_globs=["target/surefire-reports/TEST-*.xml"],
        )
        project.mkdir()
        result = runner.run(inv)
        copied = inv.output_dir / "TEST-Calc.xml"
        assert copied in result.artifacts
        assert copied.read_text() == "<testsuite/>"

    def test_failed_report_copy_is_skipped(
        self, monkeypatch, tmp_path: Path, runner: ToolRunner
    ):
        def refuse(src, dst, *args, **kwargs):
            raise PermissionError(f"cannot write {dst}")

        monkeypatch.setattr(tool_runner.shutil, "copy2", refuse)
        project = tmp_path / "java-junit"
        (project / "target" / "surefire-reports").mkdir(parents=True)
        (project / "target" / "surefire-reports" / "TEST-Calc.xml").write_text("<testsuite/>")
        inv = _invocation(
            tmp_path, "print(1)", cwd=project,
            external_report_globs=["target/surefire-reports/TEST-*.xml"],
        )
        result = runner.run(inv)
        assert result.status is StageStatus.SUCCESS
        assert result.artifacts == [inv.output_dir / f"{inv.tool}.log"]

    def test_stdout_file(self, tmp_path: Path, runner: ToolRunner):
        inv = _invocation(
            tmp_path, "print('{\"issues\": []}')",
            stage_id="security_license", stdout_file="fossa.json",
        )
        result = runner.run(inv)
        assert result.artifacts[1] == inv.output_dir / "fossa.json"
        assert '"issues"' in (inv.output_dir / "fossa.json").read_text()

    def test_reports_collected_even_on_failure(self, tmp_path: Path, runner: ToolRunner):
        out = tmp_path / "reports" / "test_nunit" / "x"
        code = f"open(r'{out / 'results.trx'}', 'w').write('<TestRun/>'); raise SystemExit(1)"
        inv = _invocation(tmp_path, code, output_dir=out, report_globs=["*.trx"])
        result = runner.run(inv)
        assert result.status is StageStatus.FAILURE
        assert out / "results.trx" in result.artifacts


class TestTimeoutAndCancel:
    def test_timeout_kills_process(self, tmp_path: Path, runner: ToolRunner):
        inv = _invocation(tmp_path, "import time; time.sleep(30)", timeout_seconds=0.3)
        started = time.monotonic()
        result = runner.run(inv)
        assert time.monotonic() - started < 10
        assert result.status is StageStatus.FAILURE
        assert "timed out" in result.reason

    def test_cancel_event(self, tmp_path: Path, runner: ToolRunner):
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        try:
            result = runner.run(_invocation(tmp_path, "import time; time.sleep(30)"), cancel)
        finally:
            timer.cancel()
        assert result.status is StageStatus.FAILURE
        assert result.reason == "cancelled"


def test_tool_runner_satisfies_runner_protocol():
    assert isinstance(ToolRunner(), Runner)
