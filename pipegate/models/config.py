"""Pipeline configuration — the immutable parameter record for one run."""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(str, Enum):
    """Recognized pipeline log levels."""

    INFO = "INFO"
    DEBUG = "DEBUG"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def logging_level(self) -> int:
        """The stdlib ``logging`` level for this value."""
        if self is LogLevel.WARN:
            return logging.WARNING
        return logging.getLevelName(self.value)


class TestFramework(str, Enum):
    """Test framework selection for a run."""

    __test__ = False  # not a pytest test class

    AUTO = "AUTO"
    NUNIT = "NUNIT"
    XUNIT = "XUNIT"
    BOTH = "BOTH"  # NUnit and xUnit
    JUNIT = "JUNIT"


class SecurityScanLevel(str, Enum):
    """How deep the security analysis group goes."""

    BASIC = "BASIC"
    COMPREHENSIVE = "COMPREHENSIVE"
    FULL = "FULL"

    @property
    def rank(self) -> int:
        return _SCAN_LEVEL_RANK[self]


_SCAN_LEVEL_RANK: dict[SecurityScanLevel, int] = {
    SecurityScanLevel.BASIC: 0,
    SecurityScanLevel.COMPREHENSIVE: 1,
    SecurityScanLevel.FULL: 2,
}


class PipelineConfig(BaseModel):
    """User-supplied parameters for a pipeline run.

    Created once at pipeline start and never mutated. Unknown enum values
    raise a ``ValidationError`` before any stage runs.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    generate_coverage: bool = True
    fail_on_test_failure: bool = True
    log_level: LogLevel = LogLevel.INFO
    test_framework: TestFramework = TestFramework.AUTO
    security_scan_level: SecurityScanLevel = SecurityScanLevel.BASIC
    enable_security_scan: bool = True
    fail_on_security_issues: bool = False
    enable_linting: bool = True
    enable_secrets_scan: bool = True
    enable_license_check: bool = False

    # Upload build outputs with the JFrog CLI after the reports are archived.
    publish_artifacts: bool = False
    sonar_host_url: str | None = None


class GateThresholds(BaseModel):
    """Tunable limits used by the quality gate.

    ``informational_findings`` maps a scanner name to the number of findings
    it may report before the run degrades to UNSTABLE. Scanners not listed
    use ``default_informational_findings``.
    """

    model_config = ConfigDict(frozen=True)

    default_informational_findings: int = Field(default=0, ge=0)
    informational_findings: dict[str, int] = {}
    min_coverage_percent: float | None = Field(default=None, ge=0.0, le=100.0)

    def informational_limit(self, tool: str) -> int:
        return self.informational_findings.get(
            tool, self.default_informational_findings
        )
