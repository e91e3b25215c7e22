"""pipegate: stage orchestration and quality gate for multi-language CI.

Drives .NET (NUnit, xUnit) and JVM (JUnit 5) builds plus a concurrent
security analysis group through their command-line tools:
  - project discovery by build-file markers, with a sample-project fallback
  - a fixed stage order with one activation predicate per stage
  - fail-independent concurrent stage groups and a global run budget
  - order-independent aggregation of TRX, JUnit, Cobertura, JaCoCo and
    scanner reports
  - a three-state quality gate (SUCCESS, UNSTABLE, FAILURE)
"""

__version__ = "0.1.0"
__description__ = "Stage orchestration and quality-gate evaluation for multi-language CI"

from pipegate.core.orchestrator import Orchestrator
from pipegate.core.quality_gate import QualityGateEvaluator
from pipegate.cli.app import app as cli

__all__ = ["Orchestrator", "QualityGateEvaluator", "cli", "__version__"]
