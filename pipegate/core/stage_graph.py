"""Stage graph — declared topology, activation predicates and cascade blocking.

The graph enforces:
- A fixed group order (discovery first, quality gate last).
- One explicit activation predicate per stage over the run configuration
  and the discovered projects.
- No stage runs unless every *active* prerequisite ended SUCCESS or
  UNSTABLE; a FAILURE blocks all transitive dependents.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Sequence

from pipegate.core.discovery import select_projects
from pipegate.models.config import PipelineConfig, SecurityScanLevel, TestFramework
from pipegate.models.projects import ProjectDescriptor, ProjectFramework
from pipegate.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    GROUP_ORDER,
    SATISFYING_STATUSES,
    StageDefinition,
    StageGroup,
    StageStatus,
)

Predicate = Callable[[PipelineConfig, Sequence[ProjectDescriptor]], bool]


class CyclicDependencyError(ValueError):
    """Raised when the stage prerequisites contain a cycle."""


class UnknownStageError(KeyError):
    """Raised when a stage id is not declared in the graph."""


# ---------------------------------------------------------------------------
# Activation predicates
# ---------------------------------------------------------------------------


def _has_dotnet(config: PipelineConfig, projects: Sequence[ProjectDescriptor]) -> bool:
    return any(
        p.build_system.is_dotnet for p in select_projects(projects, config.test_framework)
    )


def _has_jvm(config: PipelineConfig, projects: Sequence[ProjectDescriptor]) -> bool:
    return any(
        p.build_system.is_jvm for p in select_projects(projects, config.test_framework)
    )


def _has(framework: ProjectFramework) -> Callable[[Sequence[ProjectDescriptor]], bool]:
    return lambda projects: any(p.test_framework is framework for p in projects)


_has_nunit = _has(ProjectFramework.NUNIT)
_has_xunit = _has(ProjectFramework.XUNIT)
_has_junit = _has(ProjectFramework.JUNIT)


def _run_nunit(config: PipelineConfig, projects: Sequence[ProjectDescriptor]) -> bool:
    return (
        config.test_framework in (TestFramework.AUTO, TestFramework.NUNIT, TestFramework.BOTH)
        and _has_nunit(projects)
    )


def _run_xunit(config: PipelineConfig, projects: Sequence[ProjectDescriptor]) -> bool:
    return (
        config.test_framework in (TestFramework.AUTO, TestFramework.XUNIT, TestFramework.BOTH)
        and _has_xunit(projects)
    )


def _run_junit(config: PipelineConfig, projects: Sequence[ProjectDescriptor]) -> bool:
    return (
        config.test_framework in (TestFramework.AUTO, TestFramework.JUNIT)
        and _has_junit(projects)
    )


def _always(config: PipelineConfig, projects: Sequence[ProjectDescriptor]) -> bool:
    return True


def _security(config: PipelineConfig) -> bool:
    return config.enable_security_scan


DEFAULT_PREDICATES: dict[str, Predicate] = {
    "discovery": _always,
    "environment_dotnet": _has_dotnet,
    "environment_jvm": _has_jvm,
    "restore_dotnet": _has_dotnet,
    "restore_jvm": _has_jvm,
    "build_dotnet": _has_dotnet,
    "build_jvm": _has_jvm,
    "test_nunit": _run_nunit,
    "test_xunit": _run_xunit,
    "test_junit": _run_junit,
    "coverage_dotnet": lambda c, p: c.generate_coverage and (_run_nunit(c, p) or _run_xunit(c, p)),
    "coverage_jvm": lambda c, p: c.generate_coverage and _run_junit(c, p),
    "security_dependency_check": lambda c, p: _security(c),
    "security_sast": lambda c, p: _security(c),
    "security_lint": lambda c, p: _security(c) and c.enable_linting,
    "security_secrets": lambda c, p: _security(c) and c.enable_secrets_scan,
    "security_license": lambda c, p: (
        _security(c)
        and c.enable_license_check
        and c.security_scan_level.rank >= SecurityScanLevel.COMPREHENSIVE.rank
    ),
    "security_sonarqube": lambda c, p: (
        _security(c)
        and c.security_scan_level.rank >= SecurityScanLevel.COMPREHENSIVE.rank
        and bool(c.sonar_host_url)
    ),
    "security_container": lambda c, p: (
        _security(c) and c.security_scan_level is SecurityScanLevel.FULL
    ),
    "publish_reports": _always,
    "publish_artifacts": lambda c, p: c.publish_artifacts,
    "quality_gate": _always,
}


class StageGraph:
    """The pipeline's stage topology.

    Parameters
    ----------
    definitions:
        Declared stages. Every stage must belong to a group in ``GROUP_ORDER``
        and have an activation predicate.
    predicates:
        Activation predicate per stage id.
    """

    def __init__(
        self,
        definitions: Sequence[StageDefinition] = DEFAULT_STAGE_DEFINITIONS,
        predicates: dict[str, Predicate] | None = None,
    ) -> None:
        self._stages: dict[str, StageDefinition] = {
            sd.stage_id: sd for sd in definitions
        }
        if len(self._stages) != len(definitions):
            raise ValueError("Duplicate stage_id in stage definitions")

        self._predicates = dict(predicates if predicates is not None else DEFAULT_PREDICATES)
        for sd in definitions:
            if sd.group not in GROUP_ORDER:
                raise ValueError(f"Stage {sd.stage_id} has unknown group {sd.group!r}")
            if sd.stage_id not in self._predicates:
                raise ValueError(f"Stage {sd.stage_id} has no activation predicate")
            for prereq in sd.prerequisites:
                if prereq not in self._stages:
                    raise ValueError(
                        f"Stage {sd.stage_id} depends on undeclared stage {prereq}"
                    )

        # Reverse edges: stage_id -> stages that depend on it
        self._dependents: dict[str, list[str]] = {sid: [] for sid in self._stages}
        for sd in definitions:
            for prereq in sd.prerequisites:
                self._dependents[prereq].append(sd.stage_id)

        self._validate_no_cycles()
        self._validate_group_order()

    def _validate_no_cycles(self) -> None:
        """Verify the prerequisites form a DAG (Kahn's algorithm)."""
        in_degree = {sid: len(sd.prerequisites) for sid, sd in self._stages.items()}
        queue = deque(sid for sid, deg in in_degree.items() if deg == 0)
        visited = 0

        while queue:
            node = queue.popleft()
            visited += 1
            for dep in self._dependents[node]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)

        if visited != len(self._stages):
            raise CyclicDependencyError(
                f"Stage graph has a cycle. Visited {visited}/{len(self._stages)} stages."
            )

    def _validate_group_order(self) -> None:
        """A prerequisite must live in an earlier group than its dependent."""
        for sd in self._stages.values():
            for prereq in sd.prerequisites:
                if GROUP_ORDER.index(self._stages[prereq].group) >= GROUP_ORDER.index(sd.group):
                    raise ValueError(
                        f"Stage {sd.stage_id} cannot depend on {prereq}: "
                        "prerequisites must run in an earlier group"
                    )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    @property
    def stage_ids(self) -> list[str]:
        """All declared stage ids in execution order."""
        return [sd.stage_id for sd in self._ordered(self._stages.values())]

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._stages

    def get(self, stage_id: str) -> StageDefinition:
        try:
            return self._stages[stage_id]
        except KeyError:
            raise UnknownStageError(stage_id) from None

    def get_dependents(self, stage_id: str) -> list[str]:
        """All transitive dependents of a stage (BFS)."""
        result: list[str] = []
        queue = deque(self._dependents.get(stage_id, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents.get(node, []))
        return result

    @staticmethod
    def _ordered(definitions: Iterable[StageDefinition]) -> list[StageDefinition]:
        return sorted(
            definitions, key=lambda sd: (GROUP_ORDER.index(sd.group), sd.ordinal)
        )

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def is_active(
        self,
        stage_id: str,
        config: PipelineConfig,
        projects: Sequence[ProjectDescriptor],
    ) -> bool:
        self.get(stage_id)
        return bool(self._predicates[stage_id](config, projects))

    def active_stages(
        self, config: PipelineConfig, projects: Sequence[ProjectDescriptor]
    ) -> list[StageGroup]:
        """Ordered stage groups that run for *config* and *projects*.

        Pure: the same inputs always give the same plan. Groups with no
        active stage are omitted.
        """
        active = [
            sd
            for sd in self._stages.values()
            if self._predicates[sd.stage_id](config, projects)
        ]
        groups: list[StageGroup] = []
        for group_name in GROUP_ORDER:
            members = self._ordered(sd for sd in active if sd.group == group_name)
            if members:
                groups.append(StageGroup(name=group_name, stages=members))
        return groups

    # ------------------------------------------------------------------
    # Prerequisite checking
    # ------------------------------------------------------------------

    def blocking_reasons(
        self,
        stage_id: str,
        statuses: dict[str, StageStatus],
        active_ids: Iterable[str],
    ) -> list[str]:
        """Reasons why *stage_id* may not run; empty when it may.

        *statuses* maps finished stage ids to their worst status. A
        prerequisite that is not in *active_ids* never blocks.
        """
        active = set(active_ids)
        reasons: list[str] = []
        for prereq in self.get(stage_id).prerequisites:
            if prereq not in active:
                continue
            status = statuses.get(prereq)
            if status not in SATISFYING_STATUSES:
                shown = status.value if status is not None else "not run"
                reasons.append(f"{self._stages[prereq].display_name} ({prereq}) is {shown}")
        return reasons
