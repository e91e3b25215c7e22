"""Project discovery — find build units and classify their test framework.

Candidates are located with several file-name heuristics, read as text and
classified by dependency marker strings. Discovery fails closed: a run with
nothing to test is an error, never a silent green build.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence
from pathlib import Path

from pipegate.models.config import TestFramework
from pipegate.models.projects import BuildSystem, ProjectDescriptor, ProjectFramework

logger = logging.getLogger(__name__)


class DiscoveryError(RuntimeError):
    """Raised when no usable project exists or the tree cannot be read."""


# Directories holding build output or vendored code.
_PRUNED_DIRS: frozenset[str] = frozenset(
    {"bin", "obj", "target", "build", ".git", ".gradle", "node_modules", ".idea", ".vs"}
)

_JVM_BUILD_FILES: frozenset[str] = frozenset({"pom.xml", "build.gradle", "build.gradle.kts"})

_DOTNET_TEST_SDK = "microsoft.net.test.sdk"
_NUNIT_MARKERS = ('"nunit"', "nunit3testadapter", "nunit.framework")
_XUNIT_MARKERS = ('"xunit"', "xunit.runner", "xunit.core")
_JUNIT_MARKERS = (
    "junit-jupiter",
    "org.junit.jupiter",
    "junit:junit",
    "<artifactid>junit</artifactid>",
)

# Frameworks each hint accepts for execution.
_ACCEPTED: dict[TestFramework, frozenset[ProjectFramework]] = {
    TestFramework.AUTO: frozenset(
        {ProjectFramework.NUNIT, ProjectFramework.XUNIT, ProjectFramework.JUNIT}
    ),
    TestFramework.NUNIT: frozenset({ProjectFramework.NUNIT}),
    TestFramework.XUNIT: frozenset({ProjectFramework.XUNIT}),
    TestFramework.BOTH: frozenset({ProjectFramework.NUNIT, ProjectFramework.XUNIT}),
    TestFramework.JUNIT: frozenset({ProjectFramework.JUNIT}),
}


def accepted_frameworks(hint: TestFramework) -> frozenset[ProjectFramework]:
    """Project frameworks that *hint* allows to run."""
    return _ACCEPTED[hint]


def select_projects(
    projects: Iterable[ProjectDescriptor], hint: TestFramework
) -> list[ProjectDescriptor]:
    """Projects that are classified and accepted by *hint*."""
    accepted = _ACCEPTED[hint]
    return [p for p in projects if p.test_framework in accepted]


class ProjectDiscoverer:
    """Scans a source tree for testable projects.

    Parameters
    ----------
    fallback:
        Descriptors used when the scan finds no accepted project. Paths are
        relative to the discovery root.
    """

    def __init__(self, fallback: Sequence[ProjectDescriptor] = ()) -> None:
        self._fallback = list(fallback)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def discover(
        self, root: Path, framework_hint: TestFramework = TestFramework.AUTO
    ) -> list[ProjectDescriptor]:
        """Return the projects under *root*, sorted by path.

        Classified projects the hint does not accept are dropped; UNKNOWN
        projects are kept so they show up in the report, but nothing runs
        them. Raises ``DiscoveryError`` when neither the scan nor the
        fallback list yields a runnable project, or on I/O failure.
        """
        root = Path(root)
        accepted = _ACCEPTED[framework_hint]

        found: list[ProjectDescriptor] = []
        for candidate in self._candidates(root):
            descriptor = self._classify(root, candidate)
            if descriptor.is_classified and descriptor.test_framework not in accepted:
                logger.debug(
                    "Ignoring %s (%s) for framework selection %s",
                    descriptor.path,
                    descriptor.test_framework.value,
                    framework_hint.value,
                )
                continue
            if not descriptor.is_classified:
                logger.warning(
                    "Unrecognized test framework in %s; it will not be executed",
                    descriptor.path,
                )
            found.append(descriptor)

        if any(p.is_classified for p in found):
            logger.info(
                "Discovered %d project(s) under %s",
                sum(1 for p in found if p.is_classified),
                root,
            )
            return found

        fallback = self._usable_fallback(root, accepted)
        if fallback:
            logger.warning(
                "No %s projects discovered under %s; using %d fallback project(s)",
                framework_hint.value,
                root,
                len(fallback),
            )
            return fallback

        raise DiscoveryError(
            f"No runnable {framework_hint.value} test projects found under {root} "
            f"and no configured fallback project exists there."
        )

    # ------------------------------------------------------------------
    # Candidate search
    # ------------------------------------------------------------------

    def _candidates(self, root: Path) -> list[Path]:
        """All candidate build-unit files, deduplicated by resolved path."""
        if not root.is_dir():
            return []

        seen: dict[Path, Path] = {}
        for path in self._walk(root):
            if self._is_candidate(root, path):
                seen.setdefault(path.resolve(), path)
        return sorted(seen.values(), key=lambda p: p.relative_to(root).as_posix())

    @staticmethod
    def _walk(root: Path) -> Iterable[Path]:
        def _raise(exc: OSError) -> None:
            raise DiscoveryError(f"Cannot read source tree at {exc.filename}: {exc}") from exc

        for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
            dirnames[:] = sorted(d for d in dirnames if d not in _PRUNED_DIRS)
            for filename in sorted(filenames):
                yield Path(dirpath) / filename

    @staticmethod
    def _is_candidate(root: Path, path: Path) -> bool:
        """Test csproj (a path part mentions "test"), pom.xml or a Gradle build."""
        if path.suffix.lower() == ".csproj":
            return any("test" in part.lower() for part in path.relative_to(root).parts)
        return path.name in _JVM_BUILD_FILES

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    @staticmethod
    def _classify(root: Path, path: Path) -> ProjectDescriptor:
        try:
            text = path.read_text(encoding="utf-8", errors="replace").lower()
        except OSError as exc:
            raise DiscoveryError(f"Cannot read {path}: {exc}") from exc

        rel = path.relative_to(root).as_posix()

        if path.suffix.lower() == ".csproj":
            build_system = BuildSystem.SOLUTION
            name = path.stem
            has_sdk = _DOTNET_TEST_SDK in text
            is_nunit = has_sdk and any(m in text for m in _NUNIT_MARKERS)
            is_xunit = has_sdk and any(m in text for m in _XUNIT_MARKERS)
            if is_nunit and not is_xunit:
                framework = ProjectFramework.NUNIT
            elif is_xunit and not is_nunit:
                framework = ProjectFramework.XUNIT
            else:
                framework = ProjectFramework.UNKNOWN
        else:
            build_system = BuildSystem.MAVEN if path.name == "pom.xml" else BuildSystem.GRADLE
            name = path.parent.name if path.parent != root else root.resolve().name
            framework = (
                ProjectFramework.JUNIT
                if any(m in text for m in _JUNIT_MARKERS)
                else ProjectFramework.UNKNOWN
            )

        return ProjectDescriptor(
            path=rel,
            build_system=build_system,
            test_framework=framework,
            name=name,
        )

    def _usable_fallback(
        self, root: Path, accepted: frozenset[ProjectFramework]
    ) -> list[ProjectDescriptor]:
        usable = []
        seen: set[str] = set()
        for descriptor in self._fallback:
            if descriptor.test_framework not in accepted or descriptor.path in seen:
                continue
            if (root / descriptor.path).is_file():
                usable.append(descriptor)
                seen.add(descriptor.path)
            else:
                logger.debug("Fallback project %s does not exist", descriptor.path)
        return usable
