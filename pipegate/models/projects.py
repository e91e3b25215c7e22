"""Project descriptors produced by discovery."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class BuildSystem(str, Enum):
    """How a discovered project is built."""

    SOLUTION = "solution"  # dotnet solution / csproj
    MAVEN = "maven"
    GRADLE = "gradle"

    @property
    def is_dotnet(self) -> bool:
        return self is BuildSystem.SOLUTION

    @property
    def is_jvm(self) -> bool:
        return self in (BuildSystem.MAVEN, BuildSystem.GRADLE)


class ProjectFramework(str, Enum):
    """Test framework a project was classified as."""

    NUNIT = "nunit"
    XUNIT = "xunit"
    JUNIT = "junit"
    UNKNOWN = "unknown"


class ProjectDescriptor(BaseModel):
    """One buildable, testable unit found in the source tree.

    ``path`` is the build-unit file relative to the discovery root, in POSIX
    form (``csharp-nunit/Calculator.Tests/Calculator.Tests.csproj``).
    """

    model_config = ConfigDict(frozen=True)

    path: str
    build_system: BuildSystem
    test_framework: ProjectFramework
    name: str

    @property
    def directory(self) -> str:
        """Directory that holds the build-unit file, relative to the root."""
        head, _, _ = self.path.rpartition("/")
        return head or "."

    @property
    def is_classified(self) -> bool:
        return self.test_framework is not ProjectFramework.UNKNOWN
