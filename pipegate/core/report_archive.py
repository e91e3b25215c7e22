"""Report archive — verbatim, hash-verified copies of every per-tool report.

Storage layout: {report_root}/archive/{run_id}/{stage_id}/{target}/{file name}
Manifest: {report_root}/archive/{run_id}/archive-manifest.json

Archived files are never rewritten: archiving the same content twice is a
no-op, archiving different content under an existing name is an error.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from pipegate.core.hasher import pretty_json_text, sha256_file
from pipegate.core.toolchain import slugify
from pipegate.models.reports import ArchivedReport
from pipegate.models.stages import StageResult

logger = logging.getLogger(__name__)

MANIFEST_NAME = "archive-manifest.json"


class ReportArchiveError(RuntimeError):
    """Raised when an archived report cannot be written or fails verification."""


class ReportArchive:
    """Copies report artifacts into the archive and records their digests.

    Parameters
    ----------
    report_root:
        Root of the report tree; archived paths are relative to it.
    run_id:
        Run the archive belongs to; each run archives into its own
        directory under ``archive/``.
    """

    def __init__(self, report_root: Path, run_id: str) -> None:
        self._root = Path(report_root)
        self._base = self._root / "archive" / run_id

    @property
    def base_path(self) -> Path:
        return self._base

    @property
    def manifest_path(self) -> Path:
        return self._base / MANIFEST_NAME

    def _archive_path(self, result: StageResult, artifact: Path) -> Path:
        return self._base / result.stage_id / slugify(result.target or "stage") / artifact.name

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def archive(self, results: Iterable[StageResult]) -> list[ArchivedReport]:
        """Archive every existing artifact of *results* and write the manifest.

        Artifacts that no longer exist are skipped with a warning. The
        returned entries are sorted by archive path.
        """
        entries: dict[str, ArchivedReport] = {}
        for result in results:
            for artifact in result.artifacts:
                artifact = Path(artifact)
                if not artifact.is_file():
                    logger.warning(
                        "[%s] artifact %s no longer exists; not archived",
                        result.stage_id, artifact,
                    )
                    continue
                entry = self._store(result, artifact)
                entries[entry.path] = entry

        archived = [entries[key] for key in sorted(entries)]
        self._base.mkdir(parents=True, exist_ok=True)
        self.manifest_path.write_text(
            pretty_json_text([e.model_dump(mode="json") for e in archived]),
            encoding="utf-8",
        )
        logger.info("Archived %d report file(s) under %s", len(archived), self._base)
        return archived

    def _store(self, result: StageResult, artifact: Path) -> ArchivedReport:
        digest = sha256_file(artifact)
        target = self._archive_path(result, artifact)

        if target.exists():
            if sha256_file(target) != digest:
                raise ReportArchiveError(
                    f"{target} already archived with different content"
                )
        else:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(artifact, target)
            except OSError as exc:
                raise ReportArchiveError(f"cannot archive {artifact}: {exc}") from exc

        return ArchivedReport(
            stage_id=result.stage_id,
            name=artifact.name,
            path=target.relative_to(self._root).as_posix(),
            sha256=digest,
            size_bytes=target.stat().st_size,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, entries: Iterable[ArchivedReport]) -> list[str]:
        """Re-hash archived files; return the paths that are missing or altered."""
        broken: list[str] = []
        for entry in entries:
            path = self._root / entry.path
            if not path.is_file() or sha256_file(path) != entry.sha256:
                broken.append(entry.path)
        return broken
