"""Canonical serialization and digest helpers.

Canonical JSON keeps the unified report byte-identical for identical
content, and SHA-256 digests pin every archived tool report.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel

_CHUNK_SIZE = 1 << 16


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="json")
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def pretty_json_text(obj: Any) -> str:
    """Sorted, indented JSON for files people read."""
    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="json")
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """SHA-256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
