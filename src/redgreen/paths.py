"""Path normalization helpers for project-relative file names."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Final

WINDOWS_ABSOLUTE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z]:[\\/]")


def _normalize_separators(candidate: str) -> tuple[str, bool]:
    """Normalize path separators and detect absolute-style inputs."""
    normalized = candidate.replace("\\", "/")
    if normalized.startswith("/"):
        return normalized, True
    if WINDOWS_ABSOLUTE_PATTERN.match(normalized):
        return normalized, True
    return normalized, False


def to_project_relative(project_root: Path, candidate: str) -> str:
    """Return candidate as a POSIX path relative to project_root when it lies inside it.

    Paths outside the root are returned normalized but otherwise untouched, so a
    failure in an out-of-tree file is still recorded under a stable key.
    """
    root = project_root.resolve()
    normalized, is_absolute_style = _normalize_separators(candidate)
    if not is_absolute_style:
        parts = [part for part in normalized.split("/") if part not in ("", ".")]
        return "/".join(parts)
    resolved = Path(normalized).resolve(strict=False)
    if not resolved.is_relative_to(root):
        return resolved.as_posix()
    return resolved.relative_to(root).as_posix()
