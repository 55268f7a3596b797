"""Deterministic file discovery and mtime-based change detection."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Final

from redgreen.index.models import ChangeSet, FileRecord

# Editor swap files, backups, patch leftovers, compiled bytecode, RCS files,
# and Emacs autosave/lock files.
ARTIFACT_PATTERN: Final[re.Pattern[str]] = re.compile(r"(swp|~|rej|orig|py[co])$|,v$|(^|/)\.?#")


class ExclusionsCompiledError(RuntimeError):
    """Raised when the exclusion list is edited after the first scan compiled it."""


class FileIndex:
    """Scans watched targets and remembers the discovery order of the last scan."""

    def __init__(
        self,
        root: Path,
        directories: Iterable[str] = (".",),
        extra_files: Iterable[str] = (),
        exclude_patterns: Iterable[str] = (),
    ) -> None:
        self._root = root.resolve()
        self._directories = tuple(directories)
        self._extra_files = tuple(extra_files)
        self._exclusion_list: list[str] = list(exclude_patterns)
        self._exclusions: re.Pattern[str] | None = None
        self._compiled = False
        self._order: tuple[str, ...] = ()
        self._known: frozenset[str] = frozenset()

    @property
    def root(self) -> Path:
        return self._root

    def add_exception(self, pattern: str) -> None:
        """Exclude paths matching pattern. Only valid before the first scan."""
        self._ensure_editable()
        self._exclusion_list.append(pattern)

    def remove_exception(self, pattern: str) -> None:
        """Remove a previously added exclusion. Only valid before the first scan."""
        self._ensure_editable()
        if pattern in self._exclusion_list:
            self._exclusion_list.remove(pattern)

    def clear_exceptions(self) -> None:
        """Drop every exclusion. Only valid before the first scan."""
        self._ensure_editable()
        self._exclusion_list.clear()

    def exclusion_patterns(self) -> tuple[str, ...]:
        return tuple(self._exclusion_list)

    def exclusions(self) -> re.Pattern[str] | None:
        """Return the compiled exclusion regex, or None when nothing is excluded."""
        if not self._compiled:
            if self._exclusion_list:
                joined = "|".join(f"(?:{pattern})" for pattern in self._exclusion_list)
                self._exclusions = re.compile(joined)
            self._compiled = True
        return self._exclusions

    def scan(self) -> dict[str, int]:
        """Map every watched file to its mtime and rebuild the known-path order."""
        exclusions = self.exclusions()
        result: dict[str, int] = {}
        order: list[str] = []
        for target in (*self._directories, *self._extra_files):
            found = self._scan_target(target, exclusions)
            for record in sorted(found, key=lambda item: item.path):
                if record.path in result:
                    continue
                result[record.path] = record.mtime_ns
                order.append(record.path)
        self._order = tuple(order)
        self._known = frozenset(order)
        return result

    def known_paths(self) -> tuple[str, ...]:
        """Return paths from the last scan in stable discovery order."""
        return self._order

    def is_known(self, path: str) -> bool:
        return path in self._known

    def files_matching(self, pattern: str | re.Pattern[str]) -> list[str]:
        """Return known paths matching pattern, in discovery order."""
        regex = re.compile(pattern)
        return [path for path in self._order if regex.search(path)]

    def _ensure_editable(self) -> None:
        if self._compiled:
            raise ExclusionsCompiledError("Exclusions are already compiled; edit them before scanning.")

    def _relative(self, full_path: Path) -> str:
        if full_path.is_relative_to(self._root):
            return full_path.relative_to(self._root).as_posix()
        return full_path.as_posix()

    def _scan_target(
        self, target: str, exclusions: re.Pattern[str] | None
    ) -> list[FileRecord]:
        """Walk one target with pruning; a single file target yields at most one record."""
        start = Path(target)
        if not start.is_absolute():
            start = self._root / start
        if start.is_file():
            record = self._record(start, exclusions)
            return [record] if record is not None else []
        records: list[FileRecord] = []
        stack: list[Path] = [start]
        while stack:
            current = stack.pop()
            try:
                with os.scandir(current) as entries:
                    ordered_entries = sorted(entries, key=lambda item: item.name)
            except OSError:
                continue
            for entry in reversed(ordered_entries):
                full_path = Path(entry.path)
                if entry.is_dir(follow_symlinks=False):
                    relative = self._relative(full_path)
                    if exclusions is not None and exclusions.search(relative):
                        continue
                    stack.append(full_path)
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
                record = self._record(full_path, exclusions)
                if record is not None:
                    records.append(record)
        return records

    def _record(self, full_path: Path, exclusions: re.Pattern[str] | None) -> FileRecord | None:
        relative = self._relative(full_path)
        if exclusions is not None and exclusions.search(relative):
            return None
        if ARTIFACT_PATTERN.search(relative):
            return None
        try:
            stat = full_path.stat()
        except OSError:
            # Vanished between listing and stat; the editor is mid-save.
            return None
        return FileRecord(path=relative, mtime_ns=stat.st_mtime_ns)


def detect_changes(files: dict[str, int], watermark: int) -> ChangeSet:
    """Select files newer than watermark; advance it to the newest mtime seen."""
    updated = {path: mtime for path, mtime in files.items() if mtime > watermark}
    if not updated:
        return ChangeSet(updated={}, watermark=watermark)
    return ChangeSet(updated=updated, watermark=max(files.values()))
