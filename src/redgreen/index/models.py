"""Typed models for file index state."""

from __future__ import annotations

from dataclasses import dataclass

EPOCH_NS = 0


@dataclass(slots=True, frozen=True)
class FileRecord:
    """Represents one watched file as seen by a single scan."""

    path: str
    mtime_ns: int


@dataclass(slots=True, frozen=True)
class ChangeSet:
    """Files newer than a watermark, plus the watermark to advance to."""

    updated: dict[str, int]
    watermark: int

    @property
    def is_empty(self) -> bool:
        return not self.updated
