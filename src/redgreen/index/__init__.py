"""File scanning and change detection package."""

from .discovery import ARTIFACT_PATTERN, ExclusionsCompiledError, FileIndex, detect_changes
from .models import EPOCH_NS, ChangeSet, FileRecord

__all__ = [
    "ARTIFACT_PATTERN",
    "ChangeSet",
    "EPOCH_NS",
    "ExclusionsCompiledError",
    "FileIndex",
    "FileRecord",
    "detect_changes",
]
