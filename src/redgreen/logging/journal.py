"""Structured JSONL journal of result-server events."""

from __future__ import annotations

import json
import threading
from collections import deque
from collections.abc import Iterator
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

DEFAULT_MAX_BYTES = 5 * 1024 * 1024


@dataclass(slots=True, frozen=True)
class JournalEvent:
    """Sanitized representation of a single RPC request."""

    timestamp: str
    request_id: str
    method: str
    ok: bool
    error_code: str | None
    metadata: dict[str, object]


def utc_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp."""
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def sanitize_params(params: dict[str, object]) -> dict[str, object]:
    """Keep the identifiers that explain a report; summarize everything else."""
    sanitized: dict[str, object] = {}
    for key in sorted(params.keys()):
        value = params[key]
        if key in {"file", "class_name", "method_name"} and isinstance(value, str):
            sanitized[key] = value
            continue
        if isinstance(value, (int, float, bool)) or value is None:
            sanitized[key] = value
            continue
        if isinstance(value, str):
            sanitized[f"{key}_length"] = len(value)
            continue
        if isinstance(value, list):
            sanitized[f"{key}_type"] = "list"
            sanitized[f"{key}_length"] = len(value)
            continue
        if isinstance(value, dict):
            sanitized[f"{key}_type"] = "dict"
            sanitized[f"{key}_keys"] = sorted(str(k) for k in value.keys())
            continue
        sanitized[f"{key}_type"] = type(value).__name__
    return sanitized


class EventJournal:
    """Append-only JSONL journal with a single rotated backup and bounded reader.

    Once the live file reaches ``max_bytes`` it is renamed to ``<name>.1``
    (replacing any older backup) and a fresh file is started.
    """

    def __init__(self, path: Path, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        if max_bytes < 1:
            raise ValueError("max_bytes must be positive.")
        self._path = path
        self._max_bytes = max_bytes
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        """Return on-disk JSONL path."""
        return self._path

    @property
    def backup_path(self) -> Path:
        """Return the path the live file is rotated to."""
        return self._path.with_name(self._path.name + ".1")

    def append(self, event: JournalEvent) -> None:
        """Append an event as one JSON object per line."""
        line = json.dumps(asdict(event), sort_keys=True)
        with self._lock:
            self._rotate_if_full()
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line)
                handle.write("\n")

    def read(self, since: str | None = None, limit: int = 50) -> list[dict[str, object]]:
        """Read recent events, optionally filtered by timestamp lower bound."""
        if limit < 1:
            return []
        entries: deque[dict[str, object]] = deque(maxlen=limit)
        for record in self._records():
            if since is not None:
                ts = record.get("timestamp")
                if not isinstance(ts, str) or ts < since:
                    continue
            entries.append(record)
        return list(entries)

    def _rotate_if_full(self) -> None:
        try:
            size = self._path.stat().st_size
        except FileNotFoundError:
            return
        if size >= self._max_bytes:
            self._path.replace(self.backup_path)

    def _records(self) -> Iterator[dict[str, object]]:
        for path in (self.backup_path, self._path):
            if not path.exists():
                continue
            with path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    stripped = line.strip()
                    if not stripped:
                        continue
                    try:
                        record = json.loads(stripped)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(record, dict):
                        yield record
