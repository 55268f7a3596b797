"""Per-file, per-class record of failing test methods."""

from __future__ import annotations

import threading

LedgerSnapshot = dict[str, dict[str, tuple[str, ...]]]


class FailureLedger:
    """Tracks which test files need running and which of their methods fail.

    A tracked file with no classes means "run the whole file". A class entry
    lists the methods currently known to fail. Every operation holds the
    internal lock; the run loop and result server threads share one instance.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, dict[str, set[str]]] = {}
        self._tainted = False

    @property
    def tainted(self) -> bool:
        with self._lock:
            return self._tainted

    def ensure_tracked(self, file: str) -> None:
        """Track file for the next run without recording any failure."""
        with self._lock:
            self._entries.setdefault(file, {})

    def record_failure(self, file: str, class_name: str, method_name: str) -> None:
        """Record one failing method; repeated reports are harmless."""
        with self._lock:
            classes = self._entries.setdefault(file, {})
            classes.setdefault(class_name, set()).add(method_name)
            self._tainted = True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tainted = False

    def is_all_good(self) -> bool:
        with self._lock:
            return not self._entries

    def tracked_files(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._entries)

    def failure_count(self) -> int:
        with self._lock:
            return sum(
                len(methods) for classes in self._entries.values() for methods in classes.values()
            )

    def snapshot(self) -> LedgerSnapshot:
        """Return a copy safe to read while reports keep arriving."""
        with self._lock:
            return {
                file: {name: tuple(sorted(methods)) for name, methods in classes.items()}
                for file, classes in self._entries.items()
            }
