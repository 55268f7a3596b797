"""Spawning and cancelling test commands."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.1


class Cancellation(Protocol):
    def is_set(self) -> bool: ...


def _popen_group_kwargs() -> dict[str, Any]:
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_group(proc: subprocess.Popen[bytes]) -> None:
    if proc.poll() is not None:
        return
    if os.name == "nt":
        proc.kill()
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        return


class ProcessLauncher:
    """Runs a shell command in its own process group and waits for it.

    The test process inherits the terminal, so its output reaches the
    operator unchanged.
    """

    def __init__(self, cwd: str | os.PathLike[str]) -> None:
        self._cwd = cwd

    def run(self, command: str, cancel: Cancellation) -> int | None:
        """Return the exit status, or None when the run was cancelled."""
        proc = subprocess.Popen(command, shell=True, cwd=self._cwd, **_popen_group_kwargs())
        while True:
            try:
                return proc.wait(timeout=POLL_INTERVAL_SECONDS)
            except subprocess.TimeoutExpired:
                pass
            if cancel.is_set():
                LOGGER.debug("Killing test process group %d", proc.pid)
                _kill_group(proc)
                proc.wait()
                return None
