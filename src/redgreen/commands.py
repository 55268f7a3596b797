"""Shell commands that run tracked test files under pytest."""

from __future__ import annotations

import os
import random
import re
import shlex
import subprocess
from collections.abc import Callable, Mapping, Sequence
from typing import Final

from redgreen.config import RunConfig
from redgreen.ledger import LedgerSnapshot

PLUGIN_MODULE: Final[str] = "redgreen.pytest_plugin"
SERVER_OPTION: Final[str] = "--redgreen-server"
RUN_OPTION: Final[str] = "--redgreen-run"
SELECT_OPTION: Final[str] = "--redgreen-select"

WINDOWS: Final[bool] = os.name == "nt"
COMMAND_SEPARATOR: Final[str] = "&" if WINDOWS else ";"


def quote_args(args: Sequence[str]) -> str:
    """Quote args for the platform shell."""
    if WINDOWS:
        return subprocess.list2cmdline(list(args))
    return shlex.join(args)


def selection_pattern(partial: Sequence[tuple[str, Mapping[str, Sequence[str]]]]) -> str:
    """Combine failing Class#method pairs into one alternation pattern."""
    parts: list[str] = []
    for _, classes in partial:
        for class_name, methods in classes.items():
            alternation = "|".join(re.escape(method) for method in methods)
            part = f"{re.escape(class_name)}#(?:{alternation})"
            if part not in parts:
                parts.append(part)
    return "|".join(parts)


class CommandBuilder:
    """Turns a ledger snapshot into a whole-file run and a targeted re-run.

    File order is shuffled on every call with a freshly seeded generator so
    order-dependent failures surface over time.
    """

    def __init__(
        self,
        run_config: RunConfig,
        server_token: str,
        random_factory: Callable[[], random.Random] = random.Random,
    ) -> None:
        self._run_config = run_config
        self._server_token = server_token
        self._random_factory = random_factory

    def build(self, ledger: LedgerSnapshot, run_id: int) -> tuple[str, ...]:
        """Return zero, one, or two commands for the tracked files."""
        ordered = list(ledger.items())
        self._random_factory().shuffle(ordered)
        full = [file for file, classes in ordered if not classes]
        partial = [(file, classes) for file, classes in ordered if classes]

        commands: list[str] = []
        if full:
            commands.append(self._command(full, run_id))
        if partial:
            files = sorted(file for file, _ in partial)
            commands.append(self._command(files, run_id, select=selection_pattern(partial)))
        return tuple(commands)

    @staticmethod
    def join(commands: Sequence[str]) -> str:
        return f"{COMMAND_SEPARATOR} ".join(commands)

    def _command(self, files: Sequence[str], run_id: int, select: str | None = None) -> str:
        args = [
            self._run_config.python,
            "-m",
            "pytest",
            "-p",
            PLUGIN_MODULE,
            SERVER_OPTION,
            self._server_token,
            RUN_OPTION,
            str(run_id),
            *self._run_config.pytest_args,
        ]
        if select is not None:
            args.extend([SELECT_OPTION, select])
        args.extend(files)
        return f"{self._run_config.prefix}{quote_args(args)}"
