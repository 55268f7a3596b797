"""The red/green/wait cycle that drives the daemon."""

from __future__ import annotations

import enum
import logging
import signal
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

from redgreen.commands import CommandBuilder
from redgreen.config import DaemonConfig
from redgreen.hooks import HookRegistry
from redgreen.index import EPOCH_NS, FileIndex, detect_changes
from redgreen.ledger import FailureLedger
from redgreen.mapping import MappingResolver
from redgreen.server import RunProgress

LOGGER = logging.getLogger(__name__)

WAIT_SLICE_SECONDS = 0.05


class RunState(enum.Enum):
    DISCOVERING = "discovering"
    EXECUTING = "executing"
    AWAITING_CHANGES = "awaiting-changes"
    INTERRUPTED = "interrupted"
    QUITTING = "quitting"


class CancellationToken:
    """Interrupt counter written by the SIGINT handler and polled by the loop.

    Setting only increments an integer, so it is safe from signal context.
    """

    def __init__(self) -> None:
        self._count = 0

    def set(self) -> None:
        self._count += 1

    def is_set(self) -> bool:
        return self._count > 0

    def consume(self) -> int:
        """Return the number of pending interrupts and clear them."""
        count = self._count
        self._count -= count
        return count

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds, returning early once an interrupt arrives."""
        deadline = time.monotonic() + timeout
        while not self.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(WAIT_SLICE_SECONDS, remaining))
        return True


class Launcher(Protocol):
    def run(self, command: str, cancel: CancellationToken) -> int | None: ...


class ResultEndpoint(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def progress(self, run_id: int) -> RunProgress: ...


class RunLoop:
    """State machine over discovery, execution, waiting and interruption."""

    def __init__(
        self,
        config: DaemonConfig,
        index: FileIndex,
        resolver: MappingResolver,
        ledger: FailureLedger,
        builder: CommandBuilder,
        launcher: Launcher,
        server: ResultEndpoint,
        hooks: HookRegistry | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        self._config = config
        self._index = index
        self._resolver = resolver
        self._ledger = ledger
        self._builder = builder
        self._launcher = launcher
        self._server = server
        self._hooks = hooks if hooks is not None else HookRegistry()
        self._cancel = cancel if cancel is not None else CancellationToken()
        self._state = RunState.DISCOVERING
        self._watermark = EPOCH_NS
        self._interrupted = False
        self._needs_verification = False
        self._run_id = 0
        self._last_command: str | None = None
        self._handlers: dict[RunState, Callable[[], RunState]] = {
            RunState.DISCOVERING: self._discover,
            RunState.EXECUTING: self._execute,
            RunState.AWAITING_CHANGES: self._await_changes,
            RunState.INTERRUPTED: self._handle_interrupt,
        }

    @property
    def config(self) -> DaemonConfig:
        return self._config

    @property
    def index(self) -> FileIndex:
        return self._index

    @property
    def resolver(self) -> MappingResolver:
        return self._resolver

    @property
    def ledger(self) -> FailureLedger:
        return self._ledger

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks

    @property
    def cancel(self) -> CancellationToken:
        return self._cancel

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def watermark(self) -> int:
        return self._watermark

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    @property
    def needs_verification(self) -> bool:
        return self._needs_verification

    @property
    def last_command(self) -> str | None:
        return self._last_command

    def run(self) -> None:
        """Run until quitting. Always stops the server and restores SIGINT handling."""
        previous_handler: Any = None
        installed = False
        try:
            self._fire("initialize")
            self._fire("post_initialize")
            self._server.start()
            self.reset()
            if threading.current_thread() is threading.main_thread():
                previous_handler = signal.signal(signal.SIGINT, self._on_sigint)
                installed = True
            if not self._config.run.full_after_start:
                self._watermark = time.time_ns()
            while self._state is not RunState.QUITTING:
                self.step()
            self._fire("quit")
        except Exception as error:
            if self._fire("died", error):
                LOGGER.warning("Stopped after an error handled by a died hook: %s", error)
                return
            raise
        finally:
            self._server.stop()
            if installed:
                signal.signal(signal.SIGINT, previous_handler)

    def step(self) -> RunState:
        """Perform one transition and return the new state."""
        handler = self._handlers.get(self._state)
        if handler is None:
            return self._state
        self._state = handler()
        return self._state

    def reset(self) -> None:
        """Forget every failure and the watermark so the next poll sees every file."""
        self._ledger.clear()
        self._watermark = EPOCH_NS
        self._needs_verification = False
        self._fire("reset")

    def _fire(self, name: str, *args: object) -> bool:
        return self._hooks.fire(name, self, *args)

    def _on_sigint(self, signum: int, frame: object) -> None:
        self._cancel.set()

    def _discover(self) -> RunState:
        if self._cancel.is_set():
            return RunState.INTERRUPTED
        changes = detect_changes(self._index.scan(), self._watermark)
        if changes.is_empty:
            return RunState.AWAITING_CHANGES
        if self._watermark != EPOCH_NS:
            for path in changes.updated:
                LOGGER.debug("Updated: %s", path)
            self._fire("updated", dict(changes.updated))
        for path in changes.updated:
            for test_file in self._resolver.resolve(path):
                self._ledger.ensure_tracked(test_file)
        self._watermark = changes.watermark
        return RunState.EXECUTING

    def _execute(self) -> RunState:
        snapshot = self._ledger.snapshot()
        self._run_id += 1
        run_id = self._run_id
        commands = self._builder.build(snapshot, run_id)
        if not commands:
            return RunState.AWAITING_CHANGES
        if any(classes for classes in snapshot.values()):
            self._needs_verification = True

        command = self._builder.join(commands)
        self._last_command = command
        if self._config.debug:
            LOGGER.info("Ledger before run %d: %s", run_id, snapshot)
        self._fire("run_command", command)
        LOGGER.info("%s", command)

        exit_status = self._launcher.run(command, self._cancel)
        if exit_status is None:
            return RunState.INTERRUPTED

        finished = self._server.progress(run_id).finished
        if finished < len(commands):
            LOGGER.warning(
                "Test process exited with status %d after %d of %d sessions finished; "
                "re-running the planned files",
                exit_status,
                finished,
                len(commands),
            )
            for file in snapshot:
                self._ledger.ensure_tracked(file)
        self._fire("ran_command", command, exit_status)

        if not self._ledger.is_all_good():
            self._needs_verification = True
            self._fire("red")
            return RunState.DISCOVERING

        self._fire("green")
        if self._needs_verification and self._config.run.full_after_failed:
            LOGGER.info("Green again; running the full suite")
            self.reset()
            return RunState.DISCOVERING
        self._fire("all_good")
        self._interrupted = False
        return RunState.AWAITING_CHANGES

    def _await_changes(self) -> RunState:
        self._fire("waiting")
        while True:
            if self._cancel.is_set():
                return RunState.INTERRUPTED
            files = self._index.scan()
            if any(mtime > self._watermark for mtime in files.values()):
                return RunState.DISCOVERING
            self._cancel.wait(self._config.watch.sleep_seconds)

    def _handle_interrupt(self) -> RunState:
        pending = self._cancel.consume()
        if self._interrupted or pending >= 2:
            return RunState.QUITTING
        if self._fire("interrupt"):
            self.reset()
            return RunState.DISCOVERING
        LOGGER.warning("Interrupt a second time to quit")
        self._interrupted = True
        if self._cancel.wait(self._config.run.interrupt_grace_seconds):
            self._cancel.consume()
            return RunState.QUITTING
        self.reset()
        return RunState.DISCOVERING
