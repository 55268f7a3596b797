from __future__ import annotations

import os
import signal
import threading
import time
from pathlib import Path

import pytest
from runloop_support import HarnessFactory, write_files

from redgreen.hooks import HookRegistry
from redgreen.index import EPOCH_NS
from redgreen.runloop import CancellationToken, RunState

pytestmark = pytest.mark.skipif(os.name == "nt", reason="POSIX shell commands")


def test_two_interrupts_quit_without_spawning(tmp_path: Path, make_harness: HarnessFactory) -> None:
    write_files(tmp_path, "lib/a.py", "tests/test_a.py")
    harness = make_harness()
    harness.loop.cancel.set()
    harness.loop.cancel.set()

    assert harness.loop.step() is RunState.INTERRUPTED
    assert harness.loop.step() is RunState.QUITTING
    assert harness.launcher.commands == []


def test_first_interrupt_resets_and_arms_quit(tmp_path: Path, make_harness: HarnessFactory) -> None:
    write_files(tmp_path, "lib/a.py", "tests/test_a.py")
    harness = make_harness()
    loop = harness.loop

    def interrupted_run(command: str, cancel: CancellationToken) -> None:
        cancel.set()
        return None

    harness.launcher.outcomes.append(interrupted_run)
    loop.step()
    assert loop.step() is RunState.INTERRUPTED
    assert loop.step() is RunState.DISCOVERING
    assert loop.interrupted is True
    assert loop.watermark == EPOCH_NS
    assert loop.ledger.is_all_good()
    assert harness.fired("ran_command") == []

    loop.cancel.set()
    assert loop.step() is RunState.INTERRUPTED
    assert loop.step() is RunState.QUITTING
    assert len(harness.launcher.commands) == 1


def test_green_convergence_disarms_interrupt(tmp_path: Path, make_harness: HarnessFactory) -> None:
    write_files(tmp_path, "lib/a.py", "tests/test_a.py")
    harness = make_harness()
    loop = harness.loop
    loop.cancel.set()

    assert loop.step() is RunState.INTERRUPTED
    assert loop.step() is RunState.DISCOVERING
    assert loop.interrupted is True
    assert loop.step() is RunState.EXECUTING
    assert loop.step() is RunState.AWAITING_CHANGES
    assert loop.interrupted is False

    loop.cancel.set()
    assert loop.step() is RunState.INTERRUPTED
    assert loop.step() is RunState.DISCOVERING


def test_second_interrupt_within_grace_quits(tmp_path: Path, make_harness: HarnessFactory) -> None:
    write_files(tmp_path, "lib/a.py")
    harness = make_harness(interrupt_grace_seconds=5.0)
    loop = harness.loop
    loop.cancel.set()
    assert loop.step() is RunState.INTERRUPTED

    timer = threading.Timer(0.05, loop.cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        assert loop.step() is RunState.QUITTING
    finally:
        timer.cancel()

    assert time.monotonic() - started < 5.0
    assert harness.fired("reset") == []


def test_handled_interrupt_hook_skips_arming(tmp_path: Path, make_harness: HarnessFactory) -> None:
    write_files(tmp_path, "lib/a.py")
    hooks = HookRegistry()
    hooks.add("interrupt", lambda loop: True)
    harness = make_harness(hooks=hooks)
    loop = harness.loop
    loop.cancel.set()

    loop.step()
    assert loop.step() is RunState.DISCOVERING
    assert loop.interrupted is False
    assert harness.fired("reset") == [()]


def test_died_hook_handles_unexpected_errors(tmp_path: Path, make_harness: HarnessFactory) -> None:
    write_files(tmp_path, "lib/a.py", "tests/test_a.py")
    seen: list[BaseException] = []
    hooks = HookRegistry()
    hooks.add("died", lambda loop, error: seen.append(error) or True)
    harness = make_harness(hooks=hooks)

    def explode(command: str, cancel: CancellationToken) -> int:
        raise RuntimeError("boom")

    harness.launcher.outcomes.append(explode)

    harness.loop.run()

    assert [str(error) for error in seen] == ["boom"]
    assert harness.server.stop_calls == 1


def test_unhandled_error_propagates_after_cleanup(
    tmp_path: Path, make_harness: HarnessFactory
) -> None:
    write_files(tmp_path, "lib/a.py", "tests/test_a.py")
    harness = make_harness()
    previous = signal.getsignal(signal.SIGINT)

    def explode(command: str, cancel: CancellationToken) -> int:
        raise RuntimeError("boom")

    harness.launcher.outcomes.append(explode)

    with pytest.raises(RuntimeError, match="boom"):
        harness.loop.run()

    assert harness.server.stop_calls == 1
    assert signal.getsignal(signal.SIGINT) is previous


def test_sigint_handler_sets_cancellation(tmp_path: Path, make_harness: HarnessFactory) -> None:
    write_files(tmp_path, "lib/a.py")
    hooks = HookRegistry()

    def interrupt_twice(loop: object) -> None:
        os.kill(os.getpid(), signal.SIGINT)
        os.kill(os.getpid(), signal.SIGINT)

    hooks.add("waiting", interrupt_twice)
    harness = make_harness(hooks=hooks)

    harness.loop.run()

    assert harness.loop.state is RunState.QUITTING
    assert harness.names()[-1] == "quit"


def test_cancellation_token_wait_and_consume() -> None:
    token = CancellationToken()
    started = time.monotonic()

    assert token.wait(0.05) is False
    assert time.monotonic() - started >= 0.04

    token.set()
    token.set()
    assert token.wait(10.0) is True
    assert token.consume() == 2
    assert token.is_set() is False


class _SignalDuringConsume(CancellationToken):
    """Delivers one extra interrupt right after the pending count is read."""

    def __init__(self) -> None:
        self._value = 0
        self.armed = False
        super().__init__()

    @property
    def _count(self) -> int:
        value = self._value
        if self.armed:
            self.armed = False
            self._value += 1
        return value

    @_count.setter
    def _count(self, value: int) -> None:
        self._value = value


def test_interrupt_arriving_during_consume_is_kept() -> None:
    token = _SignalDuringConsume()
    token.set()
    token.armed = True

    assert token.consume() == 1
    assert token.is_set() is True
    assert token.consume() == 1
    assert token.is_set() is False
