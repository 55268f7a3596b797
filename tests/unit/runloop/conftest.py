from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest
from runloop_support import Harness, HarnessFactory, OfflineServer, ScriptedLauncher, child

from redgreen.commands import CommandBuilder
from redgreen.config import default_config
from redgreen.hooks import HookRegistry
from redgreen.index import FileIndex
from redgreen.ledger import FailureLedger
from redgreen.mapping import MappingResolver, register_default_rules
from redgreen.runloop import RunLoop


@pytest.fixture
def make_harness(tmp_path: Path) -> HarnessFactory:
    def factory(
        *,
        full_after_start: bool = True,
        full_after_failed: bool = True,
        interrupt_grace_seconds: float = 0.01,
        hooks: HookRegistry | None = None,
    ) -> Harness:
        base = default_config(tmp_path)
        config = dataclasses.replace(
            base,
            watch=dataclasses.replace(base.watch, sleep_seconds=0.01),
            run=dataclasses.replace(
                base.run,
                python="python",
                full_after_start=full_after_start,
                full_after_failed=full_after_failed,
                interrupt_grace_seconds=interrupt_grace_seconds,
            ),
        )
        index = FileIndex(tmp_path, exclude_patterns=config.watch.exclude_patterns)
        resolver = MappingResolver(is_known=index.is_known)
        register_default_rules(resolver, index.files_matching)
        ledger = FailureLedger()
        server = OfflineServer(tmp_path, ledger)
        launcher = ScriptedLauncher(fallback=child(server))
        registry = hooks if hooks is not None else HookRegistry()
        events: list[tuple[str, tuple[object, ...]]] = []
        for name in (
            "initialize",
            "post_initialize",
            "updated",
            "run_command",
            "ran_command",
            "red",
            "green",
            "all_good",
            "waiting",
            "interrupt",
            "reset",
            "quit",
        ):
            registry.add(name, lambda loop, *args, _name=name: events.append((_name, args)))
        loop = RunLoop(
            config=config,
            index=index,
            resolver=resolver,
            ledger=ledger,
            builder=CommandBuilder(config.run, server.token),
            launcher=launcher,
            server=server,
            hooks=registry,
        )
        return Harness(loop=loop, server=server, launcher=launcher, events=events)

    return factory
