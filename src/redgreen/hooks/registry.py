"""Named extension points dispatched in registration order."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

HookCallback = Callable[..., object]

ALL_HOOKS: tuple[str, ...] = (
    "all_good",
    "died",
    "green",
    "initialize",
    "interrupt",
    "post_initialize",
    "quit",
    "ran_command",
    "red",
    "reset",
    "run_command",
    "updated",
    "waiting",
)


@dataclass(slots=True, frozen=True)
class HookRegistrationError(Exception):
    """Represents registration against a hook name the run loop never fires."""

    code: str
    message: str


@dataclass(slots=True)
class HookRegistry:
    """In-memory hook table preserving deterministic insertion order."""

    _callbacks: dict[str, list[HookCallback]] = field(default_factory=dict)

    def add(self, name: str, callback: HookCallback) -> None:
        """Register a callback for a known hook name."""
        if name not in ALL_HOOKS:
            raise HookRegistrationError(code="UNKNOWN_HOOK", message=f"Unknown hook: {name}")
        self._callbacks.setdefault(name, []).append(callback)

    def callbacks(self, name: str) -> tuple[HookCallback, ...]:
        return tuple(self._callbacks.get(name, ()))

    def names(self) -> tuple[str, ...]:
        """Return hook names with at least one callback, in registration order."""
        return tuple(name for name, callbacks in self._callbacks.items() if callbacks)

    def fire(self, name: str, *args: object) -> bool:
        """Call callbacks in order until one returns truthy; report whether one did."""
        for callback in self._callbacks.get(name, ()):
            if callback(*args):
                return True
        return False
