"""Ordered mapping rules from changed files to the test files that exercise them."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)

Resolver = Callable[[str, re.Match[str]], object]


@dataclass(slots=True, frozen=True)
class MappingRule:
    """A compiled path pattern and the function that turns a match into test paths."""

    pattern: re.Pattern[str]
    resolve: Resolver


@dataclass(slots=True)
class MappingResolver:
    """Resolves a changed path with the first rule yielding known test files.

    Rules are edited during setup only; resolution never mutates them.
    """

    is_known: Callable[[str], bool]
    _rules: list[MappingRule] = field(default_factory=list)

    def add_rule(
        self, pattern: str | re.Pattern[str], resolver: Resolver, *, prepend: bool = False
    ) -> None:
        """Register a rule at the end, or at the front when prepend is set."""
        rule = MappingRule(pattern=re.compile(pattern), resolve=resolver)
        if prepend:
            self._rules.insert(0, rule)
            return
        self._rules.append(rule)

    def remove_rule(self, pattern: str | re.Pattern[str]) -> None:
        """Remove every rule registered with the same pattern source."""
        source = pattern.pattern if isinstance(pattern, re.Pattern) else pattern
        self._rules = [rule for rule in self._rules if rule.pattern.pattern != source]

    def clear_rules(self) -> None:
        """Remove all rules. Nothing maps to a test until a rule is added again."""
        self._rules.clear()

    def rules(self) -> tuple[MappingRule, ...]:
        return tuple(self._rules)

    def resolve(self, path: str) -> tuple[str, ...]:
        """Return sorted, de-duplicated known test paths for path; empty when unmapped."""
        for rule in self._rules:
            match = rule.pattern.search(path)
            if match is None:
                continue
            candidates = sorted(set(_flatten(rule.resolve(path, match))))
            result = tuple(candidate for candidate in candidates if self.is_known(candidate))
            if result:
                LOGGER.debug("Test files for %s: %s", path, ", ".join(result))
                return result
        LOGGER.debug("No tests matched %s", path)
        return ()


def _flatten(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, os.PathLike):
        return [os.fspath(value).replace("\\", "/")]
    if isinstance(value, Iterable):
        output: list[str] = []
        for item in value:
            output.extend(_flatten(item))
        return output
    raise TypeError(f"Mapping resolver returned unsupported value: {value!r}")
