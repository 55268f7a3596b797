"""Baseline mapping rules for a conventional Python layout."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Final

from redgreen.mapping.rules import MappingResolver

TEST_FILE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(^|/)tests?/(?:.*/)?(test_[^/]*|[^/]*_test)\.py$"
)
CONFTEST_PATTERN: Final[str] = r"^(?P<prefix>(?:.*/)?)conftest\.py$"
IMPLEMENTATION_PATTERN: Final[str] = r"^(?!(?:.*/)?tests?/).*\.py$"


def register_default_rules(
    resolver: MappingResolver, files_matching: Callable[[str], list[str]]
) -> None:
    """Register conftest, test-file, and implementation-file rules in that order."""

    def conftest_tests(_: str, match: re.Match[str]) -> list[str]:
        prefix = re.escape(match.group("prefix"))
        return [path for path in files_matching(f"^{prefix}") if TEST_FILE_PATTERN.search(path)]

    def itself(path: str, _: re.Match[str]) -> str:
        return path

    def implementation_tests(path: str, _: re.Match[str]) -> list[str]:
        stem = path.rsplit("/", 1)[-1][: -len(".py")]
        # test_my_widget.py, test_mywidget.py and my_widget_test.py all cover my_widget.py
        possible = re.escape(stem).replace("_", "_?")
        candidates = files_matching(rf"(^|/)tests?/.*{possible}(?:_test)?\.py$")
        return [candidate for candidate in candidates if TEST_FILE_PATTERN.search(candidate)]

    resolver.add_rule(CONFTEST_PATTERN, conftest_tests)
    resolver.add_rule(TEST_FILE_PATTERN, itself)
    resolver.add_rule(IMPLEMENTATION_PATTERN, implementation_tests)
