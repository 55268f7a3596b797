"""pytest plugin loaded into every test process the daemon spawns.

It reports session start, each failing test, each collection error and
session end to the daemon's result server, and narrows a run to previously
failing tests when ``--redgreen-select`` is given.
"""

from __future__ import annotations

import re
from pathlib import Path

import pytest

from redgreen.client import ResultClient

REPORTER_NAME = "redgreen-reporter"


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("redgreen", "report results to a running redgreen daemon")
    group.addoption(
        "--redgreen-server",
        dest="redgreen_server",
        default=None,
        metavar="TOKEN",
        help="Token of the daemon whose result server receives reports.",
    )
    group.addoption(
        "--redgreen-run",
        dest="redgreen_run",
        type=int,
        default=0,
        metavar="N",
        help="Run id assigned by the daemon.",
    )
    group.addoption(
        "--redgreen-select",
        dest="redgreen_select",
        default=None,
        metavar="PATTERN",
        help="Only run tests whose Class#method key fully matches PATTERN.",
    )


def pytest_configure(config: pytest.Config) -> None:
    token = config.getoption("redgreen_server")
    if not token:
        return
    client = ResultClient(token)
    try:
        client.connect()
    except OSError as error:
        raise pytest.UsageError(
            f"Cannot reach the redgreen result server for token {token}: {error}"
        ) from error
    reporter = ResultReporter(client, run_id=config.getoption("redgreen_run"), rootpath=config.rootpath)
    config.pluginmanager.register(reporter, REPORTER_NAME)


def pytest_unconfigure(config: pytest.Config) -> None:
    reporter = config.pluginmanager.get_plugin(REPORTER_NAME)
    if reporter is not None:
        reporter.close()
        config.pluginmanager.unregister(reporter, REPORTER_NAME)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    pattern = config.getoption("redgreen_select")
    if not pattern:
        return
    matcher = re.compile(pattern)
    selected: list[pytest.Item] = []
    deselected: list[pytest.Item] = []
    for item in items:
        _, class_name, method_name = split_nodeid(item.nodeid)
        if matcher.fullmatch(f"{class_name}#{method_name}"):
            selected.append(item)
        else:
            deselected.append(item)
    if deselected:
        config.hook.pytest_deselected(items=deselected)
        items[:] = selected


def split_nodeid(nodeid: str) -> tuple[str, str, str]:
    """Split a node id into (file, class, method).

    Module-level tests have an empty class; nested classes are joined with dots.
    """
    parts = nodeid.split("::")
    if len(parts) == 1:
        return parts[0], "", ""
    return parts[0], ".".join(parts[1:-1]), parts[-1]


class ResultReporter:
    """Forwards session events to the result server."""

    def __init__(self, client: ResultClient, run_id: int, rootpath: Path) -> None:
        self._client = client
        self._run_id = run_id
        self._rootpath = rootpath
        self._reported: set[str] = set()

    def _absolute(self, file: str) -> str:
        return str(self._rootpath / file)

    def pytest_sessionstart(self, session: pytest.Session) -> None:
        self._client.call("start", run=self._run_id)

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        if not report.failed or report.nodeid in self._reported:
            return
        self._reported.add(report.nodeid)
        file, class_name, method_name = split_nodeid(report.nodeid)
        self._client.call(
            "report_failure",
            file=self._absolute(file),
            class_name=class_name,
            method_name=method_name,
        )

    def pytest_collectreport(self, report: pytest.CollectReport) -> None:
        if not report.failed:
            return
        file, _, _ = split_nodeid(report.nodeid)
        if not file:
            return
        self._client.call("report_error", file=self._absolute(file))

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        self._client.call("report_done", run=self._run_id, exitstatus=int(exitstatus))

    def close(self) -> None:
        self._client.close()
