"""Command-line entrypoint and wiring of the daemon's components."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import TextIO

from redgreen.commands import CommandBuilder
from redgreen.config import CliOverrides, load_effective_config
from redgreen.hooks import HookRegistry
from redgreen.index import FileIndex
from redgreen.ledger import FailureLedger
from redgreen.logging import EventJournal, configure_logging
from redgreen.mapping import TEST_FILE_PATTERN, MappingResolver, register_default_rules
from redgreen.paths import to_project_relative
from redgreen.process import ProcessLauncher
from redgreen.runloop import RunLoop
from redgreen.server import ResultServer, ServerAddressInUseError

LOGGER = logging.getLogger(__name__)

EVENTS_FILE_NAME = "events.jsonl"
EXIT_DIED = 1
EXIT_CONFIG_ERROR = 2


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for daemon startup configuration."""
    parser = argparse.ArgumentParser(
        prog="redgreen",
        description="Watch a project and re-run affected tests until they pass.",
    )
    parser.add_argument("directories", nargs="*", help="Directories to watch (default: .)")
    parser.add_argument("--project-root", required=False, default=".")
    parser.add_argument("--data-dir", required=False, default=None)
    parser.add_argument("-r", "--rc", dest="config_path", required=False, default=None)
    parser.add_argument("--sleep", dest="sleep_seconds", type=float, required=False, default=None)
    parser.add_argument("--no-full-after-start", action="store_true")
    parser.add_argument("--no-full-after-failed", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("-q", "--quiet", action="store_true")
    parser.add_argument("-d", "--debug", action="store_true")
    parser.add_argument(
        "--events",
        type=int,
        metavar="N",
        required=False,
        default=None,
        help="Print the last N result-server events and exit.",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> CliOverrides:
    return CliOverrides(
        config_path=Path(args.config_path).resolve() if args.config_path is not None else None,
        data_dir=Path(args.data_dir).resolve() if args.data_dir is not None else None,
        directories=tuple(args.directories) or None,
        sleep_seconds=args.sleep_seconds,
        full_after_start=False if args.no_full_after_start else None,
        full_after_failed=False if args.no_full_after_failed else None,
        verbose=args.verbose or None,
        quiet=args.quiet or None,
        debug=args.debug or None,
    )


def create_daemon(
    project_root: str | Path, cli_overrides: CliOverrides | None = None
) -> RunLoop:
    """Create a run loop with every component wired from the effective config."""
    config = load_effective_config(Path(project_root).resolve(), overrides=cli_overrides)
    exclude_patterns = list(config.watch.exclude_patterns)
    data_dir = to_project_relative(config.project_root, str(config.data_dir))
    if not Path(data_dir).is_absolute():
        # Journal writes must not look like source edits.
        exclude_patterns.append(f"^{re.escape(data_dir)}$")

    index = FileIndex(
        config.project_root,
        directories=config.watch.directories,
        extra_files=config.watch.extra_files,
        exclude_patterns=exclude_patterns,
    )
    resolver = MappingResolver(is_known=index.is_known)
    register_default_rules(resolver, index.files_matching)
    ledger = FailureLedger()
    token = str(os.getpid())
    journal = EventJournal(config.data_dir / EVENTS_FILE_NAME)
    server = ResultServer(config.project_root, ledger, token, journal=journal)
    hooks = HookRegistry()
    if config.debug:
        hooks.add("post_initialize", log_known_tests)
    return RunLoop(
        config=config,
        index=index,
        resolver=resolver,
        ledger=ledger,
        builder=CommandBuilder(config.run, token),
        launcher=ProcessLauncher(config.project_root),
        server=server,
        hooks=hooks,
    )


def log_known_tests(loop: RunLoop) -> bool:
    """Debug dump of the test files the default rules can map to."""
    loop.index.scan()
    tests = [path for path in loop.index.known_paths() if TEST_FILE_PATTERN.search(path)]
    LOGGER.info("Known test files (%d):", len(tests))
    for path in tests:
        LOGGER.info("  %s", path)
    return False


def print_events(data_dir: Path, limit: int, out_stream: TextIO) -> None:
    journal = EventJournal(data_dir / EVENTS_FILE_NAME)
    for entry in journal.read(limit=limit):
        out_stream.write(json.dumps(entry, sort_keys=True))
        out_stream.write("\n")


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the redgreen daemon."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet, debug=args.debug)
    try:
        loop = create_daemon(args.project_root, cli_overrides=overrides_from_args(args))
    except ValueError as error:
        LOGGER.error("Configuration error: %s", error)
        return EXIT_CONFIG_ERROR

    if args.events is not None:
        print_events(loop.config.data_dir, args.events, sys.stdout)
        return 0

    try:
        loop.run()
    except ServerAddressInUseError as error:
        LOGGER.error("%s %s", error.reason, error.hint)
        return EXIT_CONFIG_ERROR
    except Exception:
        LOGGER.exception("redgreen stopped on an unhandled error")
        return EXIT_DIED
    return 0
