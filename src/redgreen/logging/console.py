"""Operator-facing diagnostic logging on stderr."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

LOGGER_NAME = "redgreen"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    debug: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Attach a single stderr handler to the package logger and pick its level.

    Verbose and debug show per-file mapping detail; quiet keeps warnings and
    errors only, which also hides the echo of each test command.
    """
    logger = logging.getLogger(LOGGER_NAME)
    level = logging.INFO
    if verbose or debug:
        level = logging.DEBUG
    if quiet:
        level = logging.WARNING
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
