from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest


@pytest.fixture(autouse=True)
def restore_package_logger() -> Iterator[None]:
    """Undo configure_logging() so handlers never outlive a captured stream."""
    logger = logging.getLogger("redgreen")
    handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
