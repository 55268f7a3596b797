from __future__ import annotations

import io
import logging

from redgreen.logging import configure_logging


def test_default_level_is_info_with_single_handler() -> None:
    stream = io.StringIO()

    logger = configure_logging(stream=stream)
    configure_logging(stream=stream)

    assert logger.name == "redgreen"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    logging.getLogger("redgreen.runloop").info("python -m pytest tests")
    logging.getLogger("redgreen.mapping.rules").debug("No tests matched README.md")
    output = stream.getvalue()
    assert "python -m pytest tests" in output
    assert "No tests matched" not in output


def test_verbose_and_debug_enable_debug_level() -> None:
    assert configure_logging(verbose=True, stream=io.StringIO()).level == logging.DEBUG
    assert configure_logging(debug=True, stream=io.StringIO()).level == logging.DEBUG


def test_quiet_hides_command_echo_but_keeps_warnings() -> None:
    stream = io.StringIO()
    configure_logging(quiet=True, stream=stream)

    logging.getLogger("redgreen.runloop").info("python -m pytest tests")
    logging.getLogger("redgreen.runloop").warning("Interrupt a second time to quit")

    output = stream.getvalue()
    assert "python -m pytest" not in output
    assert "Interrupt a second time to quit" in output
