"""Structured and console logging utilities."""

from .console import configure_logging
from .journal import EventJournal, JournalEvent, sanitize_params, utc_timestamp

__all__ = ["EventJournal", "JournalEvent", "configure_logging", "sanitize_params", "utc_timestamp"]
