"""Continuous-testing daemon: watch, map changes to tests, re-run until green."""

__version__ = "0.1.0"
