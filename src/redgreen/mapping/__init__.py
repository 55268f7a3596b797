"""Changed-file to test-file mapping package."""

from .defaults import TEST_FILE_PATTERN, register_default_rules
from .rules import MappingResolver, MappingRule, Resolver

__all__ = [
    "MappingResolver",
    "MappingRule",
    "Resolver",
    "TEST_FILE_PATTERN",
    "register_default_rules",
]
