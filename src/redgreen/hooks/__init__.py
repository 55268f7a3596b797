"""Run loop extension points."""

from .registry import ALL_HOOKS, HookCallback, HookRegistrationError, HookRegistry

__all__ = ["ALL_HOOKS", "HookCallback", "HookRegistrationError", "HookRegistry"]
