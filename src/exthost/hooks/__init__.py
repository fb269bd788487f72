"""Hooks: host filter/action extension points."""

from .engine import HookBus, OwnedHooks
from .models import HookCallback, HookResult

__all__ = [
    "HookBus",
    "HookCallback",
    "HookResult",
    "OwnedHooks",
]
