"""HookBus: priority-ordered filter/action callbacks shared between host and extensions."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from .models import HookCallback, HookResult

logger = logging.getLogger(__name__)


class HookBus:
    """Named extension points.

    ``apply`` threads a value through every matching callback in ascending
    priority; a callback returning something other than ``None`` replaces
    the value. A failing callback is logged and skipped.
    """

    def __init__(self):
        self._callbacks: list[HookCallback] = []
        self._lock = threading.Lock()

    def add(
        self,
        name: str,
        callback: Callable[[Any], Any],
        priority: int = 10,
        owner: str = "",
    ) -> HookCallback:
        entry = HookCallback(matcher=name, callback=callback, priority=priority, owner=owner)
        with self._lock:
            self._callbacks.append(entry)
            # stable: equal priorities keep registration order
            self._callbacks.sort(key=lambda c: c.priority)
        return entry

    def remove(self, entry: HookCallback) -> bool:
        with self._lock:
            try:
                self._callbacks.remove(entry)
            except ValueError:
                return False
        return True

    def remove_owner(self, owner: str) -> int:
        """Drop every callback registered by *owner*. Returns how many were removed."""
        with self._lock:
            before = len(self._callbacks)
            self._callbacks = [c for c in self._callbacks if c.owner != owner]
            return before - len(self._callbacks)

    def has(self, name: str) -> bool:
        with self._lock:
            return any(c.matches(name) for c in self._callbacks)

    def callbacks(self, name: str) -> list[HookCallback]:
        with self._lock:
            return [c for c in self._callbacks if c.matches(name)]

    def run(self, name: str, data: Any = None) -> HookResult:
        result = HookResult(data=data)
        for entry in self.callbacks(name):
            try:
                value = entry.callback(result.data)
            except Exception as e:
                owner = entry.owner or "host"
                logger.warning("hook %s callback from %s failed: %s", name, owner, e)
                result.errors.append(f"{owner}: {e}")
                continue
            result.called += 1
            if value is not None:
                result.data = value
        return result

    def apply(self, name: str, data: Any = None) -> Any:
        return self.run(name, data).data


class OwnedHooks:
    """The HookBus as seen from one extension: registrations are tagged with its slug."""

    def __init__(self, bus: HookBus, owner: str):
        self._bus = bus
        self.owner = owner

    def add(self, name: str, callback: Callable[[Any], Any], priority: int = 10) -> HookCallback:
        return self._bus.add(name, callback, priority=priority, owner=self.owner)

    def apply(self, name: str, data: Any = None) -> Any:
        return self._bus.apply(name, data)

    def has(self, name: str) -> bool:
        return self._bus.has(name)
