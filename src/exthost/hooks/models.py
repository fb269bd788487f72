"""Hook data models: HookCallback, HookResult."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class HookCallback:
    """A callback registered on a host hook name (or a regex over names)."""

    matcher: str  # hook name, regex pattern, or "*" for match-all
    callback: Callable[[Any], Any]
    priority: int = 10
    owner: str = ""  # slug of the extension that registered it; "" = host

    _pattern: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)

    def matches(self, name: str) -> bool:
        if self.matcher == "*" or self.matcher == name:
            return True
        if self._pattern is None:
            try:
                self._pattern = re.compile(self.matcher)
            except re.error:
                return False
        return self._pattern.fullmatch(name) is not None


@dataclass
class HookResult:
    """Result of running every callback for one hook name."""

    data: Any = None
    called: int = 0
    errors: list[str] = field(default_factory=list)
