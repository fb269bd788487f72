"""Authorization seam: Authorizer protocol, AuthContext, StaticAuthorizer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

ADMIN_CAPABILITY = "admin.plugins"


@dataclass(frozen=True)
class AuthContext:
    """Who is calling; passed through to extension API handlers."""

    user: str = ""
    capabilities: frozenset[str] = field(default_factory=frozenset)

    def has(self, capability: str) -> bool:
        return capability in self.capabilities or "*" in self.capabilities


@runtime_checkable
class Authorizer(Protocol):
    def has_permission(self, capability: str) -> bool: ...

    def context(self) -> AuthContext: ...


class StaticAuthorizer:
    """Grants a fixed set of capabilities to a single actor."""

    def __init__(self, grants: list[str] | tuple[str, ...] = (ADMIN_CAPABILITY,), user: str = ""):
        self._ctx = AuthContext(user=user, capabilities=frozenset(grants))

    def has_permission(self, capability: str) -> bool:
        return self._ctx.has(capability)

    def context(self) -> AuthContext:
        return self._ctx
