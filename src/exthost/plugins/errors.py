"""Extension runtime error taxonomy."""

from __future__ import annotations


class ExtensionError(Exception):
    """Base class for every error the runtime reports to a caller."""

    code = "extension_error"
    status = 500

    def __init__(self, message: str = "", slug: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.slug = slug

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.slug:
            data["slug"] = self.slug
        return data


class PermissionDenied(ExtensionError):
    code = "permission_denied"
    status = 403


class NotFound(ExtensionError):
    """No manifest, no record, or nothing to dispatch to.

    ``reason`` tells operators which: ``manifest``, ``record``, ``inactive``,
    ``undeclared`` or ``unresolved``.
    """

    code = "not_found"
    status = 404

    def __init__(self, message: str = "", slug: str = "", reason: str = ""):
        super().__init__(message, slug)
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.reason:
            data["reason"] = self.reason
        return data


class InvalidManifest(ExtensionError):
    code = "invalid_manifest"
    status = 400


class AlreadyInstalled(ExtensionError):
    code = "already_installed"
    status = 409


class AlreadyActive(ExtensionError):
    code = "already_active"
    status = 409


class AlreadyInactive(ExtensionError):
    code = "already_inactive"
    status = 409


class RequirementNotMet(ExtensionError):
    code = "requirement_not_met"
    status = 400


class DependencyConflict(ExtensionError):
    code = "dependency_conflict"
    status = 409


class InvalidSettings(ExtensionError):
    code = "invalid_settings"
    status = 400

    def __init__(self, errors: list[str], slug: str = ""):
        super().__init__("invalid settings: " + "; ".join(errors), slug)
        self.errors = list(errors)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = list(self.errors)
        return data


class HookExecutionFailed(ExtensionError):
    """An extension hook or API handler failed; ``cause`` is the original error."""

    code = "hook_failed"
    status = 500

    def __init__(self, message: str, slug: str = "", hook: str = "", cause: BaseException | None = None):
        super().__init__(message, slug)
        self.hook = hook
        self.cause = cause

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.hook:
            data["hook"] = self.hook
        return data


class StoreUnavailable(ExtensionError):
    code = "store_unavailable"
    status = 503
