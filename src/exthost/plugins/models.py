"""Extension data models: ExtensionManifest, SettingField, ExtensionRecord, RegistryEntry."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

LIFECYCLE_HOOKS = ("install", "uninstall", "activate", "deactivate")

# run by ExtensionRuntime.boot() for every active extension
RUNTIME_HOOKS = ("load",)

KNOWN_HOOKS = LIFECYCLE_HOOKS + RUNTIME_HOOKS

SETTING_TYPES = ("string", "integer", "boolean", "array")

MANIFEST_FILE = "plugin.json"


class ExtensionState(str, enum.Enum):
    DISCOVERED = "discovered"
    INSTALLED = "installed"
    ACTIVE = "active"
    ORPHANED = "orphaned"  # record present, manifest gone from the content root


@dataclass(frozen=True)
class SettingField:
    """One entry of a manifest's settings_schema."""

    name: str
    type: str = "string"
    required: bool = False
    min: int | float | None = None
    max: int | float | None = None
    enum: tuple | None = None
    default: Any = None
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "required": self.required}
        for key in ("min", "max", "default"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.enum is not None:
            data["enum"] = list(self.enum)
        if self.description:
            data["description"] = self.description
        return data


@dataclass(frozen=True)
class ExtensionManifest:
    """Parsed from <content_root>/<slug>/plugin.json."""

    slug: str
    root: Path
    name: str = ""
    version: str = "1.0.0"
    description: str = ""
    author: str = "Unknown"
    website: str = ""
    license: str = ""
    requirements: dict[str, Any] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()
    hooks: tuple[str, ...] = ()
    api_endpoints: tuple[str, ...] = ()
    settings_schema: dict[str, SettingField] = field(default_factory=dict)
    screenshots: tuple[str, ...] = ()
    changelog: tuple = ()

    def declares_hook(self, hook: str) -> bool:
        return hook in self.hooks

    def declares_endpoint(self, endpoint: str) -> bool:
        return endpoint in self.api_endpoints

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name or self.slug,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "website": self.website,
            "license": self.license,
            "requires": dict(self.requirements),
            "dependencies": list(self.dependencies),
            "hooks": list(self.hooks),
            "api_endpoints": list(self.api_endpoints),
            "settings_schema": {k: v.to_dict() for k, v in self.settings_schema.items()},
            "screenshots": list(self.screenshots),
            "changelog": list(self.changelog),
        }


@dataclass
class ExtensionRecord:
    """Persisted lifecycle state of an installed extension."""

    slug: str
    name: str
    version: str
    settings: dict[str, Any] = field(default_factory=dict)
    is_active: bool = False
    installed_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "version": self.version,
            "settings": dict(self.settings),
            "is_active": self.is_active,
            "installed_at": self.installed_at,
            "updated_at": self.updated_at,
        }


@dataclass
class AuditEvent:
    action: str
    details: dict[str, Any] = field(default_factory=dict)
    actor: str = ""
    timestamp: str = ""


@dataclass
class RegistryEntry:
    """A discovered extension joined with its record (if installed)."""

    slug: str
    manifest: ExtensionManifest | None = None
    record: ExtensionRecord | None = None
    error: str = ""

    @property
    def state(self) -> ExtensionState:
        if self.record is None:
            return ExtensionState.DISCOVERED
        if self.manifest is None and not self.error:
            return ExtensionState.ORPHANED
        return ExtensionState.ACTIVE if self.record.is_active else ExtensionState.INSTALLED

    @property
    def is_installed(self) -> bool:
        return self.record is not None

    @property
    def is_active(self) -> bool:
        return self.record is not None and self.record.is_active

    def to_dict(self) -> dict[str, Any]:
        if self.manifest is not None:
            data = self.manifest.to_dict()
        else:
            data = {"slug": self.slug, "name": self.record.name if self.record else self.slug}
        data["state"] = self.state.value
        data["is_installed"] = self.is_installed
        data["is_active"] = self.is_active
        data["settings"] = dict(self.record.settings) if self.record else {}
        data["installed_at"] = self.record.installed_at if self.record else None
        data["updated_at"] = self.record.updated_at if self.record else None
        if self.error:
            data["error"] = self.error
        return data
