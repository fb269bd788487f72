"""Extension runtime: manifests, lifecycle, dispatch."""

from .dispatch import Dispatcher, ExecutionContext, ExtensionRegistry
from .errors import (
    AlreadyActive,
    AlreadyInactive,
    AlreadyInstalled,
    DependencyConflict,
    ExtensionError,
    HookExecutionFailed,
    InvalidManifest,
    InvalidSettings,
    NotFound,
    PermissionDenied,
    RequirementNotMet,
    StoreUnavailable,
)
from .lifecycle import LifecycleManager, check_requirements
from .manifest import ManifestStore, validate_extension_dir
from .models import ExtensionManifest, ExtensionRecord, ExtensionState, RegistryEntry, SettingField
from .registry import RegistryCache
from .runtime import ExtensionRuntime, Result
from .schema import ValidationResult, apply_defaults, validate_settings
from .store import AuditLog, ExtensionStorage, RecordStore

__all__ = [
    "AlreadyActive",
    "AlreadyInactive",
    "AlreadyInstalled",
    "AuditLog",
    "DependencyConflict",
    "Dispatcher",
    "ExecutionContext",
    "ExtensionError",
    "ExtensionManifest",
    "ExtensionRecord",
    "ExtensionRegistry",
    "ExtensionRuntime",
    "ExtensionState",
    "ExtensionStorage",
    "HookExecutionFailed",
    "InvalidManifest",
    "InvalidSettings",
    "LifecycleManager",
    "ManifestStore",
    "NotFound",
    "PermissionDenied",
    "RecordStore",
    "RegistryCache",
    "RegistryEntry",
    "RequirementNotMet",
    "Result",
    "SettingField",
    "StoreUnavailable",
    "ValidationResult",
    "apply_defaults",
    "check_requirements",
    "validate_extension_dir",
    "validate_settings",
]
