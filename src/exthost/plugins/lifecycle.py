"""Lifecycle manager: install, uninstall, activate, deactivate, update settings."""

from __future__ import annotations

import importlib.util
import logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from exthost.core.utils import parse_constraint, version_satisfies
from exthost.hooks import OwnedHooks

from .dispatch import ExecutionContext, settings_snapshot
from .errors import (
    AlreadyActive,
    AlreadyInactive,
    AlreadyInstalled,
    DependencyConflict,
    ExtensionError,
    HookExecutionFailed,
    InvalidSettings,
    NotFound,
    RequirementNotMet,
    StoreUnavailable,
)
from .models import ExtensionManifest, ExtensionRecord
from .schema import apply_defaults, validate_settings
from .store import AuditLog, ExtensionStorage

if TYPE_CHECKING:
    from exthost.core.auth import AuthContext
    from exthost.hooks import HookBus

    from .dispatch import Dispatcher
    from .manifest import ManifestStore
    from .registry import RegistryCache
    from .store import RecordStore, StoreTransaction

logger = logging.getLogger(__name__)


# ── Requirements ────────────────────────────────────────────────────


def _module_available(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def check_requirements(requirements: Mapping[str, Any], table: Mapping[str, Any]) -> list[str]:
    """Every requirement the host capability table does not satisfy.

    - ``extension`` (a module name or list of names) and ``extension:<mod>``
      require the module to be importable.
    - ``feature:<name>`` or a boolean value requires a truthy flag.
    - Anything else is a version constraint against ``table[name]``; a
      constraint that does not parse is never met.
    """
    problems: list[str] = []
    for name, wanted in requirements.items():
        if name == "extension":
            modules = wanted if isinstance(wanted, list) else [wanted]
            for mod in modules:
                if not _module_available(str(mod)):
                    problems.append(f"requires module {mod}")
            continue
        if name.startswith("extension:"):
            mod = name.split(":", 1)[1]
            if wanted and not _module_available(mod):
                problems.append(f"requires module {mod}")
            continue
        if name.startswith("feature:") or isinstance(wanted, bool):
            if wanted and not table.get(name):
                problems.append(f"requires {name}")
            continue
        if parse_constraint(str(wanted)) is None:
            problems.append(f"requires {name} {wanted} (unparseable constraint)")
        elif name not in table:
            problems.append(f"requires {name} {wanted} (host does not provide {name})")
        elif not version_satisfies(str(table[name]), str(wanted)):
            problems.append(f"requires {name} {wanted} (host has {table[name]})")
    return problems


# ── Manager ─────────────────────────────────────────────────────────


class LifecycleManager:
    """State machine over extension records.

    Each transition holds the slug's lock for its whole duration and runs
    the extension hook inside the same store transaction as the record
    change, so a failing hook leaves no trace.
    """

    def __init__(
        self,
        manifests: ManifestStore,
        store: RecordStore,
        dispatcher: Dispatcher,
        capabilities: Mapping[str, Any] | None = None,
        hooks: HookBus | None = None,
        cache: RegistryCache | None = None,
        audit: AuditLog | None = None,
    ):
        self.manifests = manifests
        self.store = store
        self.dispatcher = dispatcher
        self.capabilities = dict(capabilities or {})
        self.hooks = hooks
        self.cache = cache
        self.audit = audit or AuditLog(store)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _transition(self, slug: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(slug, threading.Lock())
        with lock:
            try:
                yield
            finally:
                if self.cache is not None:
                    self.cache.invalidate(slug)

    def _hook_context(
        self,
        manifest: ExtensionManifest,
        record: ExtensionRecord,
        hook: str,
        tx: StoreTransaction,
        auth: AuthContext | None,
    ) -> ExecutionContext:
        return ExecutionContext(
            slug=manifest.slug,
            settings=settings_snapshot(manifest, record.settings),
            store=ExtensionStorage(tx, manifest.slug),
            auth=auth,
            hook=hook,
            plugin_dir=manifest.root,
            hooks=OwnedHooks(self.hooks, manifest.slug) if self.hooks is not None else None,
        )

    def _run_hook(
        self,
        manifest: ExtensionManifest,
        record: ExtensionRecord,
        hook: str,
        tx: StoreTransaction,
        auth: AuthContext | None,
    ) -> None:
        if not manifest.declares_hook(hook):
            return
        context = self._hook_context(manifest, record, hook, tx, auth)
        self.dispatcher.invoke_hook(manifest.slug, hook, context, manifest=manifest)

    def audit_failure(self, error: HookExecutionFailed, actor: str) -> None:
        """Record a hook failure; the transition's own transaction is already rolled back."""
        try:
            self.audit.record(
                f"plugin.{error.hook}.failed",
                {"slug": error.slug, "error": error.message},
                actor,
            )
        except StoreUnavailable as e:
            logger.error("could not audit %s failure of %s: %s", error.hook, error.slug, e.message)

    def _active_dependents(self, slug: str, tx: StoreTransaction) -> list[str]:
        dependents = []
        for record in tx.all():
            if record.slug == slug or not record.is_active:
                continue
            try:
                manifest = self.manifests.load(record.slug)
            except ExtensionError:
                continue
            if slug in manifest.dependencies:
                dependents.append(record.slug)
        return dependents

    @staticmethod
    def _require_record(tx: StoreTransaction, slug: str) -> ExtensionRecord:
        record = tx.get(slug)
        if record is None:
            raise NotFound(f"extension not installed: {slug}", slug=slug, reason="record")
        return record

    def _drop_runtime_state(self, slug: str) -> None:
        if self.hooks is not None:
            removed = self.hooks.remove_owner(slug)
            if removed:
                logger.debug("removed %d filter(s) registered by %s", removed, slug)

    # ── Transitions ─────────────────────────────────────────────────

    def install(self, slug: str, actor: str = "", auth: AuthContext | None = None) -> ExtensionRecord:
        with self._transition(slug):
            manifest = self.manifests.load(slug)
            problems = check_requirements(manifest.requirements, self.capabilities)
            if problems:
                raise RequirementNotMet("; ".join(problems), slug=slug)
            try:
                with self.store.transaction() as tx:
                    if tx.get(slug) is not None:
                        raise AlreadyInstalled(f"extension already installed: {slug}", slug=slug)
                    record = tx.insert(
                        ExtensionRecord(slug=slug, name=manifest.name, version=manifest.version)
                    )
                    self._run_hook(manifest, record, "install", tx, auth)
                    tx.audit("plugin.install", {"slug": slug, "version": manifest.version}, actor)
            except HookExecutionFailed as e:
                self.audit_failure(e, actor)
                raise
            logger.info("installed %s %s", slug, manifest.version)
            return record

    def uninstall(self, slug: str, actor: str = "", auth: AuthContext | None = None) -> None:
        with self._transition(slug):
            manifest: ExtensionManifest | None
            try:
                manifest = self.manifests.load(slug)
            except NotFound:
                manifest = None
            try:
                with self.store.transaction() as tx:
                    record = self._require_record(tx, slug)
                    dependents = self._active_dependents(slug, tx)
                    if dependents:
                        raise DependencyConflict(
                            f"cannot uninstall {slug}: required by {', '.join(dependents)}", slug=slug
                        )
                    if manifest is None:
                        logger.warning("uninstalling %s without a manifest; no hook will run", slug)
                    else:
                        self._run_hook(manifest, record, "uninstall", tx, auth)
                    tx.remove(slug)
                    tx.audit("plugin.uninstall", {"slug": slug, "version": record.version}, actor)
            except HookExecutionFailed as e:
                self.audit_failure(e, actor)
                raise
            self._drop_runtime_state(slug)
            self.dispatcher.forget(slug)
            logger.info("uninstalled %s", slug)

    def activate(self, slug: str, actor: str = "", auth: AuthContext | None = None) -> ExtensionRecord:
        with self._transition(slug):
            hook_started = False
            try:
                with self.store.transaction() as tx:
                    record = self._require_record(tx, slug)
                    if record.is_active:
                        raise AlreadyActive(f"extension already active: {slug}", slug=slug)
                    manifest = self.manifests.load(slug)
                    missing = []
                    for dep in manifest.dependencies:
                        dep_record = tx.get(dep)
                        if dep_record is None or not dep_record.is_active:
                            missing.append(dep)
                    if missing:
                        raise RequirementNotMet(
                            f"{slug} depends on inactive extension(s): {', '.join(missing)}", slug=slug
                        )
                    hook_started = True
                    self._run_hook(manifest, record, "activate", tx, auth)
                    tx.set_active(slug, True)
                    tx.audit("plugin.activate", {"slug": slug}, actor)
                    record = self._require_record(tx, slug)
            except BaseException as e:
                if hook_started:
                    # filters added by a hook that did not complete
                    self._drop_runtime_state(slug)
                if isinstance(e, HookExecutionFailed):
                    self.audit_failure(e, actor)
                raise
            logger.info("activated %s", slug)
            return record

    def deactivate(self, slug: str, actor: str = "", auth: AuthContext | None = None) -> ExtensionRecord:
        with self._transition(slug):
            try:
                with self.store.transaction() as tx:
                    record = self._require_record(tx, slug)
                    if not record.is_active:
                        raise AlreadyInactive(f"extension already inactive: {slug}", slug=slug)
                    dependents = self._active_dependents(slug, tx)
                    if dependents:
                        raise DependencyConflict(
                            f"cannot deactivate {slug}: required by {', '.join(dependents)}", slug=slug
                        )
                    try:
                        manifest = self.manifests.load(slug)
                    except NotFound:
                        logger.warning("deactivating %s without a manifest; no hook will run", slug)
                    else:
                        self._run_hook(manifest, record, "deactivate", tx, auth)
                    tx.set_active(slug, False)
                    tx.audit("plugin.deactivate", {"slug": slug}, actor)
                    record = self._require_record(tx, slug)
            except HookExecutionFailed as e:
                self.audit_failure(e, actor)
                raise
            self._drop_runtime_state(slug)
            logger.info("deactivated %s", slug)
            return record

    def update_settings(self, slug: str, payload: Any, actor: str = "") -> ExtensionRecord:
        if not isinstance(payload, Mapping):
            raise InvalidSettings(["settings must be an object"], slug=slug)
        with self._transition(slug):
            with self.store.transaction() as tx:
                record = self._require_record(tx, slug)
                manifest = self.manifests.load(slug)
                settings = apply_defaults(manifest.settings_schema, payload)
                result = validate_settings(manifest.settings_schema, settings)
                if not result.valid:
                    raise InvalidSettings(result.errors, slug=slug)
                changed = sorted(
                    key
                    for key in set(record.settings) | set(settings)
                    if record.settings.get(key) != settings.get(key)
                )
                tx.update_settings(slug, settings)
                # values may be secrets; only the keys are audited
                tx.audit("plugin.settings.update", {"slug": slug, "changed": changed}, actor)
                record = self._require_record(tx, slug)
            logger.info("updated settings of %s (%s)", slug, ", ".join(changed) or "no changes")
            return record
