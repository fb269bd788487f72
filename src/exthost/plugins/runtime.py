"""Management surface: ExtensionRuntime wires the stores, dispatcher and lifecycle together."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from exthost.core.auth import ADMIN_CAPABILITY, Authorizer, StaticAuthorizer
from exthost.hooks import HookBus, OwnedHooks

from .dispatch import Dispatcher, ExecutionContext, ExtensionRegistry, settings_snapshot
from .errors import ExtensionError, HookExecutionFailed, InvalidManifest, NotFound, PermissionDenied
from .lifecycle import LifecycleManager
from .manifest import ManifestStore, validate_extension_dir
from .registry import RegistryCache
from .store import AuditLog, ExtensionStorage, RecordStore

if TYPE_CHECKING:
    from exthost.core.config import Config

logger = logging.getLogger(__name__)


@dataclass
class Result:
    """Outcome of a runtime operation: ``data`` on success, ``error`` otherwise."""

    ok: bool
    data: Any = None
    error: ExtensionError | None = None

    @property
    def status(self) -> int:
        return 200 if self.ok else (self.error.status if self.error else 500)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok, "status": self.status}
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out


class ExtensionRuntime:
    def __init__(
        self,
        manifests: ManifestStore,
        store: RecordStore,
        authorizer: Authorizer,
        capabilities: dict[str, Any] | None = None,
        registry: ExtensionRegistry | None = None,
        hooks: HookBus | None = None,
    ):
        self.manifests = manifests
        self.store = store
        self.authorizer = authorizer
        self.hooks = hooks if hooks is not None else HookBus()
        self.audit = AuditLog(store)
        self.cache = RegistryCache(manifests, store)
        self.dispatcher = Dispatcher(manifests, store, registry=registry, hooks=self.hooks)
        self.lifecycle = LifecycleManager(
            manifests,
            store,
            self.dispatcher,
            capabilities=capabilities,
            hooks=self.hooks,
            cache=self.cache,
            audit=self.audit,
        )

    @classmethod
    def from_config(
        cls,
        config: Config,
        authorizer: Authorizer | None = None,
        registry: ExtensionRegistry | None = None,
    ) -> ExtensionRuntime:
        if authorizer is None:
            authorizer = StaticAuthorizer(config.grants, user=config.actor)
        return cls(
            ManifestStore(config.plugin_dir),
            RecordStore(config.db_path, timeout=config.store_timeout),
            authorizer,
            capabilities=config.capability_table(),
            registry=registry,
        )

    @property
    def registry(self) -> ExtensionRegistry:
        return self.dispatcher.registry

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def actor(self) -> str:
        return self.authorizer.context().user

    def _require_admin(self, operation: str, slug: str = "") -> None:
        if not self.authorizer.has_permission(ADMIN_CAPABILITY):
            logger.info("%s denied for %s", operation, self.actor or "anonymous")
            raise PermissionDenied(f"{operation} requires {ADMIN_CAPABILITY}", slug=slug)

    def _run(self, fn: Callable[[], Any]) -> Result:
        try:
            return Result(ok=True, data=fn())
        except ExtensionError as e:
            return Result(ok=False, error=e)

    def _admin(self, operation: str, slug: str, fn: Callable[[], Any]) -> Result:
        def guarded():
            self._require_admin(operation, slug)
            return fn()

        return self._run(guarded)

    # ── Read operations ─────────────────────────────────────────────

    def list(self, refresh: bool = False) -> Result:
        def _list():
            if refresh:
                self.cache.invalidate()
            return [entry.to_dict() for entry in self.cache.entries()]

        return self._admin("list", "", _list)

    def get(self, slug: str) -> Result:
        def _get():
            entry = self.cache.get(slug)
            if entry is None:
                raise NotFound(f"extension not found: {slug}", slug=slug, reason="manifest")
            data = entry.to_dict()
            data["readme"] = self.manifests.readme(slug) if entry.manifest is not None else None
            return data

        return self._admin("get", slug, _get)

    def audit_log(self, limit: int = 50, action: str | None = None) -> Result:
        return self._admin("audit_log", "", lambda: [asdict(e) for e in self.audit.recent(limit, action)])

    def validate(self, path: str | Path) -> Result:
        """Check an extension directory without installing it."""

        def _validate():
            errors = validate_extension_dir(Path(path))
            if errors:
                raise InvalidManifest("; ".join(errors), slug=Path(path).name)
            return {"path": str(path), "valid": True, "errors": []}

        return self._admin("validate", "", _validate)

    # ── Lifecycle ───────────────────────────────────────────────────

    def install(self, slug: str) -> Result:
        return self._admin(
            "install",
            slug,
            lambda: self.lifecycle.install(slug, actor=self.actor, auth=self.authorizer.context()).to_dict(),
        )

    def uninstall(self, slug: str) -> Result:
        def _uninstall():
            self.lifecycle.uninstall(slug, actor=self.actor, auth=self.authorizer.context())
            return {"slug": slug}

        return self._admin("uninstall", slug, _uninstall)

    def activate(self, slug: str) -> Result:
        return self._admin(
            "activate",
            slug,
            lambda: self.lifecycle.activate(slug, actor=self.actor, auth=self.authorizer.context()).to_dict(),
        )

    def deactivate(self, slug: str) -> Result:
        return self._admin(
            "deactivate",
            slug,
            lambda: self.lifecycle.deactivate(slug, actor=self.actor, auth=self.authorizer.context()).to_dict(),
        )

    def update_settings(self, slug: str, payload: Any) -> Result:
        return self._admin(
            "update_settings",
            slug,
            lambda: self.lifecycle.update_settings(slug, payload, actor=self.actor).to_dict(),
        )

    # ── Dispatch ────────────────────────────────────────────────────

    def get_api_endpoints(self, slug: str) -> Result:
        def _endpoints():
            record = self.store.get(slug)
            if record is None or not record.is_active:
                raise NotFound(f"extension not found or inactive: {slug}", slug=slug, reason="inactive")
            return list(self.manifests.load(slug).api_endpoints)

        return self._run(_endpoints)

    def call_api(self, slug: str, endpoint: str, method: str = "GET", input: Any = None) -> Result:
        def _call():
            try:
                return self.dispatcher.invoke_api(
                    slug, endpoint, method=method, input=input, auth=self.authorizer.context()
                )
            except HookExecutionFailed as e:
                self.lifecycle.audit_failure(e, self.actor)
                raise

        return self._run(_call)

    def boot(self) -> Result:
        """Run the ``load`` hook of every active extension.

        One extension failing to load does not stop the others; failures are
        logged and audited.
        """

        def _boot():
            loaded: list[str] = []
            failed: dict[str, str] = {}
            for record in self.store.all():
                if not record.is_active:
                    continue
                try:
                    manifest = self.manifests.load(record.slug)
                except ExtensionError as e:
                    logger.warning("cannot load %s: %s", record.slug, e.message)
                    failed[record.slug] = e.message
                    continue
                if not manifest.declares_hook("load"):
                    loaded.append(record.slug)
                    continue
                context = ExecutionContext(
                    slug=record.slug,
                    settings=settings_snapshot(manifest, record.settings),
                    store=ExtensionStorage(self.store, record.slug),
                    auth=self.authorizer.context(),
                    hook="load",
                    plugin_dir=manifest.root,
                    hooks=OwnedHooks(self.hooks, record.slug),
                )
                try:
                    self.dispatcher.invoke_hook(record.slug, "load", context, manifest=manifest)
                except HookExecutionFailed as e:
                    self.hooks.remove_owner(record.slug)
                    self.lifecycle.audit_failure(e, self.actor)
                    failed[record.slug] = e.message
                    continue
                loaded.append(record.slug)
            if failed:
                logger.warning("%d extension(s) failed to load: %s", len(failed), ", ".join(failed))
            return {"loaded": loaded, "failed": failed}

        return self._run(_boot)
