"""Hook & API dispatcher: resolve extension callables by convention and invoke them."""

from __future__ import annotations

import importlib.util
import logging
import sys
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import TYPE_CHECKING, Any

from exthost.core.utils import slug_identifier
from exthost.hooks import OwnedHooks

from .errors import ExtensionError, HookExecutionFailed, NotFound
from .models import ExtensionManifest
from .schema import apply_defaults
from .store import ExtensionStorage

if TYPE_CHECKING:
    from exthost.core.auth import AuthContext
    from exthost.hooks import HookBus

    from .manifest import ManifestStore
    from .store import RecordStore

logger = logging.getLogger(__name__)

# method names looked up on statically registered implementations
HOOK_METHODS = {
    "install": "on_install",
    "uninstall": "on_uninstall",
    "activate": "on_activate",
    "deactivate": "on_deactivate",
    "load": "on_load",
}


@dataclass(frozen=True)
class ExecutionContext:
    """Everything extension code may touch. Never carries host configuration."""

    slug: str
    settings: Mapping[str, Any]
    store: ExtensionStorage
    auth: AuthContext | None = None
    hook: str = ""
    method: str = ""
    endpoint: str = ""
    input: Any = None
    plugin_dir: Path | None = None
    hooks: OwnedHooks | None = None


def settings_snapshot(manifest: ExtensionManifest, settings: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only copy of stored settings with schema defaults filled in."""
    return MappingProxyType(apply_defaults(manifest.settings_schema, settings))


class ExtensionRegistry:
    """Extensions linked into the host process, keyed by slug.

    An implementation is any object with some of ``on_install(ctx)``,
    ``on_uninstall(ctx)``, ``on_activate(ctx)``, ``on_deactivate(ctx)``,
    ``on_load(ctx)``, ``api_<endpoint>(ctx)`` and ``handle_api(endpoint, ctx)``.
    A registered implementation takes precedence over code on disk.
    """

    def __init__(self):
        self._impls: dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, slug: str, impl: Any) -> None:
        with self._lock:
            self._impls[slug] = impl

    def unregister(self, slug: str) -> None:
        with self._lock:
            self._impls.pop(slug, None)

    def get(self, slug: str) -> Any | None:
        with self._lock:
            return self._impls.get(slug)

    def __contains__(self, slug: str) -> bool:
        return self.get(slug) is not None


class Dispatcher:
    """Locate and call extension-provided functions.

    On disk, hook ``<hook>`` of extension ``<slug>`` is the function
    ``<slug>_<hook>`` in ``<slug>/<hook>.py``; API endpoint ``<endpoint>`` is
    ``<slug>_api_<endpoint>`` in ``<slug>/api.py`` (``-`` becomes ``_``).
    """

    def __init__(
        self,
        manifests: ManifestStore,
        store: RecordStore,
        registry: ExtensionRegistry | None = None,
        hooks: HookBus | None = None,
    ):
        self.manifests = manifests
        self.store = store
        self.registry = registry if registry is not None else ExtensionRegistry()
        self.hooks = hooks
        self._modules: dict[Path, tuple[float, ModuleType]] = {}
        self._modules_lock = threading.Lock()

    # ── Module loading ──────────────────────────────────────────────

    def _load_module(self, path: Path, slug: str) -> ModuleType:
        """Import *path*, reusing the cached module until the file changes."""
        mtime = path.stat().st_mtime
        with self._modules_lock:
            cached = self._modules.get(path)
            if cached and cached[0] == mtime:
                return cached[1]

            # raw slug: "a-b" and "a_b" must not share a module name
            module_name = f"exthost_ext.{slug}.{path.stem}"
            spec = importlib.util.spec_from_file_location(module_name, path)
            if not spec or not spec.loader:
                raise ImportError(f"cannot load {path}")
            mod = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = mod
            try:
                spec.loader.exec_module(mod)
            except BaseException:
                sys.modules.pop(module_name, None)
                raise
            self._modules[path] = (mtime, mod)
            logger.debug("loaded extension module %s from %s", module_name, path)
            return mod

    def forget(self, slug: str) -> None:
        """Drop cached modules for *slug* so the next call re-imports from disk."""
        prefix = f"exthost_ext.{slug}."
        with self._modules_lock:
            for path, (_, mod) in list(self._modules.items()):
                if mod.__name__.startswith(prefix):
                    del self._modules[path]
                    sys.modules.pop(mod.__name__, None)

    # ── Resolution ──────────────────────────────────────────────────

    def resolve_hook(self, manifest: ExtensionManifest, hook: str) -> Callable[[ExecutionContext], Any]:
        slug = manifest.slug
        impl = self.registry.get(slug)
        if impl is not None:
            method = getattr(impl, HOOK_METHODS.get(hook, f"on_{hook}"), None)
            if callable(method):
                return method

        path = manifest.root / f"{hook}.py"
        func_name = f"{slug_identifier(slug)}_{hook}"
        if not path.is_file():
            raise HookExecutionFailed(
                f"{slug} declares hook '{hook}' but {path.name} is missing", slug=slug, hook=hook
            )
        try:
            mod = self._load_module(path, slug)
        except Exception as e:
            raise HookExecutionFailed(
                f"{slug}: failed to load {path.name}: {e}", slug=slug, hook=hook, cause=e
            ) from e
        func = getattr(mod, func_name, None)
        if not callable(func):
            raise HookExecutionFailed(
                f"{slug} declares hook '{hook}' but {path.name} defines no {func_name}()",
                slug=slug,
                hook=hook,
            )
        return func

    def resolve_api(
        self, manifest: ExtensionManifest, endpoint: str
    ) -> Callable[[ExecutionContext], Any] | None:
        slug = manifest.slug
        ident = slug_identifier(endpoint)
        impl = self.registry.get(slug)
        if impl is not None:
            method = getattr(impl, f"api_{ident}", None)
            if callable(method):
                return method
            handler = getattr(impl, "handle_api", None)
            if callable(handler):
                return lambda ctx: handler(endpoint, ctx)

        path = manifest.root / "api.py"
        if not path.is_file():
            return None
        try:
            mod = self._load_module(path, slug)
        except Exception as e:
            raise HookExecutionFailed(
                f"{slug}: failed to load api.py: {e}", slug=slug, hook=f"api:{endpoint}", cause=e
            ) from e
        func = getattr(mod, f"{slug_identifier(slug)}_api_{ident}", None)
        return func if callable(func) else None

    # ── Invocation ──────────────────────────────────────────────────

    def invoke_hook(
        self,
        slug: str,
        hook: str,
        context: ExecutionContext,
        manifest: ExtensionManifest | None = None,
    ) -> Any:
        """Run lifecycle hook *hook*. Any failure surfaces as HookExecutionFailed.

        A hook the manifest does not declare is not called. A hook that
        raises, or returns ``False``, has failed.
        """
        manifest = manifest or self.manifests.load(slug)
        if not manifest.declares_hook(hook):
            return None
        func = self.resolve_hook(manifest, hook)
        logger.debug("invoking %s hook of %s", hook, slug)
        try:
            result = func(context)
        except Exception as e:
            logger.warning("%s hook of %s raised: %s", hook, slug, e)
            raise HookExecutionFailed(
                f"{hook} hook of {slug} failed: {e}", slug=slug, hook=hook, cause=e
            ) from e
        if result is False:
            raise HookExecutionFailed(f"{hook} hook of {slug} reported failure", slug=slug, hook=hook)
        return result

    def invoke_api(
        self,
        slug: str,
        endpoint: str,
        method: str = "GET",
        input: Any = None,
        auth: AuthContext | None = None,
    ) -> Any:
        """Call API endpoint *endpoint* of an active extension."""
        record = self.store.get(slug)
        if record is None or not record.is_active:
            logger.info("api call %s/%s refused: extension not active", slug, endpoint)
            raise NotFound(f"extension not found or inactive: {slug}", slug=slug, reason="inactive")

        manifest = self.manifests.load(slug)
        if not manifest.declares_endpoint(endpoint):
            logger.info("api call %s/%s refused: endpoint not declared", slug, endpoint)
            raise NotFound(f"endpoint not declared: {slug}/{endpoint}", slug=slug, reason="undeclared")

        func = self.resolve_api(manifest, endpoint)
        if func is None:
            logger.warning("api call %s/%s: endpoint declared but no implementation found", slug, endpoint)
            raise NotFound(f"endpoint not implemented: {slug}/{endpoint}", slug=slug, reason="unresolved")

        context = ExecutionContext(
            slug=slug,
            settings=settings_snapshot(manifest, record.settings),
            store=ExtensionStorage(self.store, slug),
            auth=auth,
            method=method.upper(),
            endpoint=endpoint,
            input=input,
            plugin_dir=manifest.root,
            hooks=OwnedHooks(self.hooks, slug) if self.hooks is not None else None,
        )
        logger.debug("dispatching %s %s/%s", context.method, slug, endpoint)
        try:
            return func(context)
        except ExtensionError:
            raise
        except Exception as e:
            logger.warning("api %s/%s raised: %s", slug, endpoint, e)
            raise HookExecutionFailed(
                f"api {slug}/{endpoint} failed: {e}", slug=slug, hook=f"api:{endpoint}", cause=e
            ) from e
