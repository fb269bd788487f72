"""Tests for the dispatcher: convention-based resolution, scoping, registered implementations."""

import os
import sys

import pytest
from conftest import write_extension

from exthost.core.auth import AuthContext
from exthost.hooks import HookBus
from exthost.plugins.dispatch import Dispatcher, ExecutionContext, ExtensionRegistry
from exthost.plugins.errors import HookExecutionFailed, NotFound, PermissionDenied
from exthost.plugins.manifest import ManifestStore
from exthost.plugins.models import ExtensionRecord
from exthost.plugins.store import ExtensionStorage


@pytest.fixture
def dispatcher(content_root, store):
    return Dispatcher(ManifestStore(content_root), store, hooks=HookBus())


def _activate(store, slug, settings=None):
    store.insert(ExtensionRecord(slug=slug, name=slug, version="1.0.0", settings=settings or {}))
    store.set_active(slug, True)


def _ctx(store, slug, hook=""):
    return ExecutionContext(slug=slug, settings={}, store=ExtensionStorage(store, slug), hook=hook)


# ── Hooks ───────────────────────────────────────────────────────────


class TestInvokeHook:
    def test_calls_convention_function(self, content_root, store, dispatcher):
        write_extension(
            content_root,
            "mail-digest",
            {"hooks": ["install"]},
            {"install.py": "def mail_digest_install(ctx):\n    return 'ok:' + ctx.slug\n"},
        )
        assert dispatcher.invoke_hook("mail-digest", "install", _ctx(store, "mail-digest")) == "ok:mail-digest"

    def test_undeclared_hook_is_not_called(self, content_root, store, dispatcher):
        write_extension(
            content_root,
            "x",
            {"hooks": []},
            {"install.py": "def x_install(ctx):\n    raise RuntimeError('should not run')\n"},
        )
        assert dispatcher.invoke_hook("x", "install", _ctx(store, "x")) is None

    def test_declared_but_missing_module(self, content_root, store, dispatcher):
        write_extension(content_root, "x", {"hooks": ["activate"]})
        with pytest.raises(HookExecutionFailed, match="activate.py is missing"):
            dispatcher.invoke_hook("x", "activate", _ctx(store, "x"))

    def test_declared_but_missing_function(self, content_root, store, dispatcher):
        write_extension(content_root, "x", {"hooks": ["activate"]}, {"activate.py": "def other(ctx):\n    pass\n"})
        with pytest.raises(HookExecutionFailed, match="defines no x_activate"):
            dispatcher.invoke_hook("x", "activate", _ctx(store, "x"))

    def test_raising_hook(self, content_root, store, dispatcher):
        write_extension(
            content_root,
            "x",
            {"hooks": ["install"]},
            {"install.py": "def x_install(ctx):\n    raise ValueError('disk full')\n"},
        )
        with pytest.raises(HookExecutionFailed) as exc:
            dispatcher.invoke_hook("x", "install", _ctx(store, "x"))
        assert "disk full" in exc.value.message
        assert isinstance(exc.value.cause, ValueError)
        assert exc.value.hook == "install"

    def test_false_return_is_failure(self, content_root, store, dispatcher):
        write_extension(
            content_root, "x", {"hooks": ["install"]}, {"install.py": "def x_install(ctx):\n    return False\n"}
        )
        with pytest.raises(HookExecutionFailed, match="reported failure"):
            dispatcher.invoke_hook("x", "install", _ctx(store, "x"))

    def test_syntax_error_in_module(self, content_root, store, dispatcher):
        write_extension(content_root, "x", {"hooks": ["install"]}, {"install.py": "def x_install(:\n"})
        with pytest.raises(HookExecutionFailed, match="failed to load install.py"):
            dispatcher.invoke_hook("x", "install", _ctx(store, "x"))

    def test_module_reloaded_when_file_changes(self, content_root, store, dispatcher):
        d = write_extension(
            content_root, "x", {"hooks": ["install"]}, {"install.py": "def x_install(ctx):\n    return 1\n"}
        )
        assert dispatcher.invoke_hook("x", "install", _ctx(store, "x")) == 1
        path = d / "install.py"
        path.write_text("def x_install(ctx):\n    return 2\n")
        st = path.stat()
        os.utime(path, (st.st_atime, st.st_mtime + 10))
        assert dispatcher.invoke_hook("x", "install", _ctx(store, "x")) == 2

    def test_dash_and_underscore_slugs_kept_apart(self, content_root, store, dispatcher):
        for slug, value in (("a-b", 1), ("a_b", 2)):
            write_extension(
                content_root, slug, {"hooks": ["install"]}, {"install.py": f"def a_b_install(ctx):\n    return {value}\n"}
            )
        assert dispatcher.invoke_hook("a-b", "install", _ctx(store, "a-b")) == 1
        assert dispatcher.invoke_hook("a_b", "install", _ctx(store, "a_b")) == 2
        dispatcher.forget("a-b")
        assert "exthost_ext.a-b.install" not in sys.modules
        assert "exthost_ext.a_b.install" in sys.modules
        assert dispatcher.invoke_hook("a_b", "install", _ctx(store, "a_b")) == 2
        dispatcher.forget("a_b")


# ── API ─────────────────────────────────────────────────────────────


class TestInvokeApi:
    def test_dispatches_to_active_extension(self, notify, store, dispatcher):
        _activate(store, "notify", {"webhook_url": "https://example.com"})
        out = dispatcher.invoke_api("notify", "send", "post", {"text": "hi"})
        assert out == {"url": "https://example.com", "text": "hi", "method": "POST", "count": 1}
        assert store.kv_get("notify", "sent") == 1

    def test_inactive(self, notify, store, dispatcher):
        store.insert(ExtensionRecord(slug="notify", name="n", version="1"))
        with pytest.raises(NotFound) as exc:
            dispatcher.invoke_api("notify", "send")
        assert exc.value.reason == "inactive"

    def test_not_installed(self, notify, dispatcher):
        with pytest.raises(NotFound) as exc:
            dispatcher.invoke_api("notify", "send")
        assert exc.value.reason == "inactive"

    def test_undeclared_endpoint(self, notify, store, dispatcher):
        _activate(store, "notify")
        with pytest.raises(NotFound) as exc:
            dispatcher.invoke_api("notify", "delete-all")
        assert exc.value.reason == "undeclared"

    def test_declared_but_unresolved(self, content_root, store, dispatcher):
        write_extension(content_root, "x", {"api_endpoints": ["ping"]}, {"api.py": "def other(ctx):\n    pass\n"})
        _activate(store, "x")
        with pytest.raises(NotFound) as exc:
            dispatcher.invoke_api("x", "ping")
        assert exc.value.reason == "unresolved"

    def test_dashed_endpoint_name(self, content_root, store, dispatcher):
        write_extension(
            content_root,
            "x",
            {"api_endpoints": ["get-status"]},
            {"api.py": "def x_api_get_status(ctx):\n    return ctx.endpoint\n"},
        )
        _activate(store, "x")
        assert dispatcher.invoke_api("x", "get-status") == "get-status"

    def test_handler_error_wrapped(self, content_root, store, dispatcher):
        write_extension(
            content_root,
            "x",
            {"api_endpoints": ["ping"]},
            {"api.py": "def x_api_ping(ctx):\n    raise KeyError('k')\n"},
        )
        _activate(store, "x")
        with pytest.raises(HookExecutionFailed) as exc:
            dispatcher.invoke_api("x", "ping")
        assert exc.value.hook == "api:ping"

    def test_handler_extension_error_passes_through(self, content_root, store, dispatcher):
        write_extension(
            content_root,
            "x",
            {"api_endpoints": ["ping"]},
            {
                "api.py": (
                    "from exthost.plugins.errors import PermissionDenied\n"
                    "def x_api_ping(ctx):\n"
                    "    raise PermissionDenied('admins only')\n"
                )
            },
        )
        _activate(store, "x")
        with pytest.raises(PermissionDenied, match="admins only"):
            dispatcher.invoke_api("x", "ping")


class TestDispatchScoping:
    def test_context_sees_only_own_slug(self, content_root, store, dispatcher):
        source = "def {ident}_api_peek(ctx):\n    return (ctx.slug, ctx.store.items(), dict(ctx.settings))\n"
        for slug in ("a", "b"):
            write_extension(content_root, slug, {"api_endpoints": ["peek"]}, {"api.py": source.format(ident=slug)})
            _activate(store, slug, {})
        store.kv_set("a", "secret", "a-only")
        assert dispatcher.invoke_api("b", "peek") == ("b", {}, {})
        assert dispatcher.invoke_api("a", "peek") == ("a", {"secret": "a-only"}, {})

    def test_context_has_no_host_config(self):
        fields = set(ExecutionContext.__dataclass_fields__)
        assert "config" not in fields
        assert fields >= {"slug", "settings", "store", "auth", "hooks"}

    def test_settings_are_read_only(self, content_root, store, dispatcher):
        write_extension(
            content_root,
            "x",
            {"api_endpoints": ["mutate"], "settings_schema": {"n": {"type": "integer", "default": 1}}},
            {"api.py": "def x_api_mutate(ctx):\n    ctx.settings['n'] = 99\n"},
        )
        _activate(store, "x")
        with pytest.raises(HookExecutionFailed):
            dispatcher.invoke_api("x", "mutate")
        assert store.get("x").settings == {}

    def test_auth_passed_through(self, content_root, store, dispatcher):
        write_extension(
            content_root, "x", {"api_endpoints": ["who"]}, {"api.py": "def x_api_who(ctx):\n    return ctx.auth.user\n"}
        )
        _activate(store, "x")
        assert dispatcher.invoke_api("x", "who", auth=AuthContext(user="bob")) == "bob"


# ── Registered implementations ──────────────────────────────────────


class _Impl:
    def __init__(self):
        self.calls = []

    def on_install(self, ctx):
        self.calls.append(("install", ctx.slug))

    def api_ping(self, ctx):
        return "pong"

    def handle_api(self, endpoint, ctx):
        return f"generic:{endpoint}"


class TestRegistry:
    def test_registered_hook_wins(self, content_root, store):
        write_extension(content_root, "x", {"hooks": ["install"]})
        registry = ExtensionRegistry()
        impl = _Impl()
        registry.register("x", impl)
        dispatcher = Dispatcher(ManifestStore(content_root), store, registry=registry)
        dispatcher.invoke_hook("x", "install", _ctx(store, "x"))
        assert impl.calls == [("install", "x")]

    def test_registered_api_and_fallback(self, content_root, store):
        write_extension(content_root, "x", {"api_endpoints": ["ping", "other"]})
        registry = ExtensionRegistry()
        registry.register("x", _Impl())
        dispatcher = Dispatcher(ManifestStore(content_root), store, registry=registry)
        _activate(store, "x")
        assert dispatcher.invoke_api("x", "ping") == "pong"
        assert dispatcher.invoke_api("x", "other") == "generic:other"

    def test_register_unregister(self):
        registry = ExtensionRegistry()
        registry.register("x", object())
        assert "x" in registry
        registry.unregister("x")
        assert "x" not in registry
