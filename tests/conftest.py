"""Shared fixtures: a content root with sample extensions and a runtime over tmp_path."""

import json
import textwrap

import pytest

from exthost.core.auth import StaticAuthorizer
from exthost.plugins import ExtensionRuntime, ManifestStore, RecordStore


def write_extension(root, slug, manifest=None, files=None):
    """Create <root>/<slug>/plugin.json plus any code files. Returns the directory."""
    d = root / slug
    d.mkdir(parents=True, exist_ok=True)
    data = {"name": slug, "version": "1.0.0"}
    data.update(manifest or {})
    (d / "plugin.json").write_text(json.dumps(data))
    for name, source in (files or {}).items():
        (d / name).write_text(textwrap.dedent(source))
    return d


NOTIFY_MANIFEST = {
    "name": "Notify",
    "version": "1.2.0",
    "description": "Send messages to a webhook",
    "requirements": {},
    "hooks": ["install", "activate"],
    "api_endpoints": ["send"],
    "settings_schema": {"webhook_url": {"type": "string", "required": True}},
}

NOTIFY_FILES = {
    "install.py": """
        def notify_install(ctx):
            ctx.store.set("installed_by", ctx.auth.user if ctx.auth else "")
    """,
    "activate.py": """
        def notify_activate(ctx):
            ctx.hooks.add("message.outgoing", lambda msg: msg + " [notified]")
    """,
    "api.py": """
        def notify_api_send(ctx):
            count = ctx.store.get("sent", 0) + 1
            ctx.store.set("sent", count)
            return {
                "url": ctx.settings["webhook_url"],
                "text": (ctx.input or {}).get("text"),
                "method": ctx.method,
                "count": count,
            }
    """,
}


@pytest.fixture
def content_root(tmp_path):
    root = tmp_path / "plugins"
    root.mkdir()
    return root


@pytest.fixture
def notify(content_root):
    return write_extension(content_root, "notify", NOTIFY_MANIFEST, NOTIFY_FILES)


@pytest.fixture
def store(tmp_path):
    return RecordStore(tmp_path / "exthost.sqlite")


@pytest.fixture
def make_runtime(content_root, store):
    def _make(grants=("admin.plugins",), user="alice", capabilities=None, registry=None):
        return ExtensionRuntime(
            ManifestStore(content_root),
            store,
            StaticAuthorizer(grants, user=user),
            capabilities=capabilities if capabilities is not None else {"host": "2.0.0"},
            registry=registry,
        )

    return _make


@pytest.fixture
def runtime(make_runtime):
    return make_runtime()
