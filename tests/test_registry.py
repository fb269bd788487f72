"""Tests for the registry cache: joining manifests with records, invalidation."""

from conftest import write_extension

from exthost.plugins.manifest import ManifestStore
from exthost.plugins.models import ExtensionRecord, ExtensionState
from exthost.plugins.registry import RegistryCache


def _cache(content_root, store):
    return RegistryCache(ManifestStore(content_root), store)


class TestRegistryCache:
    def test_union_of_manifests_and_records(self, content_root, store):
        write_extension(content_root, "a")
        store.insert(ExtensionRecord(slug="gone", name="gone", version="1"))
        entries = _cache(content_root, store).entries()
        assert [(e.slug, e.state) for e in entries] == [
            ("a", ExtensionState.DISCOVERED),
            ("gone", ExtensionState.ORPHANED),
        ]

    def test_invalid_manifest_recorded_as_error(self, content_root, store):
        write_extension(content_root, "bad", {"settings_schema": "nope"})
        entry = _cache(content_root, store).get("bad")
        assert entry.manifest is None
        assert entry.error == "settings_schema must be an object"

    def test_snapshot_until_invalidated(self, content_root, store):
        write_extension(content_root, "a")
        cache = _cache(content_root, store)
        assert cache.get("a").is_installed is False
        store.insert(ExtensionRecord(slug="a", name="a", version="1"))
        assert cache.get("a").is_installed is False
        cache.invalidate("a")
        assert cache.get("a").is_installed is True

    def test_invalidate_removes_vanished(self, content_root, store):
        d = write_extension(content_root, "a")
        cache = _cache(content_root, store)
        assert cache.get("a") is not None
        (d / "plugin.json").unlink()
        cache.invalidate("a")
        assert cache.get("a") is None

    def test_invalidate_all(self, content_root, store):
        cache = _cache(content_root, store)
        assert cache.entries() == []
        write_extension(content_root, "new")
        assert cache.entries() == []
        cache.invalidate()
        assert [e.slug for e in cache.entries()] == ["new"]

    def test_state_active(self, content_root, store):
        write_extension(content_root, "a")
        store.insert(ExtensionRecord(slug="a", name="a", version="1", is_active=True))
        entry = _cache(content_root, store).get("a")
        assert entry.state == ExtensionState.ACTIVE
        assert entry.to_dict()["is_active"] is True

    def test_get_misses_fall_through_to_disk_and_store(self, content_root, store):
        cache = _cache(content_root, store)
        assert cache.entries() == []
        write_extension(content_root, "late")
        store.insert(ExtensionRecord(slug="gone", name="gone", version="1"))
        assert cache.get("late").state == ExtensionState.DISCOVERED
        assert cache.get("gone").state == ExtensionState.ORPHANED
        assert cache.get("ghost") is None
        assert [e.slug for e in cache.entries()] == ["gone", "late"]
