"""Registry cache: slug -> RegistryEntry snapshot joining manifests and records."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .errors import InvalidManifest, NotFound
from .models import RegistryEntry

if TYPE_CHECKING:
    from .manifest import ManifestStore
    from .store import RecordStore

logger = logging.getLogger(__name__)


class RegistryCache:
    """Read-through view of every known extension.

    Not authoritative: lifecycle decisions always consult the record store.
    Entries are rebuilt lazily after ``invalidate``.
    """

    def __init__(self, manifests: ManifestStore, store: RecordStore):
        self.manifests = manifests
        self.store = store
        self._entries: dict[str, RegistryEntry] | None = None
        self._stale: set[str] = set()
        self._lock = threading.Lock()

    def _build_entry(self, slug: str, record=None) -> RegistryEntry:
        entry = RegistryEntry(slug=slug, record=record)
        try:
            entry.manifest = self.manifests.load(slug)
        except InvalidManifest as e:
            logger.warning("invalid manifest for %s: %s", slug, e.message)
            entry.error = e.message
        except NotFound:
            entry.manifest = None
        return entry

    def _rebuild(self) -> dict[str, RegistryEntry]:
        records = {r.slug: r for r in self.store.all()}
        slugs = sorted(set(self.manifests.discover()) | set(records))
        return {slug: self._build_entry(slug, records.get(slug)) for slug in slugs}

    def entries(self) -> list[RegistryEntry]:
        with self._lock:
            if self._entries is None:
                self._entries = self._rebuild()
                self._stale.clear()
            elif self._stale:
                for slug in self._stale:
                    record = self.store.get(slug)
                    if record is None and not self.manifests.exists(slug):
                        self._entries.pop(slug, None)
                    else:
                        self._entries[slug] = self._build_entry(slug, record)
                self._stale.clear()
                self._entries = dict(sorted(self._entries.items()))
            return list(self._entries.values())

    def get(self, slug: str) -> RegistryEntry | None:
        """Entry for *slug*; a slug missing from the snapshot is looked up on disk and in the store."""
        for entry in self.entries():
            if entry.slug == slug:
                return entry
        with self._lock:
            record = self.store.get(slug)
            if record is None and not self.manifests.exists(slug):
                return None
            entry = self._build_entry(slug, record)
            if self._entries is not None:
                self._entries[slug] = entry
                self._entries = dict(sorted(self._entries.items()))
            return entry

    def invalidate(self, slug: str | None = None) -> None:
        """Mark *slug* (or everything, when None) for rebuild on next read."""
        with self._lock:
            if slug is None:
                self._entries = None
                self._stale.clear()
            else:
                self._stale.add(slug)
