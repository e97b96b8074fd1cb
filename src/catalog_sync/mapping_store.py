"""
Storage for cross-platform identity mappings.

Persistence technology is left to the caller; the orchestrator only needs
look-up-then-write access through the MappingStore protocol.
"""

import threading
from typing import Optional, Protocol

from catalog_sync.models import Platform, SyncMapping


class MappingStore(Protocol):
    """Where SyncMapping records live."""

    def find(self, canonical_product_id: str, platform: Platform) -> Optional[SyncMapping]:
        ...

    def find_by_platform_id(self, platform: Platform, platform_product_id: str) -> Optional[SyncMapping]:
        ...

    def save(self, mapping: SyncMapping) -> SyncMapping:
        ...


class InMemoryMappingStore:
    """
    Process-local MappingStore.

    One mapping is kept per (canonical item, platform) pair. Saving over an
    existing pair replaces its contents but keeps the original mapping id.
    """

    def __init__(self, mappings: Optional[list[SyncMapping]] = None):
        self._lock = threading.Lock()
        self._mappings: dict[tuple[str, Platform], SyncMapping] = {}
        for mapping in mappings or []:
            self.save(mapping)

    def find(self, canonical_product_id: str, platform: Platform) -> Optional[SyncMapping]:
        with self._lock:
            return self._mappings.get((canonical_product_id, Platform(platform)))

    def find_by_platform_id(self, platform: Platform, platform_product_id: str) -> Optional[SyncMapping]:
        platform = Platform(platform)
        with self._lock:
            for mapping in self._mappings.values():
                if mapping.platform == platform and mapping.platform_product_id == str(platform_product_id):
                    return mapping
        return None

    def save(self, mapping: SyncMapping) -> SyncMapping:
        key = (mapping.canonical_product_id, mapping.platform)
        with self._lock:
            existing = self._mappings.get(key)
            if existing is not None and existing.id != mapping.id:
                mapping = mapping.model_copy(update={"id": existing.id})
            self._mappings[key] = mapping
            return mapping

    def all(self) -> list[SyncMapping]:
        with self._lock:
            return list(self._mappings.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._mappings)
