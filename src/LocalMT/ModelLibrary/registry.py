"""Ordered, identity-unique collection of installed packages.

The registry is the authoritative in-memory view of what is installed.  Two
invariants hold after every mutation: no two entries share an identity
(short name, source language, target language), and entries stay sorted by
(source language, target language, short name).  Every mutation emits its
notification synchronously through the shared :class:`EventBus`.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import fields, replace
from typing import Iterator, List, Optional, Sequence, Tuple

from .events import (
    REGISTRY_CHANGED,
    REGISTRY_INSERTED,
    REGISTRY_LIST_CHANGED,
    REGISTRY_REMOVED,
    EventBus,
)
from .models import PackageIdentity, PackageRecord

__all__ = ["PackageRegistry"]

logger = logging.getLogger("LocalMT.ModelLibrary.registry")


def _order_key(record: PackageRecord) -> Tuple[str, str, str]:
    return (record.source_language, record.target_language, record.short_name)


class PackageRegistry:
    """Installed package records with ordering and uniqueness guarantees."""

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        self.bus = bus or EventBus()
        self._entries: List[PackageRecord] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PackageRecord]:
        return iter(tuple(self._entries))

    def list(self) -> Sequence[PackageRecord]:
        """Return the current entries in order as an immutable snapshot."""

        return tuple(self._entries)

    def index_of(self, record: PackageRecord) -> int:
        """Return the position of the entry sharing ``record``'s identity, or ``-1``."""

        return self._index_of_identity(record.identity)

    def find(self, identity: PackageIdentity) -> Optional[PackageRecord]:
        index = self._index_of_identity(tuple(identity))
        return self._entries[index] if index != -1 else None

    def _index_of_identity(self, identity: PackageIdentity) -> int:
        for index, entry in enumerate(self._entries):
            if entry.identity == identity:
                return index
        return -1

    def insert(self, record: PackageRecord) -> bool:
        """Insert a copy of ``record`` or update the entry with the same identity.

        The registry never stores the caller's object, so records handed out
        by other components do not change when an entry is updated later.

        Returns:
            ``True`` for a genuinely new entry, ``False`` when an existing
            entry was updated in place.
        """

        index = self.index_of(record)
        if index != -1:
            existing = self._entries[index]
            for item in fields(PackageRecord):
                setattr(existing, item.name, getattr(record, item.name))
            logger.debug(
                "updated registry entry",
                extra={"stage": "registry", "identity": record.identity, "index": index},
            )
            self.bus.emit(REGISTRY_CHANGED, index=index, record=existing)
            return False

        keys = [_order_key(entry) for entry in self._entries]
        position = bisect.bisect_right(keys, _order_key(record))
        stored = replace(record)
        self._entries.insert(position, stored)
        logger.debug(
            "inserted registry entry",
            extra={"stage": "registry", "identity": record.identity, "index": position},
        )
        self.bus.emit(REGISTRY_INSERTED, index=position, record=stored)
        self.bus.emit(REGISTRY_LIST_CHANGED, size=len(self._entries))
        return True

    def remove(self, record: PackageRecord) -> bool:
        """Remove the entry sharing ``record``'s identity; ``False`` if absent."""

        index = self.index_of(record)
        if index == -1:
            logger.debug(
                "registry entry already absent",
                extra={"stage": "registry", "identity": record.identity},
            )
            return False
        removed = self._entries.pop(index)
        self.bus.emit(REGISTRY_REMOVED, index=index, record=removed)
        self.bus.emit(REGISTRY_LIST_CHANGED, size=len(self._entries))
        return True

    def update_remote_metadata(self, index: int, remote: PackageRecord) -> PackageRecord:
        """Copy catalog version information from ``remote`` onto entry ``index``."""

        entry = self._entries[index]
        entry.remote_version = remote.remote_version
        entry.remote_api_version = remote.remote_api_version
        self.bus.emit(REGISTRY_CHANGED, index=index, record=entry)
        return entry
