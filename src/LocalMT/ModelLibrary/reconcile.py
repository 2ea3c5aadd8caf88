"""Match installed packages against the remote catalog."""

from __future__ import annotations

import logging
from typing import List, Sequence

from .events import AVAILABILITY_CHANGED, EventBus
from .models import PackageRecord
from .registry import PackageRegistry

__all__ = ["Reconciler"]

logger = logging.getLogger("LocalMT.ModelLibrary.reconcile")


class Reconciler:
    """Derive the "new" and "outdated" package sets.

    Both sets are rebuilt from scratch on every :meth:`recompute`; they are
    views over the registry and the current catalog, never stored state.
    ``outdated_packages`` holds the catalog records offering the newer
    version, i.e. what a caller would download to update.
    """

    def __init__(self, registry: PackageRegistry, bus: EventBus) -> None:
        self.registry = registry
        self.bus = bus
        self._remote: Sequence[PackageRecord] = ()
        self._new: List[PackageRecord] = []
        self._outdated: List[PackageRecord] = []

    @property
    def remote_packages(self) -> Sequence[PackageRecord]:
        return tuple(self._remote)

    @property
    def new_packages(self) -> Sequence[PackageRecord]:
        return tuple(self._new)

    @property
    def outdated_packages(self) -> Sequence[PackageRecord]:
        return tuple(self._outdated)

    def set_remote_packages(self, packages: Sequence[PackageRecord]) -> None:
        """Replace the catalog wholesale and recompute."""

        self._remote = tuple(packages)
        self.recompute()

    def recompute(self) -> None:
        new: List[PackageRecord] = []
        outdated: List[PackageRecord] = []

        for remote in self._remote:
            index = self.registry.index_of(remote)
            if index == -1:
                new.append(remote)
                continue
            local = self.registry.update_remote_metadata(index, remote)
            if local.outdated:
                outdated.append(remote)

        self._new = new
        self._outdated = outdated
        logger.debug(
            "availability recomputed",
            extra={
                "stage": "reconcile",
                "remote": len(self._remote),
                "new": len(new),
                "outdated": len(outdated),
            },
        )
        self.bus.emit(
            AVAILABILITY_CHANGED,
            new=tuple(new),
            outdated=tuple(outdated),
        )
