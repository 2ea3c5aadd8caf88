"""Change notifications emitted by the registry, installer, and catalog.

Presentation layers (a table view, the CLI, tests) subscribe to an
:class:`EventBus` instead of reaching into the registry.  Delivery is
synchronous: ``emit`` returns only after every subscriber has seen the event,
so notifications arrive in exactly the order the mutations happened.

Event envelope:
  - type: namespaced event type (e.g., ``registry.inserted``, ``catalog.fetch_started``)
  - level: INFO|WARN|ERROR
  - payload: event-specific fields (index, record, message, category, ...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import ModelLibraryError

__all__ = [
    "Event",
    "EventBus",
    "Subscriber",
    "REGISTRY_INSERTED",
    "REGISTRY_CHANGED",
    "REGISTRY_REMOVED",
    "REGISTRY_LIST_CHANGED",
    "AVAILABILITY_CHANGED",
    "FETCH_STARTED",
    "FETCH_FINISHED",
    "INSTALL_DONE",
    "REMOVE_DONE",
    "ARCHIVE_DISCOVERED",
    "ERROR",
]

logger = logging.getLogger(__name__)

REGISTRY_INSERTED = "registry.inserted"
REGISTRY_CHANGED = "registry.changed"
REGISTRY_REMOVED = "registry.removed"
REGISTRY_LIST_CHANGED = "registry.list_changed"
AVAILABILITY_CHANGED = "catalog.availability_changed"
FETCH_STARTED = "catalog.fetch_started"
FETCH_FINISHED = "catalog.fetch_finished"
INSTALL_DONE = "install.done"
REMOVE_DONE = "remove.done"
ARCHIVE_DISCOVERED = "archive.discovered"
ERROR = "error"


@dataclass(frozen=True)
class Event:
    """A single notification."""

    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    level: str = "INFO"

    @property
    def message(self) -> Optional[str]:
        return self.payload.get("message")

    @property
    def category(self) -> Optional[str]:
        return self.payload.get("category")


Subscriber = Callable[[Event], None]


class EventBus:
    """Synchronous fan-out of :class:`Event` objects to subscribers."""

    def __init__(self) -> None:
        self._subscribers: List[Tuple[Subscriber, Optional[frozenset]]] = []

    def subscribe(
        self, callback: Subscriber, types: Optional[Iterable[str]] = None
    ) -> Callable[[], None]:
        """Register ``callback`` for all events, or only for ``types``.

        Returns:
            A callable that removes the subscription again.
        """

        entry = (callback, frozenset(types) if types is not None else None)
        self._subscribers.append(entry)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(entry)
            except ValueError:
                pass

        return _unsubscribe

    def emit(self, type: str, level: str = "INFO", **payload: Any) -> Event:
        """Deliver a new event to every interested subscriber and return it."""

        if level not in ("INFO", "WARN", "ERROR"):
            raise ValueError(f"Invalid level: {level}; must be INFO|WARN|ERROR")
        event = Event(type=type, payload=payload, level=level)
        for callback, types in list(self._subscribers):
            if types is not None and type not in types:
                continue
            try:
                callback(event)
            except Exception as exc:
                logger.error(
                    f"Error delivering {type} to {getattr(callback, '__name__', callback)!r}: {exc}"
                )
        return event

    def emit_error(self, exc: BaseException, **payload: Any) -> Event:
        """Emit an ``error`` event describing ``exc``."""

        category = exc.category if isinstance(exc, ModelLibraryError) else type(exc).__name__
        return self.emit(ERROR, level="ERROR", message=str(exc), category=category, **payload)
