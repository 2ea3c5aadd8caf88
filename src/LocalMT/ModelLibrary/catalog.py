# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary.catalog",
#   "purpose": "Parse the remote model catalog and run single-flight catalog refreshes",
#   "sections": [
#     {"id": "parse", "name": "Catalog Parsing", "anchor": "PAR", "kind": "api"},
#     {"id": "fetcher", "name": "CatalogFetcher", "anchor": "FET", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Remote catalog retrieval.

A refresh is a single asynchronous GET of the catalog document.  At most one
refresh is outstanding at a time; further :meth:`CatalogFetcher.refresh` calls
while one is in flight are ignored.  All state changes happen in the
completion step, which runs on the event loop that called ``refresh``, so no
locking is needed around the registry or the derived sets.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from .errors import CatalogParseError, MissingFieldError, ModelLibraryError
from .events import FETCH_FINISHED, FETCH_STARTED, EventBus
from .manifests import parse_package, validate_catalog_document
from .models import Location, PackageRecord
from .net import FetchBytes

__all__ = ["FetchState", "parse_catalog", "decode_catalog", "CatalogFetcher"]

logger = logging.getLogger("LocalMT.ModelLibrary.catalog")


class FetchState(str, Enum):
    """Request state of the catalog fetcher."""

    IDLE = "idle"
    IN_FLIGHT = "in_flight"


# --- Catalog Parsing ---------------------------------------------------------


def decode_catalog(body: bytes, *, source: Optional[str] = None) -> Any:
    """Decode a response body as JSON, raising :class:`CatalogParseError`."""

    try:
        return json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        context = f" from {source}" if source else ""
        raise CatalogParseError(f"Catalog document{context} is not valid JSON: {exc}") from exc


def parse_catalog(
    payload: Any,
    *,
    strict: bool = False,
    source: Optional[str] = None,
    on_invalid: Optional[Callable[[int, MissingFieldError], None]] = None,
) -> List[PackageRecord]:
    """Parse a catalog document into sorted remote records.

    Entries without a download URL are dropped individually and reported to
    ``on_invalid`` (index, error).  With ``strict=True`` the first such entry
    fails the whole document instead.

    Raises:
        CatalogParseError: If the document structure is invalid, or an entry
            is invalid while ``strict`` is set.
    """

    validate_catalog_document(payload, source=source)
    records: List[PackageRecord] = []
    for index, entry in enumerate(payload["models"]):
        try:
            records.append(parse_package(entry, Location.REMOTE))
        except MissingFieldError as exc:
            if strict:
                raise CatalogParseError(f"Catalog entry #{index} is invalid: {exc}") from exc
            logger.warning(
                "discarding invalid catalog entry",
                extra={"stage": "catalog", "index": index, "error": str(exc)},
            )
            if on_invalid is not None:
                on_invalid(index, exc)
    records.sort()
    return records


# --- CatalogFetcher ----------------------------------------------------------


class CatalogFetcher:
    """Single-flight fetcher for the remote catalog.

    Args:
        url: Catalog document URL.
        fetch: Async byte fetcher, e.g. :class:`~LocalMT.ModelLibrary.net.HttpxFetcher`.
        bus: Event bus receiving start/finish and error notifications.
        on_catalog: Called with the parsed records after a successful refresh.
        strict: Reject the whole catalog when any entry is invalid.
    """

    def __init__(
        self,
        url: str,
        fetch: FetchBytes,
        bus: EventBus,
        *,
        on_catalog: Optional[Callable[[Sequence[PackageRecord]], None]] = None,
        strict: bool = False,
    ) -> None:
        self.url = url
        self.fetch = fetch
        self.bus = bus
        self.on_catalog = on_catalog
        self.strict = strict
        self.state = FetchState.IDLE
        self._task: Optional["asyncio.Task[None]"] = None
        self._remote: Sequence[PackageRecord] = ()

    @property
    def is_fetching(self) -> bool:
        return self.state is FetchState.IN_FLIGHT

    @property
    def remote_packages(self) -> Sequence[PackageRecord]:
        return tuple(self._remote)

    def refresh(self) -> Optional["asyncio.Task[None]"]:
        """Start a catalog fetch unless one is already outstanding.

        Must be called from a running event loop.  Returns the scheduled task,
        or ``None`` when the call was a no-op.
        """

        if self.state is FetchState.IN_FLIGHT:
            logger.debug("catalog fetch already in flight", extra={"stage": "catalog"})
            return None
        loop = asyncio.get_running_loop()
        self.state = FetchState.IN_FLIGHT
        self.bus.emit(FETCH_STARTED, url=self.url)
        self._task = loop.create_task(self._run())
        return self._task

    async def wait(self) -> None:
        """Wait for the outstanding fetch, if any, to finish."""

        task = self._task
        if task is not None:
            await asyncio.shield(task)

    async def _run(self) -> None:
        try:
            body = await self.fetch(self.url)
            payload = decode_catalog(body, source=self.url)
            records = parse_catalog(
                payload,
                strict=self.strict,
                source=self.url,
                on_invalid=self._report_invalid_entry,
            )
        except ModelLibraryError as exc:
            logger.error(
                "catalog refresh failed",
                extra={"stage": "catalog", "url": self.url, "error": str(exc)},
            )
            self.bus.emit_error(exc, url=self.url)
        else:
            self._remote = tuple(records)
            logger.info(
                "catalog refreshed",
                extra={"stage": "catalog", "url": self.url, "models": len(records)},
            )
            if self.on_catalog is not None:
                self.on_catalog(self._remote)
        finally:
            self.state = FetchState.IDLE
            self._task = None
            self.bus.emit(FETCH_FINISHED, url=self.url)

    def _report_invalid_entry(self, index: int, exc: MissingFieldError) -> None:
        self.bus.emit_error(exc, url=self.url, index=index)
