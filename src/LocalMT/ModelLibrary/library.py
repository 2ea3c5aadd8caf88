# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary.library",
#   "purpose": "Facade wiring registry, scanner, installer, catalog fetcher, and reconciler",
#   "sections": [
#     {"id": "removal", "name": "Removal State", "anchor": "REM", "kind": "helpers"},
#     {"id": "library", "name": "ModelLibrary", "anchor": "LIB", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""High-level entry point for managing a local translation model library.

:class:`ModelLibrary` owns the registry, the remote catalog, and the derived
"new"/"outdated" sets.  Its operations never raise library errors: failures
are logged and published as ``error`` events, and the operation returns a
falsy value.  Lower-level components (installer, scanner, fetcher) raise
typed exceptions and can be used directly when that is preferable.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence

from .catalog import CatalogFetcher
from .errors import ModelLibraryError, RemovalError
from .events import REMOVE_DONE, EventBus
from .installer import PackageInstaller
from .models import PackageRecord
from .net import FetchBytes, HttpxFetcher
from .reconcile import Reconciler
from .registry import PackageRegistry
from .scanner import DirectoryScanner, ScanResult
from .settings import LibrarySettings, ensure_managed_dir, get_default_settings

__all__ = ["RemovalState", "ModelLibrary"]

logger = logging.getLogger("LocalMT.ModelLibrary")


def _same_directory(left: str, right: str) -> bool:
    return Path(left).resolve() == Path(right).resolve()


# --- Removal State ------------------------------------------------------------


class RemovalState(str, Enum):
    """Progress of a package removal.

    The registry entry is dropped as soon as ``MANIFEST_DELETED`` is reached:
    without its manifest the directory is no longer loadable on the next
    scan, even if deleting the remaining files fails.
    """

    PRESENT = "present"
    MANIFEST_DELETED = "manifest_deleted"
    FULLY_DELETED = "fully_deleted"


# --- ModelLibrary -------------------------------------------------------------


class ModelLibrary:
    """Installed packages, remote catalog, and their reconciliation.

    Args:
        settings: Library settings; defaults to :func:`get_default_settings`.
        bus: Event bus shared by all components; a fresh one is created if omitted.
        fetch: Async byte fetcher for the catalog; defaults to :class:`HttpxFetcher`.

    Raises:
        ConfigurationError: If the managed directory cannot be created.
    """

    def __init__(
        self,
        settings: Optional[LibrarySettings] = None,
        *,
        bus: Optional[EventBus] = None,
        fetch: Optional[FetchBytes] = None,
    ) -> None:
        self.settings = settings or get_default_settings()
        self.managed_dir = ensure_managed_dir(self.settings)
        self.bus = bus or EventBus()
        self.registry = PackageRegistry(self.bus)
        self.reconciler = Reconciler(self.registry, self.bus)
        self.scanner = DirectoryScanner(
            self.registry,
            self.bus,
            manifest_filename=self.settings.manifest_filename,
            archive_suffixes=self.settings.archive_suffixes,
        )
        self.installer = PackageInstaller(
            self.managed_dir,
            self.registry,
            self.bus,
            scratch_dir=self.settings.effective_scratch_dir(),
            manifest_filename=self.settings.manifest_filename,
            archive_suffixes=self.settings.archive_suffixes,
        )
        self._owns_fetch = fetch is None
        self.fetcher = CatalogFetcher(
            self.settings.catalog.url,
            fetch or HttpxFetcher(self.settings.catalog),
            self.bus,
            on_catalog=self.reconciler.set_remote_packages,
            strict=self.settings.catalog.strict,
        )
        self._archives: List[str] = []

    # Accessors --------------------------------------------------------------

    @property
    def installed_packages(self) -> Sequence[PackageRecord]:
        return self.registry.list()

    @property
    def remote_packages(self) -> Sequence[PackageRecord]:
        return self.reconciler.remote_packages

    @property
    def new_packages(self) -> Sequence[PackageRecord]:
        return self.reconciler.new_packages

    @property
    def outdated_packages(self) -> Sequence[PackageRecord]:
        return self.reconciler.outdated_packages

    @property
    def pending_archives(self) -> Sequence[str]:
        return tuple(self._archives)

    @property
    def is_fetching(self) -> bool:
        return self.fetcher.is_fetching

    # Scanning ---------------------------------------------------------------

    def startup_load(self) -> List[ScanResult]:
        """Scan the managed directory, then the secondary search directory.

        Archives are only catalogued from the managed directory, since that is
        the only place they can be installed from.
        """

        results = [self.scan(self.managed_dir, catalogue_archives=True)]
        search_dir = self.settings.effective_search_dir()
        if search_dir.resolve() != self.managed_dir.resolve():
            results.append(self.scan(search_dir, catalogue_archives=False))
        return results

    def scan(self, directory: Path, *, catalogue_archives: bool = True) -> ScanResult:
        result = self.scanner.scan(directory, catalogue_archives=catalogue_archives)
        for name in result.archives:
            if name not in self._archives:
                self._archives.append(name)
        self.reconciler.recompute()
        return result

    # Installation -----------------------------------------------------------

    def install(self, stream: BinaryIO, filename: Optional[str] = None) -> Optional[PackageRecord]:
        """Install a package archive stream; ``None`` on failure."""

        try:
            record = self.installer.install(stream, filename)
        except ModelLibraryError as exc:
            logger.error(
                "package installation failed",
                extra={"stage": "install", "archive": filename, "error": str(exc)},
            )
            self.bus.emit_error(exc, archive=filename)
            return None
        self.reconciler.recompute()
        return record

    def install_file(
        self, archive_path: Path, filename: Optional[str] = None
    ) -> Optional[PackageRecord]:
        """Install the archive at ``archive_path``; ``None`` on failure."""

        archive_path = Path(archive_path)
        try:
            record = self.installer.install_file(archive_path, filename)
        except ModelLibraryError as exc:
            logger.error(
                "package installation failed",
                extra={"stage": "install", "archive": str(archive_path), "error": str(exc)},
            )
            self.bus.emit_error(exc, archive=str(archive_path))
            return None
        if archive_path.parent.resolve() == self.managed_dir.resolve():
            name = archive_path.name
            if name in self._archives:
                self._archives.remove(name)
        self.reconciler.recompute()
        return record

    # Removal ----------------------------------------------------------------

    def is_managed(self, record: PackageRecord) -> bool:
        """Return ``True`` for local packages stored inside the managed directory."""

        path = record.path
        if path is None:
            return False
        managed = self.managed_dir.resolve()
        resolved = path.resolve()
        return resolved != managed and resolved.is_relative_to(managed)

    def remove(self, record: PackageRecord) -> bool:
        """Delete an installed package from disk and from the registry.

        Packages outside the managed directory are never touched, and neither
        are records whose directory is no longer the registered copy of their
        package (for example the earlier result of a re-installed archive).
        """

        if not self.is_managed(record):
            self.bus.emit_error(
                RemovalError(
                    f"Refusing to remove {record.install_path or record.download_url}: "
                    f"not inside the managed directory {self.managed_dir}"
                ),
                record=record,
            )
            return False

        current = self.registry.find(record.identity)
        if current is None or not _same_directory(current.install_path, record.install_path):
            installed = current.install_path if current is not None else "nowhere"
            self.bus.emit_error(
                RemovalError(
                    f"Refusing to remove {record.install_path}: {record.short_name} is "
                    f"currently installed at {installed}"
                ),
                record=record,
            )
            return False

        state = self._delete_package_files(record)
        if state is RemovalState.PRESENT:
            return False

        removed = self.registry.remove(record)
        logger.info(
            "package removed",
            extra={
                "stage": "remove",
                "path": record.install_path,
                "state": state.value,
                "registered": removed,
            },
        )
        if not removed:
            return False
        self.bus.emit(REMOVE_DONE, record=record, state=state.value)
        self.reconciler.recompute()
        return True

    def _delete_package_files(self, record: PackageRecord) -> RemovalState:
        package_dir = Path(record.install_path)
        manifest_path = package_dir / self.settings.manifest_filename
        try:
            manifest_path.unlink()
        except FileNotFoundError:
            logger.debug(
                "manifest already gone",
                extra={"stage": "remove", "path": str(manifest_path)},
            )
        except OSError as exc:
            self.bus.emit_error(
                RemovalError(f"Could not delete {manifest_path}: {exc}"), record=record
            )
            return RemovalState.PRESENT

        try:
            shutil.rmtree(package_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            self.bus.emit_error(
                RemovalError(f"Could not completely remove the model directory {package_dir}: {exc}"),
                record=record,
            )
            return RemovalState.MANIFEST_DELETED
        return RemovalState.FULLY_DELETED

    # Catalog ----------------------------------------------------------------

    def refresh_catalog(self) -> Optional[asyncio.Task[None]]:
        """Start a catalog refresh; see :meth:`CatalogFetcher.refresh`."""

        return self.fetcher.refresh()

    async def refresh_catalog_and_wait(self) -> Sequence[PackageRecord]:
        """Refresh the catalog (or join the running refresh) and wait for it."""

        self.fetcher.refresh()
        await self.fetcher.wait()
        return self.remote_packages

    async def aclose(self) -> None:
        """Release the default HTTP client."""

        if self._owns_fetch and isinstance(self.fetcher.fetch, HttpxFetcher):
            await self.fetcher.fetch.aclose()
