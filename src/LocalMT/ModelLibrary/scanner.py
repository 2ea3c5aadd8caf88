"""Discover installed packages and stray archives in a directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Tuple

from .errors import ManifestError
from .events import ARCHIVE_DISCOVERED, EventBus
from .installer import SCRATCH_PREFIX
from .io import has_archive_suffix
from .manifests import validate_package
from .models import PackageRecord
from .registry import PackageRegistry

__all__ = ["ScanResult", "DirectoryScanner"]

logger = logging.getLogger("LocalMT.ModelLibrary.scanner")


@dataclass(slots=True)
class ScanResult:
    """Outcome of scanning one directory.

    Attributes:
        directory: Directory that was scanned.
        registered: Package records handed to the registry.
        corrupt: Package directories whose manifest could not be used.
        archives: Archive file names catalogued for later installation.
    """

    directory: Path
    registered: List[PackageRecord] = field(default_factory=list)
    corrupt: List[Path] = field(default_factory=list)
    archives: List[str] = field(default_factory=list)


class DirectoryScanner:
    """Register packages found in the immediate children of a directory."""

    def __init__(
        self,
        registry: PackageRegistry,
        bus: EventBus,
        *,
        manifest_filename: str = "model_info.json",
        archive_suffixes: Sequence[str] = (".tar.gz",),
    ) -> None:
        self.registry = registry
        self.bus = bus
        self.manifest_filename = manifest_filename
        self.archive_suffixes: Tuple[str, ...] = tuple(archive_suffixes)

    def scan(self, directory: Path, *, catalogue_archives: bool = True) -> ScanResult:
        """Scan ``directory`` without recursing.

        Subdirectories with a valid manifest are inserted into the registry,
        subdirectories without one are skipped, and broken manifests are
        reported as error events.  Files with an archive suffix are collected
        in :attr:`ScanResult.archives` when ``catalogue_archives`` is set.
        """

        directory = Path(directory)
        result = ScanResult(directory=directory)
        try:
            children = sorted(directory.iterdir())
        except FileNotFoundError:
            logger.debug(
                "scan directory missing", extra={"stage": "scan", "directory": str(directory)}
            )
            return result
        except OSError as exc:
            logger.warning(
                "scan directory unreadable",
                extra={"stage": "scan", "directory": str(directory), "error": str(exc)},
            )
            return result

        for child in children:
            if child.is_dir():
                if child.name.startswith(SCRATCH_PREFIX):
                    continue
                self._scan_package_dir(child, result)
            elif catalogue_archives and has_archive_suffix(child.name, self.archive_suffixes):
                result.archives.append(child.name)
                self.bus.emit(ARCHIVE_DISCOVERED, name=child.name, path=str(child))

        logger.info(
            "scanned directory",
            extra={
                "stage": "scan",
                "directory": str(directory),
                "registered": len(result.registered),
                "corrupt": len(result.corrupt),
                "archives": len(result.archives),
            },
        )
        return result

    def _scan_package_dir(self, child: Path, result: ScanResult) -> None:
        try:
            record = validate_package(child, self.manifest_filename)
        except ManifestError as exc:
            result.corrupt.append(child)
            logger.warning(
                "corrupt package manifest",
                extra={"stage": "scan", "path": str(child), "error": str(exc)},
            )
            self.bus.emit_error(exc, path=str(child))
            return
        if record is None:
            return
        self.registry.insert(record)
        result.registered.append(record)
