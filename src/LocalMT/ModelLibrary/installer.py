# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary.installer",
#   "purpose": "Install package archives into the managed directory via isolated scratch space",
#   "sections": [
#     {"id": "names", "name": "Destination Naming", "anchor": "NAM", "kind": "helpers"},
#     {"id": "installer", "name": "PackageInstaller", "anchor": "INS", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Package installation.

Installing an archive never writes into the managed directory until the
package has been validated:

1. extract into a fresh ``.extracting-*`` scratch directory,
2. locate the archive's own root folder (the common prefix of its entries),
3. validate the manifest found there,
4. rename that folder into the managed directory under a unique name,
5. re-read the manifest from its final location and register the package.

The scratch directory is removed on every exit path, so a failed install
leaves nothing behind in the managed directory.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Sequence

from .errors import ExtractionError, InstallError, ManifestError
from .events import INSTALL_DONE, EventBus
from .io import common_path_prefix, extract_tar_gz, sanitize_filename, strip_archive_suffix
from .manifests import validate_package
from .models import PackageRecord
from .registry import PackageRegistry

__all__ = ["SCRATCH_PREFIX", "PackageInstaller", "unique_destination"]

logger = logging.getLogger("LocalMT.ModelLibrary.installer")

SCRATCH_PREFIX = ".extracting-"

# --- Destination Naming -------------------------------------------------------


def unique_destination(parent: Path, base_name: str, timestamp: int) -> Path:
    """Return ``parent/<base_name>-<timestamp>``, adding ``-N`` if that exists."""

    candidate = parent / f"{base_name}-{timestamp}"
    counter = 1
    while candidate.exists():
        candidate = parent / f"{base_name}-{timestamp}-{counter}"
        counter += 1
    return candidate


# --- PackageInstaller ---------------------------------------------------------


class PackageInstaller:
    """Drive extraction, validation, publication, and registration of archives."""

    def __init__(
        self,
        managed_dir: Path,
        registry: PackageRegistry,
        bus: EventBus,
        *,
        scratch_dir: Optional[Path] = None,
        manifest_filename: str = "model_info.json",
        archive_suffixes: Sequence[str] = (".tar.gz",),
        on_installed: Optional[Callable[[PackageRecord], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.managed_dir = Path(managed_dir)
        self.scratch_dir = Path(scratch_dir) if scratch_dir is not None else self.managed_dir
        self.registry = registry
        self.bus = bus
        self.manifest_filename = manifest_filename
        self.archive_suffixes = tuple(archive_suffixes)
        self.on_installed = on_installed
        self.clock = clock

    def install_file(self, archive_path: Path, filename: Optional[str] = None) -> PackageRecord:
        """Install the archive stored at ``archive_path``."""

        archive_path = Path(archive_path)
        try:
            handle = archive_path.open("rb")
        except OSError as exc:
            raise ExtractionError(f"Could not open archive {archive_path}: {exc}") from exc
        with handle:
            return self.install(handle, filename or archive_path.name)

    def install(self, stream: BinaryIO, filename: Optional[str] = None) -> PackageRecord:
        """Install a package from a gzip tar ``stream``.

        Args:
            stream: Readable archive stream.
            filename: Source archive name used to name the package directory;
                defaults to the stream's own file name.

        Returns:
            The registered :class:`PackageRecord`.

        Raises:
            InstallError: If extraction, validation, or publication fails.
        """

        if not filename:
            filename = Path(getattr(stream, "name", "") or "model.tar.gz").name

        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
            scratch = Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=str(self.scratch_dir)))
        except OSError as exc:
            raise InstallError(
                f"Could not create temporary directory in {self.scratch_dir} "
                f"to extract the model archive to: {exc}"
            ) from exc

        try:
            destination = self._extract_and_publish(stream, filename, scratch)
        finally:
            if scratch.exists():
                shutil.rmtree(scratch, ignore_errors=True)

        try:
            record = validate_package(destination, self.manifest_filename)
        except ManifestError as exc:
            raise InstallError(f"Installed package at {destination} is unreadable: {exc}") from exc
        if record is None:
            raise InstallError(f"Installed package at {destination} lost its manifest")

        is_new = self.registry.insert(record)
        logger.info(
            "package installed",
            extra={
                "stage": "install",
                "archive": filename,
                "path": str(destination),
                "identity": record.identity,
                "new": is_new,
            },
        )
        if self.on_installed is not None:
            self.on_installed(record)
        self.bus.emit(INSTALL_DONE, record=record, new=is_new, archive=filename)
        return record

    def _extract_and_publish(self, stream: BinaryIO, filename: str, scratch: Path) -> Path:
        try:
            extracted = extract_tar_gz(stream, scratch, logger=logger)
        except ExtractionError as exc:
            raise InstallError(f"Trouble while extracting {filename}: {exc}") from exc
        logger.debug(
            "extracted entries",
            extra={"stage": "install", "archive": filename, "entries": extracted},
        )

        if not extracted:
            raise InstallError(f"Did not extract any files from the model archive {filename}.")

        prefix = common_path_prefix(extracted)
        if prefix is None:
            raise InstallError("Could not determine prefix path of extracted model.")
        package_root = scratch.joinpath(*prefix.parts)
        logger.debug(
            "common prefix",
            extra={"stage": "install", "archive": filename, "prefix": str(package_root)},
        )

        try:
            candidate = validate_package(package_root, self.manifest_filename)
        except ManifestError as exc:
            raise InstallError(f"Model archive {filename} is invalid: {exc}") from exc
        if candidate is None:
            raise InstallError(
                f"Failed to find, open or parse the {self.manifest_filename} in {filename}"
            )

        base_name = sanitize_filename(strip_archive_suffix(filename, self.archive_suffixes))
        destination = unique_destination(self.managed_dir, base_name, int(self.clock()))
        logger.debug(
            "publishing package",
            extra={"stage": "install", "from": str(package_root), "to": str(destination)},
        )
        try:
            package_root.rename(destination)
        except OSError as exc:
            raise InstallError(
                f"Could not move extracted model from {package_root} to {destination}: {exc}"
            ) from exc
        return destination
