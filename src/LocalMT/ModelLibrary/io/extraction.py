# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary.io.extraction",
#   "purpose": "Stream gzip-compressed tar archives to disk with member path validation",
#   "sections": [
#     {"id": "member-path", "name": "_validate_member_path", "anchor": "function-validate-member-path", "kind": "function"},
#     {"id": "write-member", "name": "_write_member", "anchor": "function-write-member", "kind": "function"},
#     {"id": "extract-tar-gz", "name": "extract_tar_gz", "anchor": "function-extract-tar-gz", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Streaming extraction of model package archives.

Packages are distributed as gzip-compressed tar files.  Extraction reads the
archive strictly front to back (``tarfile`` stream mode), so nothing beyond
the current entry is buffered in memory.  Entries are written under the
destination as they are encountered; when anything goes wrong the partial
output is left on disk for the caller to discard.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import zlib
from pathlib import Path, PurePosixPath
from typing import BinaryIO, List, Optional, Tuple

from ..errors import ExtractionError

__all__ = ["extract_tar_gz"]

_COPY_BUFFER_SIZE = 1 << 20


def _validate_member_path(member_name: str, *, allow_root: bool = False) -> PurePosixPath:
    """Validate archive member paths to prevent traversal attacks.

    With ``allow_root`` a name such as ``./`` maps to the empty path, the
    destination itself.
    """

    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute():
        raise ExtractionError(f"Unsafe absolute path detected in archive: {member_name}")
    parts = [part for part in relative.parts if part != "."]
    if not parts and allow_root:
        return PurePosixPath()
    if not parts:
        raise ExtractionError(f"Empty path detected in archive: {member_name}")
    if ".." in parts:
        raise ExtractionError(f"Unsafe path detected in archive: {member_name}")
    return PurePosixPath(*parts)


def _write_member(archive: tarfile.TarFile, member: tarfile.TarInfo, target: Path) -> None:
    """Copy the payload of ``member`` to ``target`` and restore its metadata."""

    target.parent.mkdir(parents=True, exist_ok=True)
    source = archive.extractfile(member)
    if source is None:
        raise ExtractionError(f"Failed to read archive member: {member.name}")
    with source, target.open("wb") as handle:
        shutil.copyfileobj(source, handle, _COPY_BUFFER_SIZE)
    os.chmod(target, (member.mode & 0o755) | 0o600)
    os.utime(target, (member.mtime, member.mtime))


def extract_tar_gz(
    stream: BinaryIO,
    destination: Path,
    *,
    logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Extract a gzip tar ``stream`` into ``destination``.

    Args:
        stream: Readable binary stream positioned at the start of the archive.
        destination: Directory receiving the extracted entries; created if missing.
        logger: Optional logger for structured ``stage="extract"`` records.

    Returns:
        Relative POSIX paths of every extracted entry in encounter order.
        Directory entries carry a trailing ``/``; an explicit archive root
        entry is reported as ``./``.  An archive without entries yields an
        empty list.

    Raises:
        ExtractionError: If the stream is not a readable gzip tar, a member is
            unsafe (absolute, traversing, link or device), or writing fails.
    """

    destination = Path(destination)
    extracted: List[str] = []
    directories: List[Tuple[Path, int]] = []
    source_name = getattr(stream, "name", "<stream>")

    try:
        destination.mkdir(parents=True, exist_ok=True)
        with tarfile.open(fileobj=stream, mode="r|gz") as archive:
            for member in archive:
                relative = _validate_member_path(member.name, allow_root=member.isdir())
                target = destination.joinpath(*relative.parts)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    directories.append((target, int(member.mtime)))
                    extracted.append(f"{relative.as_posix()}/")
                    continue
                if member.islnk() or member.issym():
                    raise ExtractionError(f"Unsafe link detected in archive: {member.name}")
                if not member.isfile():
                    raise ExtractionError(
                        f"Unsupported special file detected in archive: {member.name}"
                    )
                _write_member(archive, member, target)
                extracted.append(relative.as_posix())
        # Writing files bumps directory mtimes, so restore them last.
        for directory, mtime in reversed(directories):
            os.utime(directory, (mtime, mtime))
    except ExtractionError:
        if logger:
            logger.error(
                "archive extraction rejected",
                extra={"stage": "extract", "archive": str(source_name), "files": len(extracted)},
            )
        raise
    except (tarfile.TarError, EOFError, zlib.error) as exc:
        raise ExtractionError(f"Failed to read archive {source_name}: {exc}") from exc
    except OSError as exc:
        raise ExtractionError(
            f"Trouble while extracting {source_name} into {destination}: {exc}"
        ) from exc

    if logger:
        logger.info(
            "extracted tar archive",
            extra={"stage": "extract", "archive": str(source_name), "files": len(extracted)},
        )
    return extracted
