# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary.io.filesystem",
#   "purpose": "Provide filesystem utilities for sanitisation, masking, archive names, and path prefixes",
#   "sections": [
#     {"id": "sanitisation", "name": "Filename Sanitisation", "anchor": "SAN", "kind": "helpers"},
#     {"id": "masking", "name": "Sensitive Data Masking", "anchor": "MSK", "kind": "helpers"},
#     {"id": "archives", "name": "Archive Names", "anchor": "ARC", "kind": "helpers"},
#     {"id": "prefix", "name": "Common Path Prefix", "anchor": "PFX", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Filesystem helpers for the model library.

Responsibilities include sanitising directory names derived from archive
filenames, masking sensitive payloads before they reach log files, and
locating the shared root folder of an extracted archive.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence

__all__ = [
    "sanitize_filename",
    "mask_sensitive_data",
    "has_archive_suffix",
    "strip_archive_suffix",
    "common_path_prefix",
]


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename derived from ``filename``."""

    original = filename
    safe = filename.replace(os.sep, "_").replace("/", "_").replace("\\", "_")
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", safe)
    safe = safe.strip("._") or "model"
    if len(safe) > 200:
        safe = safe[:200]
    if safe != original:
        logging.getLogger("LocalMT.ModelLibrary").warning(
            "sanitized unsafe filename",
            extra={"stage": "sanitize", "original": original, "sanitized": safe},
        )
    return safe


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Return a copy of ``payload`` with common secret fields masked."""

    sensitive_keys = {"authorization", "api_key", "apikey", "token", "secret", "password"}

    def _mask_value(value: object, key_hint: Optional[str] = None) -> object:
        if isinstance(value, dict):
            return {
                sub_key: _mask_value(sub_value, str(sub_key).lower())
                for sub_key, sub_value in value.items()
            }
        if isinstance(value, list):
            return [_mask_value(item, key_hint) for item in value]
        if isinstance(value, str):
            lowered = value.lower()
            if key_hint in sensitive_keys:
                return "***masked***"
            if "apikey" in lowered or "bearer " in lowered:
                return "***masked***"
        return value

    masked: Dict[str, object] = {}
    for key, value in payload.items():
        lower = key.lower()
        if lower in sensitive_keys:
            masked[key] = "***masked***"
        else:
            masked[key] = _mask_value(value, lower)
    return masked


def has_archive_suffix(name: str, suffixes: Iterable[str]) -> bool:
    """Return ``True`` when ``name`` ends with one of ``suffixes`` (case-insensitive)."""

    lowered = name.lower()
    return any(lowered.endswith(suffix.lower()) for suffix in suffixes)


def strip_archive_suffix(name: str, suffixes: Sequence[str] = (".tar.gz",)) -> str:
    """Return ``name`` without its archive extension(s).

    Everything from the first occurrence of a recognised suffix onwards is
    dropped, so ``en-de.tar.gz`` and ``en-de.tar.gz.part`` both become ``en-de``.
    """

    lowered = name.lower()
    cut = len(name)
    for suffix in suffixes:
        index = lowered.find(suffix.lower())
        if index != -1:
            cut = min(cut, index)
    return name[:cut]


def _containing_segments(path: str) -> List[str]:
    normalized = path.replace("\\", "/")
    is_dir = normalized.endswith("/")
    parts = [part for part in PurePosixPath(normalized).parts if part not in {"", "."}]
    if not is_dir and parts:
        parts = parts[:-1]
    return parts


def _is_root_entry(path: str) -> bool:
    normalized = path.replace("\\", "/")
    return normalized.endswith("/") and not _containing_segments(normalized)


def common_path_prefix(paths: Sequence[str]) -> Optional[PurePosixPath]:
    """Return the deepest directory shared by all extracted ``paths``.

    Directory entries (trailing ``/``) contribute themselves, files contribute
    their parent, so a single file yields its containing folder.  An empty
    :class:`PurePosixPath` means the extraction root itself; ``None`` is only
    returned when ``paths`` is empty.  Root entries such as ``./`` contain
    every other entry and only count when nothing else was extracted.
    """

    if not paths:
        return None

    contents = [path for path in paths if not _is_root_entry(path)]
    if not contents:
        return PurePosixPath()

    prefix = _containing_segments(contents[0])
    for path in contents[1:]:
        segments = _containing_segments(path)
        shared = 0
        for left, right in zip(prefix, segments):
            if left != right:
                break
            shared += 1
        prefix = prefix[:shared]
        if not prefix:
            break
    return PurePosixPath(*prefix)
