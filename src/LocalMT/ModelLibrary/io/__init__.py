"""Filesystem and archive helpers for the model library."""

from .extraction import extract_tar_gz
from .filesystem import (
    common_path_prefix,
    has_archive_suffix,
    mask_sensitive_data,
    sanitize_filename,
    strip_archive_suffix,
)

__all__ = [
    "common_path_prefix",
    "extract_tar_gz",
    "has_archive_suffix",
    "mask_sensitive_data",
    "sanitize_filename",
    "strip_archive_suffix",
]
