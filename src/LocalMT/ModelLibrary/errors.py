"""Exception hierarchy shared across scanning, installation, and catalog refresh.

The model library touches the filesystem (archive extraction, directory moves,
recursive removal) and the network (catalog fetches).  This module groups the
failure modes into a small hierarchy so callers can react to broad categories
while still having access to specialised subclasses when finer-grained
handling is required.  The library facade turns every one of these into an
``error`` event; none of them is meant to terminate the process.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

__all__ = [
    "ModelLibraryError",
    "ConfigurationError",
    "UserConfigError",
    "ManifestError",
    "CorruptManifestError",
    "MissingFieldError",
    "ExtractionError",
    "InstallError",
    "RemovalError",
    "NetworkError",
    "CatalogParseError",
]


class ModelLibraryError(RuntimeError):
    """Base exception for model library failures."""

    @property
    def category(self) -> str:
        """Short cause category carried by error events."""

        return type(self).__name__


class ConfigurationError(ModelLibraryError):
    """Raised when the managed directory cannot be created or used."""


class UserConfigError(ModelLibraryError):
    """Raised when settings files or CLI arguments are invalid."""


class ManifestError(ModelLibraryError):
    """Raised when a package manifest exists but cannot be used."""

    def __init__(self, message: str, *, path: Optional[Union[str, Path]] = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class CorruptManifestError(ManifestError):
    """Raised when a manifest cannot be opened or is not a JSON object."""


class MissingFieldError(ManifestError):
    """Raised when the context-critical manifest field is absent."""

    def __init__(
        self,
        message: str,
        *,
        field: str,
        path: Optional[Union[str, Path]] = None,
    ) -> None:
        super().__init__(message, path=path)
        self.field = field


class ExtractionError(ModelLibraryError):
    """Raised when an archive stream cannot be read or its entries written."""


class InstallError(ModelLibraryError):
    """Raised when an extracted package cannot be validated or published."""


class RemovalError(ModelLibraryError):
    """Raised when an installed package cannot be deleted from disk."""


class NetworkError(ModelLibraryError):
    """Raised when the remote catalog cannot be retrieved."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CatalogParseError(ModelLibraryError):
    """Raised when the remote catalog document is malformed."""
