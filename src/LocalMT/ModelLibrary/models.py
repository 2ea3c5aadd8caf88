"""Package record data model shared by the registry, installer, and catalog."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple

__all__ = ["Location", "PackageIdentity", "PackageRecord"]

PackageIdentity = Tuple[str, str, str]


class Location(str, Enum):
    """Where a package record comes from."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(slots=True)
class PackageRecord:
    """One translation model package, installed locally or offered remotely.

    Attributes:
        short_name: Identity key component (``shortName`` in the manifest).
        display_name: Human readable name (``modelName``).
        source_language: Source language code (``src``).
        target_language: Target language code (``trg``).
        package_type: Model kind tag (``type``).
        local_version: Installed version; ``None`` for remote records.
        remote_version: Catalog version; ``None`` until the catalog is known.
        local_api_version: API version of the installed package.
        remote_api_version: API version advertised by the catalog.
        install_path: Package directory for local records.
        download_url: Archive URL for remote records.

    Examples:
        >>> record = PackageRecord(short_name="ende", source_language="en",
        ...                        target_language="de", local_version=1.0,
        ...                        install_path="/models/ende-1")
        >>> record.identity
        ('ende', 'en', 'de')
    """

    short_name: str = ""
    display_name: str = ""
    source_language: str = ""
    target_language: str = ""
    package_type: str = ""
    local_version: Optional[float] = None
    remote_version: Optional[float] = None
    local_api_version: Optional[float] = None
    remote_api_version: Optional[float] = None
    install_path: str = ""
    download_url: str = ""

    def __post_init__(self) -> None:
        if bool(self.install_path) == bool(self.download_url):
            raise ValueError(
                "a package record needs exactly one of install_path or download_url"
            )

    @property
    def is_local(self) -> bool:
        return bool(self.install_path)

    @property
    def is_remote(self) -> bool:
        return bool(self.download_url)

    @property
    def location(self) -> Location:
        return Location.LOCAL if self.is_local else Location.REMOTE

    @property
    def path(self) -> Optional[Path]:
        """Install directory as a :class:`Path`, ``None`` for remote records."""

        return Path(self.install_path) if self.install_path else None

    @property
    def identity(self) -> PackageIdentity:
        return (self.short_name, self.source_language, self.target_language)

    def is_same_package(self, other: "PackageRecord") -> bool:
        """Return ``True`` when ``other`` denotes the same logical package."""

        return self.identity == other.identity

    @property
    def version(self) -> Optional[float]:
        """The version that describes this record's own artefact."""

        return self.local_version if self.is_local else self.remote_version

    @property
    def outdated(self) -> bool:
        """A local package is outdated when the catalog offers a newer version."""

        if not self.is_local or self.remote_version is None:
            return False
        return self.remote_version > (self.local_version or 0.0)

    def sort_key(self) -> Tuple[str, str, str, str, float, str]:
        """Total order used for presentation: languages, then name, then version."""

        return (
            self.source_language,
            self.target_language,
            self.short_name,
            self.display_name,
            self.version or 0.0,
            self.install_path or self.download_url,
        )

    def __lt__(self, other: "PackageRecord") -> bool:
        if not isinstance(other, PackageRecord):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def to_manifest(self) -> Dict[str, object]:
        """Render the record in manifest/catalog form."""

        payload: Dict[str, object] = {
            "shortName": self.short_name,
            "modelName": self.display_name,
            "src": self.source_language,
            "trg": self.target_language,
            "type": self.package_type,
        }
        version = self.version
        if version is not None:
            payload["version"] = version
        api = self.local_api_version if self.is_local else self.remote_api_version
        if api is not None:
            payload["API"] = api
        if self.is_local:
            payload["path"] = self.install_path
        else:
            payload["url"] = self.download_url
        return payload
