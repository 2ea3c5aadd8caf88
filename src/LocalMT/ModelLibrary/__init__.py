# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary",
#   "purpose": "Package initialization for LocalMT.ModelLibrary",
#   "sections": [
#     {"id": "getattr", "name": "__getattr__", "anchor": "function-getattr", "kind": "function"},
#     {"id": "dir", "name": "__dir__", "anchor": "function-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public API for the LocalMT translation model library.

The library keeps track of translation model packages installed on disk,
installs new packages from ``.tar.gz`` archives, and compares the installed
set against a remote catalog to find new and outdated models.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict, Tuple

__version__ = "0.3.0"

_EXPORTS: Dict[str, Tuple[str, str]] = {
    "ModelLibrary": (".library", "ModelLibrary"),
    "RemovalState": (".library", "RemovalState"),
    "PackageRecord": (".models", "PackageRecord"),
    "Location": (".models", "Location"),
    "PackageRegistry": (".registry", "PackageRegistry"),
    "PackageInstaller": (".installer", "PackageInstaller"),
    "DirectoryScanner": (".scanner", "DirectoryScanner"),
    "CatalogFetcher": (".catalog", "CatalogFetcher"),
    "Reconciler": (".reconcile", "Reconciler"),
    "EventBus": (".events", "EventBus"),
    "Event": (".events", "Event"),
    "LibrarySettings": (".settings", "LibrarySettings"),
    "load_settings": (".settings", "load_settings"),
    "extract_tar_gz": (".io", "extract_tar_gz"),
    "validate_package": (".manifests", "validate_package"),
    "ModelLibraryError": (".errors", "ModelLibraryError"),
}

__all__ = [*_EXPORTS, "__version__"]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .catalog import CatalogFetcher
    from .errors import ModelLibraryError
    from .events import Event, EventBus
    from .installer import PackageInstaller
    from .io import extract_tar_gz
    from .library import ModelLibrary, RemovalState
    from .manifests import validate_package
    from .models import Location, PackageRecord
    from .reconcile import Reconciler
    from .registry import PackageRegistry
    from .scanner import DirectoryScanner
    from .settings import LibrarySettings, load_settings


def __getattr__(name: str) -> Any:
    """Lazily import exports so importing the package stays cheap."""

    target = _EXPORTS.get(name)
    if target is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    module = import_module(target[0], __name__)
    value = getattr(module, target[1])
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    """Expose lazily-populated attributes in ``dir()`` results."""

    return sorted(set(globals()) | set(__all__))
