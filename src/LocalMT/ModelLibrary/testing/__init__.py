"""Testing utilities for exercising the model library end-to-end.

Provides builders for package manifests, package directories and ``.tar.gz``
archives, plus an in-memory catalog server that plugs into HTTPX through
:class:`httpx.MockTransport`.
"""

from __future__ import annotations

import io
import json
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import httpx

from ..net import HttpxFetcher
from ..settings import DEFAULT_MANIFEST_FILENAME, CatalogConfiguration, LibrarySettings

__all__ = [
    "manifest_payload",
    "catalog_entry",
    "catalog_document",
    "write_package_dir",
    "build_package_archive",
    "write_package_archive",
    "make_settings",
    "CatalogServer",
]

Payload = Dict[str, Any]


def manifest_payload(
    short_name: str = "ende",
    src: str = "en",
    trg: str = "de",
    *,
    version: Optional[float] = 1.0,
    api: Optional[float] = 1.0,
    model_name: Optional[str] = None,
    package_type: str = "base",
    **extra: Any,
) -> Payload:
    """Return a manifest mapping as found in ``model_info.json``."""

    payload: Payload = {
        "shortName": short_name,
        "modelName": model_name or f"{src}-{trg} {package_type}",
        "src": src,
        "trg": trg,
        "type": package_type,
    }
    if version is not None:
        payload["version"] = version
    if api is not None:
        payload["API"] = api
    payload.update(extra)
    return payload


def catalog_entry(
    short_name: str = "ende",
    src: str = "en",
    trg: str = "de",
    *,
    version: Optional[float] = 1.0,
    url: Optional[str] = None,
    **extra: Any,
) -> Payload:
    """Return a remote catalog entry; ``url`` defaults to a predictable address."""

    payload = manifest_payload(short_name, src, trg, version=version, **extra)
    payload["url"] = url if url is not None else f"https://models.example.org/{src}{trg}.tar.gz"
    return payload


def catalog_document(entries: Iterable[Payload]) -> Payload:
    return {"models": list(entries)}


def write_package_dir(
    parent: Path,
    name: str,
    manifest: Optional[Union[Payload, str]] = None,
    *,
    files: Optional[Mapping[str, bytes]] = None,
    manifest_filename: str = DEFAULT_MANIFEST_FILENAME,
) -> Path:
    """Create ``parent/name`` holding a manifest and model files.

    ``manifest`` may be a mapping (written as JSON), a raw string (written
    verbatim, handy for corrupt manifests) or ``None`` for no manifest.
    """

    directory = Path(parent) / name
    directory.mkdir(parents=True, exist_ok=True)
    if isinstance(manifest, str):
        (directory / manifest_filename).write_text(manifest, encoding="utf-8")
    elif manifest is not None:
        (directory / manifest_filename).write_text(json.dumps(manifest), encoding="utf-8")
    if files is None:
        files = {"model.intgemm.alphas.bin": b"\x00" * 16}
    for relative, data in files.items():
        target = directory / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    return directory


def _add_bytes(archive: tarfile.TarFile, name: str, data: bytes, mtime: float) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    info.mtime = int(mtime)
    archive.addfile(info, io.BytesIO(data))


def _add_dir(archive: tarfile.TarFile, name: str, mtime: float) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    info.mtime = int(mtime)
    archive.addfile(info)


def build_package_archive(
    manifest: Optional[Union[Payload, str]] = None,
    *,
    root: Optional[str] = "en-de",
    files: Optional[Mapping[str, bytes]] = None,
    manifest_filename: str = DEFAULT_MANIFEST_FILENAME,
    mtime: Optional[float] = None,
    dot_root: bool = False,
) -> bytes:
    """Return the bytes of a gzip tar archive holding one package.

    Entries are placed under ``root/`` when ``root`` is given (the usual
    layout of published models) or at the top level otherwise.  ``dot_root``
    mimics ``tar -C dir .``: a leading ``./`` entry and ``./``-prefixed names.
    Pass ``manifest=None`` together with ``files={}`` for an archive with no
    entries.
    """

    stamp = time.time() if mtime is None else mtime
    prefix = f"{root}/" if root else ""
    if dot_root:
        prefix = "./" + prefix
    entries: Dict[str, bytes] = {}
    if isinstance(manifest, str):
        entries[manifest_filename] = manifest.encode("utf-8")
    elif manifest is not None:
        entries[manifest_filename] = json.dumps(manifest).encode("utf-8")
    entries.update(
        files if files is not None else {"model.intgemm.alphas.bin": b"\x00" * 16}
    )

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        if dot_root:
            _add_dir(archive, "./", stamp)
        if root and entries:
            _add_dir(archive, prefix.rstrip("/"), stamp)
        for relative, data in entries.items():
            _add_bytes(archive, prefix + relative, data, stamp)
    return buffer.getvalue()


def write_package_archive(
    path: Path, manifest: Optional[Union[Payload, str]] = None, **kwargs: Any
) -> Path:
    """Write :func:`build_package_archive` output to ``path``."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(build_package_archive(manifest, **kwargs))
    return path


def make_settings(base: Path, **overrides: Any) -> LibrarySettings:
    """Return settings rooted under ``base`` so nothing touches user directories."""

    base = Path(base)
    raw: Dict[str, Any] = {
        "managed_dir": base / "models",
        "search_dir": base / "search",
        "logging": {"log_dir": base / "logs"},
    }
    raw.update(overrides)
    return LibrarySettings.model_validate(raw)


@dataclass
class CatalogServer:
    """In-memory catalog endpoint.

    Attributes:
        document: JSON document served on every request; ``body`` wins when set.
        body: Raw response bytes, for malformed payloads.
        status_code: HTTP status returned.
        requests: Every request received, in order.
    """

    document: Optional[Payload] = None
    body: Optional[bytes] = None
    status_code: int = 200
    requests: List[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.body is not None:
            return httpx.Response(self.status_code, content=self.body)
        return httpx.Response(self.status_code, json=self.document or {"models": []})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def fetcher(self, config: Optional[CatalogConfiguration] = None) -> HttpxFetcher:
        """Return an :class:`HttpxFetcher` wired to this server."""

        return HttpxFetcher(config, transport=self.transport)
