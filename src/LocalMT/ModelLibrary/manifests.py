"""Manifest reading, parsing, and validation for model packages.

Every package directory carries a small JSON manifest (``model_info.json``)
describing the package.  The directory path itself is not stored in the file;
it is injected as ``path`` when the manifest is read so that local records
always point at the directory they were loaded from.  Remote catalog entries
use the same shape with ``url`` in place of ``path``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError as JSONSchemaValidationError

from .errors import CatalogParseError, CorruptManifestError, MissingFieldError
from .models import Location, PackageRecord
from .settings import DEFAULT_MANIFEST_FILENAME

__all__ = [
    "STRING_FIELDS",
    "VERSION_FIELDS",
    "CRITICAL_FIELDS",
    "CATALOG_JSON_SCHEMA",
    "get_catalog_schema",
    "read_manifest",
    "parse_package",
    "validate_package",
    "write_manifest",
    "validate_catalog_document",
]

LOGGER = logging.getLogger("LocalMT.ModelLibrary")

STRING_FIELDS: Dict[str, str] = {
    "shortName": "short_name",
    "modelName": "display_name",
    "src": "source_language",
    "trg": "target_language",
    "type": "package_type",
}
VERSION_FIELDS = ("version", "API")
CRITICAL_FIELDS: Dict[Location, str] = {Location.LOCAL: "path", Location.REMOTE: "url"}

CATALOG_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Model catalog",
    "type": "object",
    "required": ["models"],
    "properties": {
        "models": {
            "type": "array",
            "items": {"type": "object"},
        }
    },
}

Draft202012Validator.check_schema(CATALOG_JSON_SCHEMA)
_CATALOG_VALIDATOR = Draft202012Validator(CATALOG_JSON_SCHEMA)


def get_catalog_schema() -> Dict[str, Any]:
    """Return a deep copy of the catalog JSON Schema."""

    return deepcopy(CATALOG_JSON_SCHEMA)


def read_manifest(
    directory: Path, filename: str = DEFAULT_MANIFEST_FILENAME
) -> Optional[Dict[str, Any]]:
    """Read the manifest inside ``directory`` and annotate it with ``path``.

    Returns:
        The parsed manifest with ``path`` set to ``directory``, or ``None``
        when the directory carries no manifest (it is not a package).

    Raises:
        CorruptManifestError: If the manifest exists but cannot be opened or
            does not hold a JSON object.
    """

    directory = Path(directory)
    manifest_path = directory / filename
    if not manifest_path.is_file():
        return None
    try:
        raw = manifest_path.read_bytes()
    except OSError as exc:
        raise CorruptManifestError(
            f"Failed to open json config file: {manifest_path}", path=manifest_path
        ) from exc
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptManifestError(
            f"Corrupted json file: {manifest_path}. Delete or redownload.", path=manifest_path
        ) from exc
    if not isinstance(payload, dict):
        raise CorruptManifestError(
            f"Corrupted json file: {manifest_path}. Delete or redownload.", path=manifest_path
        )
    payload["path"] = str(directory)
    return payload


def _coerce_version(value: Any, *, key: str) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    LOGGER.warning(
        "non-numeric manifest version",
        extra={"stage": "manifest", "field": key, "value": repr(value)},
    )
    return 0.0


def parse_package(payload: Mapping[str, Any], location: Location = Location.LOCAL) -> PackageRecord:
    """Build a :class:`PackageRecord` from manifest or catalog ``payload``.

    Descriptive fields are optional so that manifests written by older
    releases stay usable; missing strings become ``""`` and missing versions
    ``0.0``.  The field that anchors the record (``path`` for local, ``url``
    for remote) is mandatory.

    Raises:
        MissingFieldError: If the critical field is absent or empty.
    """

    critical_key = CRITICAL_FIELDS[location]
    critical_value = payload.get(critical_key)
    if not isinstance(critical_value, str) or not critical_value.strip():
        raise MissingFieldError(
            f"The json file provided is missing '{critical_key}' or is corrupted. "
            "Please redownload the model.",
            field=critical_key,
            path=payload.get("path") if location is Location.LOCAL else None,
        )

    fields: Dict[str, Any] = {}
    for key, attribute in STRING_FIELDS.items():
        value = payload.get(key)
        fields[attribute] = "" if value is None else str(value)

    prefix = "local" if location is Location.LOCAL else "remote"
    version = payload.get("version")
    api = payload.get("API")
    fields[f"{prefix}_version"] = 0.0 if version is None else _coerce_version(version, key="version")
    fields[f"{prefix}_api_version"] = 0.0 if api is None else _coerce_version(api, key="API")

    if location is Location.LOCAL:
        fields["install_path"] = critical_value
    else:
        fields["download_url"] = critical_value.strip()
    return PackageRecord(**fields)


def validate_package(
    directory: Path, filename: str = DEFAULT_MANIFEST_FILENAME
) -> Optional[PackageRecord]:
    """Validate the package at ``directory`` using local-context rules.

    Returns ``None`` when there is no manifest; raises a
    :class:`~LocalMT.ModelLibrary.errors.ManifestError` subclass when the
    manifest is present but unusable.
    """

    payload = read_manifest(directory, filename)
    if payload is None:
        return None
    return parse_package(payload, Location.LOCAL)


def write_manifest(
    directory: Path,
    record: PackageRecord,
    filename: str = DEFAULT_MANIFEST_FILENAME,
) -> Path:
    """Atomically persist ``record`` as the manifest of ``directory``.

    The ``path`` key is never written; it is derived from the directory at
    read time.
    """

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    payload = record.to_manifest()
    payload.pop("path", None)
    target = directory / filename
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=str(directory), delete=False, suffix=".tmp"
    ) as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.flush()
        try:
            os.fsync(handle.fileno())
        except OSError:
            pass
        temp_name = handle.name
    Path(temp_name).replace(target)
    return target


def validate_catalog_document(payload: Any, *, source: Optional[str] = None) -> None:
    """Validate the structure of a remote catalog document.

    Raises:
        CatalogParseError: If ``payload`` is not an object with a ``models`` list
            of objects.
    """

    try:
        _CATALOG_VALIDATOR.validate(payload)
    except JSONSchemaValidationError as exc:
        location = " -> ".join(str(part) for part in exc.path)
        message = exc.message
        if location:
            message = f"{location}: {message}"
        context = f" from {source}" if source else ""
        raise CatalogParseError(f"Catalog validation failed{context}: {message}") from exc
