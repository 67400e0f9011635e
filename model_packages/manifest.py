"""Loading and parsing of model-manifest.json."""

from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .errors import ManifestParseError
from .models import FileEntry, Manifest, Source

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "model-manifest.json"


def parse_manifest(data: bytes | str) -> Manifest:
    """
    Parse a manifest document.

    Args:
        data: Raw JSON document

    Returns:
        Parsed, immutable Manifest

    Raises:
        ManifestParseError: If the document is not JSON or a required field
            is absent or of the wrong type
    """
    try:
        document = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestParseError(f"Invalid JSON in model manifest: {e}") from e

    if not isinstance(document, dict):
        raise ManifestParseError("Model manifest must be a JSON object")

    model = _require(document, "model", dict, "manifest")
    model_id = _require(model, "id", str, "model")
    revision = _require(model, "revision", str, "model")
    _reject_dot_segments(model_id, "model.id")
    _reject_dot_segments(revision, "model.revision")
    raw_files = _require(model, "files", list, "model")
    if not raw_files:
        raise ManifestParseError("model.files must list at least one file")

    files = []
    for index, raw in enumerate(raw_files):
        where = f"model.files[{index}]"
        if not isinstance(raw, dict):
            raise ManifestParseError(f"{where} must be an object")
        _require(raw, "path", str, where)
        _reject_dot_segments(raw["path"], f"{where}.path")
        _require(raw, "sha256", str, where)
        size = raw.get("size")
        if size is not None and (not isinstance(size, int) or isinstance(size, bool)):
            raise ManifestParseError(f"{where}.size must be an integer or null")
        files.append(FileEntry.from_dict(raw))

    raw_sources = _require(document, "sources", dict, "manifest")
    sources = {}
    for name, raw in raw_sources.items():
        where = f"sources.{name}"
        if not isinstance(raw, dict):
            raise ManifestParseError(f"{where} must be an object")
        _require(raw, "type", str, where)
        sources[name] = Source.from_dict(name, raw)

    default_source = _require(document, "defaultSource", str, "manifest")

    manifest = Manifest(
        id=model_id,
        revision=revision,
        files=tuple(files),
        sources=MappingProxyType(sources),
        default_source=default_source,
    )
    logger.debug(
        f"Parsed manifest for {manifest.id}@{manifest.revision} "
        f"({len(manifest.files)} files, {len(manifest.sources)} sources)"
    )
    return manifest


def load_manifest(path: Path | str) -> Manifest:
    """
    Load a manifest from a file on disk.

    Raises:
        ManifestParseError: If the file is missing or cannot be parsed
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError as e:
        raise ManifestParseError(f"Model manifest not found: {path}") from e
    return parse_manifest(data)


def load_manifest_resource(package: str, resource: str = MANIFEST_FILENAME) -> Manifest:
    """
    Load a manifest shipped as package data.

    The resource is addressed by its exact name inside the given package,
    e.g. load_manifest_resource("my_model_pkg") for
    my_model_pkg/model-manifest.json.

    Raises:
        ManifestParseError: If the resource does not exist or cannot be parsed
    """
    try:
        data = resources.files(package).joinpath(resource).read_bytes()
    except (FileNotFoundError, ModuleNotFoundError) as e:
        raise ManifestParseError(
            f"Manifest resource '{resource}' not found in package '{package}'"
        ) from e
    return parse_manifest(data)


def _require(container: dict, key: str, expected: type, where: str) -> Any:
    """Fetch a required field, checking its JSON type."""
    if key not in container or container[key] is None:
        raise ManifestParseError(f"Missing required field '{key}' in {where}")
    value = container[key]
    if not isinstance(value, expected):
        raise ManifestParseError(
            f"Field '{key}' in {where} must be {_JSON_TYPE_NAMES[expected]}"
        )
    if expected is str and not value:
        raise ManifestParseError(f"Field '{key}' in {where} must not be empty")
    return value


_JSON_TYPE_NAMES = {dict: "an object", list: "an array", str: "a string"}


def _reject_dot_segments(value: str, where: str) -> None:
    """Cache paths are built from these values, so '.' and '..' are not allowed."""
    segments = value.replace("\\", "/").split("/")
    if any(segment in (".", "..") for segment in segments):
        raise ManifestParseError(f"{where} must not contain '.' or '..' segments: {value!r}")
