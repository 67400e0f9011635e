"""Cache path resolution and atomic writes for model files."""

from __future__ import annotations

import logging
import os
import sys
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path

from .config import CACHE_DIR_ENV_VAR
from .errors import ManifestParseError
from .models import FileEntry, Manifest, ModelOptions, PackageDefaults

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"


def default_cache_dir() -> Path:
    """
    Platform default cache root.

    Windows: %LOCALAPPDATA%/ModelPackages/ModelCache
    Elsewhere: ~/.cache/modelpackages
    """
    if sys.platform == "win32":
        local_app_data = os.environ.get("LOCALAPPDATA")
        base = Path(local_app_data) if local_app_data else Path.home() / "AppData" / "Local"
        return base / "ModelPackages" / "ModelCache"
    return Path.home() / ".cache" / "modelpackages"


def resolve_cache_dir(
    options: ModelOptions | None = None,
    defaults: PackageDefaults | None = None,
) -> Path:
    """
    Resolve the cache root.

    Precedence: options.cache_dir -> MODELPACKAGES_CACHE_DIR ->
    defaults.cache_dir -> platform default.
    """
    if options is not None and options.cache_dir:
        return Path(options.cache_dir)

    env_dir = os.environ.get(CACHE_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir)

    if defaults is not None and defaults.cache_dir:
        return Path(defaults.cache_dir)

    return default_cache_dir()


def get_cache_path(
    manifest: Manifest,
    file: FileEntry,
    options: ModelOptions | None = None,
    defaults: PackageDefaults | None = None,
) -> Path:
    """
    Compute the local path for a manifest file. Pure; touches no files.

    Cache structure:
        cache_root/
        ├── {org}/
        │   └── {model}/
        │       └── {revision}/
        │           ├── model.onnx
        │           ├── model.onnx.lock              (while downloading)
        │           └── model.onnx.partial.{id}      (while downloading)

    Raises:
        ManifestParseError: If a "." or ".." segment would leave the cache root
    """
    root = resolve_cache_dir(options, defaults)
    segments = [
        *_split_segments(manifest.id),
        *_split_segments(manifest.revision or "main"),
        file.name,
    ]
    if any(segment in (".", "..") for segment in segments):
        raise ManifestParseError(
            f"Cache path for {manifest.id}@{manifest.revision} ({file.path}) "
            f"would leave the cache root"
        )
    return root.joinpath(*segments)


async def write_atomically(
    target: Path,
    write: Callable[[Path], Awaitable[None]],
) -> Path:
    """
    Write a file via a temp sibling and rename it into place.

    The target is only ever absent, its previous complete content, or the
    new complete content. Concurrent writers to the same target must be
    serialized by the caller (see LockManager).

    Args:
        target: Final path
        write: Coroutine function that fills the temp path it is given

    Returns:
        The target path

    Raises:
        Whatever write raises; the temp file is removed first
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.with_name(f"{target.name}{PARTIAL_SUFFIX}.{uuid.uuid4().hex}")

    try:
        await write(temp_path)
        os.replace(temp_path, target)
    finally:
        # Only present if write or replace failed (or was cancelled)
        _remove_quietly(temp_path)

    logger.debug(f"Committed {target}")
    return target


def remove_cached_file(path: Path) -> bool:
    """
    Remove a cached file.

    Returns:
        True if removed, False if not found
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.info(f"Removed cached file {path}")
    return True


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove temp file {path}: {e}")


def _split_segments(value: str) -> list[str]:
    return [part for part in value.replace("\\", "/").split("/") if part]
