"""Factory functions for creating model packages."""

from __future__ import annotations

from pathlib import Path

import httpx

from .config import SourceConfigLoader
from .downloader import DownloadConfig, ModelDownloader
from .lock import LockManager
from .manifest import load_manifest
from .models import Manifest, PackageDefaults
from .package import ModelPackage, PackageConfig
from .resolver import SourceResolver
from .verifier import ModelVerifier


def create_model_package(
    manifest: Manifest | Path | str,
    cache_dir: Path | None = None,
    default_source: str | None = None,
    download_config: DownloadConfig | None = None,
    package_config: PackageConfig | None = None,
    project_dir: Path | None = None,
    user_config_dir: Path | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ModelPackage:
    """
    Create a fully-wired ModelPackage.

    This is the main entry point and the place to construct one package per
    manifest at startup; pass the instance to whatever needs the model.
    Handles all internal wiring of resolver, lock manager, downloader and
    verifier.

    Args:
        manifest: Parsed manifest or path to model-manifest.json
        cache_dir: Package default cache root (env and per-call options win)
        default_source: Package default source name (env, config files and
            per-call options win; the manifest's own default loses)
        download_config: Optional custom download config (uses defaults if None)
        package_config: Optional custom package config (uses defaults if None)
        project_dir: Directory holding the project-level model-sources.json
            (default: current working directory)
        user_config_dir: Directory holding the user-level model-sources.json
            (default: ~/.modelpackages)
        transport: Optional httpx transport for downloads

    Returns:
        Ready-to-use ModelPackage

    Example:
        package = create_model_package(Path("model-manifest.json"))
        path = await package.ensure_model()
    """
    if not isinstance(manifest, Manifest):
        manifest = load_manifest(manifest)

    package_config = package_config or PackageConfig()

    resolver = SourceResolver(
        SourceConfigLoader(user_dir=user_config_dir, project_dir=project_dir)
    )
    lock_manager = LockManager(
        timeout_seconds=package_config.lock_timeout_seconds,
        stale_after_seconds=package_config.stale_lock_seconds,
    )
    downloader = ModelDownloader(
        config=download_config or DownloadConfig(),
        transport=transport,
    )

    return ModelPackage(
        manifest,
        config=package_config,
        defaults=PackageDefaults(source=default_source, cache_dir=cache_dir),
        resolver=resolver,
        lock_manager=lock_manager,
        downloader=downloader,
        verifier=ModelVerifier(),
    )
