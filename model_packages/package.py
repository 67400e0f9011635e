"""Fetch, cache and verify the files of a model manifest."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from .cache import get_cache_path, remove_cached_file, write_atomically
from .downloader import ModelDownloader
from .lock import DEFAULT_LOCK_TIMEOUT_SECONDS, LockManager
from .manifest import MANIFEST_FILENAME, load_manifest, load_manifest_resource, parse_manifest
from .models import (
    FileEntry,
    Manifest,
    ModelFiles,
    ModelInfo,
    ModelOptions,
    PackageDefaults,
)
from .resolver import SourceResolver
from .verifier import ModelVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageConfig:
    """Configuration for a model package."""

    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    """How long to wait for another process downloading the same file."""

    stale_lock_seconds: float | None = None
    """Break lock files older than this. None never breaks locks."""

    max_concurrent_files: int = 1
    """Files of one manifest downloaded at once by ensure_files()."""


class ModelPackage:
    """
    Make the files of a model manifest available locally.

    Steps for each file (ensure_file):
    1. Compute cache path
    2. Return it if already valid (no lock taken)
    3. Resolve source URL
    4. Acquire the cache path lock
    5. Re-check validity (another process may have finished meanwhile)
    6. Download to a temp file, verify, rename into place
    7. Release the lock

    Usage:
        package = ModelPackage.from_manifest_file("model-manifest.json")
        path = await package.ensure_model()
    """

    def __init__(
        self,
        manifest: Manifest,
        config: PackageConfig | None = None,
        defaults: PackageDefaults | None = None,
        resolver: SourceResolver | None = None,
        lock_manager: LockManager | None = None,
        downloader: ModelDownloader | None = None,
        verifier: ModelVerifier | None = None,
    ):
        """
        Initialize package.

        Args:
            manifest: Parsed manifest
            config: Package configuration
            defaults: Source and cache defaults declared by the package author
            resolver: Source resolver (default: standard config locations)
            lock_manager: Lock manager (default: built from config)
            downloader: Downloader (default: DownloadConfig defaults)
            verifier: Integrity verifier
        """
        self._manifest = manifest
        self._config = config or PackageConfig()
        self._defaults = defaults or PackageDefaults()
        self._resolver = resolver or SourceResolver()
        self._locks = lock_manager or LockManager(
            timeout_seconds=self._config.lock_timeout_seconds,
            stale_after_seconds=self._config.stale_lock_seconds,
        )
        self._downloader = downloader or ModelDownloader()
        self._verifier = verifier or ModelVerifier()

    # --- Construction ---

    @classmethod
    def from_manifest_file(cls, path: Path | str, **kwargs) -> ModelPackage:
        """Create from a manifest file on disk."""
        return cls(load_manifest(path), **kwargs)

    @classmethod
    def from_manifest_bytes(cls, data: bytes | str, **kwargs) -> ModelPackage:
        """Create from a manifest JSON document."""
        return cls(parse_manifest(data), **kwargs)

    @classmethod
    def from_manifest_resource(
        cls, package: str, resource: str = MANIFEST_FILENAME, **kwargs
    ) -> ModelPackage:
        """Create from a manifest shipped as package data."""
        return cls(load_manifest_resource(package, resource), **kwargs)

    @property
    def manifest(self) -> Manifest:
        return self._manifest

    # --- Ensure ---

    async def ensure_file(
        self, file: FileEntry, options: ModelOptions | None = None
    ) -> Path:
        """
        Make one manifest file present and verified in the cache.

        Idempotent: once the file is cached, further calls only re-hash it.

        Args:
            file: Manifest file entry
            options: Per-call options

        Returns:
            Absolute local path of the verified file

        Raises:
            SourceNotFoundError, InvalidSourceError: On source misconfiguration
            LockTimeoutError: If another process holds the lock too long
            ModelDownloadError: If the download fails
            IntegrityError: If the downloaded file fails verification
        """
        options = options or ModelOptions()
        cache_path = get_cache_path(self._manifest, file, options, self._defaults)

        if not options.force_redownload and await self._is_cached(file, cache_path):
            options.report(f"Model file already cached and verified at {cache_path}", logger)
            return cache_path

        resolved = await self._resolver.resolve_async(
            self._manifest, file, options, self._defaults
        )

        async with self._locks.locked(cache_path):
            if not options.force_redownload and await self._is_cached(file, cache_path):
                options.report(
                    f"Model file appeared in cache while waiting for lock: {cache_path}",
                    logger,
                )
                return cache_path

            async def download_and_verify(temp_path: Path) -> None:
                await self._downloader.download(resolved.url, temp_path, options)
                await self._verifier.verify(temp_path, file.sha256, file.size)

            await write_atomically(cache_path, download_and_verify)

        options.report(f"Model file cached at {cache_path}", logger)
        return cache_path

    async def ensure_model(self, options: ModelOptions | None = None) -> Path:
        """Ensure the primary file and return its path."""
        return await self.ensure_file(self._manifest.primary_file, options)

    async def ensure_files(self, options: ModelOptions | None = None) -> ModelFiles:
        """
        Ensure every manifest file.

        Files are processed one at a time unless max_concurrent_files > 1.
        The result keeps manifest order either way. In the parallel case the
        first failure cancels the remaining files before it is raised.

        Returns:
            ModelFiles mapping manifest path -> local path
        """
        if self._config.max_concurrent_files <= 1:
            paths = [await self.ensure_file(file, options) for file in self._manifest.files]
        else:
            semaphore = asyncio.Semaphore(self._config.max_concurrent_files)

            async def ensure_with_semaphore(file: FileEntry) -> Path:
                async with semaphore:
                    return await self.ensure_file(file, options)

            tasks = [
                asyncio.create_task(ensure_with_semaphore(file))
                for file in self._manifest.files
            ]
            try:
                paths = await asyncio.gather(*tasks)
            except BaseException:
                # Stop the other files and let them release locks and temp files
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        return ModelFiles(
            files={file.path: path for file, path in zip(self._manifest.files, paths)}
        )

    # --- Inspection ---

    def get_cache_path(
        self, file: FileEntry | None = None, options: ModelOptions | None = None
    ) -> Path:
        """Local cache path for a file (default: primary). No I/O."""
        file = file or self._manifest.primary_file
        return get_cache_path(self._manifest, file, options, self._defaults)

    def get_model_info(
        self, options: ModelOptions | None = None, file: FileEntry | None = None
    ) -> ModelInfo:
        """
        Describe where a file (default: primary) would come from and go to.

        Neither downloads nor writes anything.
        """
        file = file or self._manifest.primary_file
        cache_path = self.get_cache_path(file, options)
        resolved = self._resolver.resolve(self._manifest, file, options, self._defaults)

        return ModelInfo(
            model_id=self._manifest.id,
            revision=self._manifest.revision,
            file_name=file.name,
            sha256=file.sha256,
            expected_bytes=file.size,
            source_name=resolved.source_name,
            url=resolved.url,
            local_path=cache_path,
            is_cached=cache_path.is_file(),
        )

    async def verify_model(
        self, options: ModelOptions | None = None, file: FileEntry | None = None
    ) -> Path:
        """
        Re-verify a cached file (default: primary) without network access.

        Returns:
            Path of the verified file

        Raises:
            CachedFileNotFoundError: If the file isn't cached
            SizeMismatchError, HashMismatchError: On mismatch (file deleted)
        """
        file = file or self._manifest.primary_file
        cache_path = self.get_cache_path(file, options)
        await self._verifier.verify(cache_path, file.sha256, file.size)
        return cache_path

    def clear_cache(self, options: ModelOptions | None = None) -> list[Path]:
        """
        Delete the cached copy of every manifest file.

        Returns:
            Paths that were removed
        """
        removed = []
        for file in self._manifest.files:
            cache_path = self.get_cache_path(file, options)
            if remove_cached_file(cache_path):
                removed.append(cache_path)

        if removed:
            logger.info(f"Cleared {len(removed)} cached files for {self._manifest.id}")
        return removed

    async def _is_cached(self, file: FileEntry, cache_path: Path) -> bool:
        return await self._verifier.is_valid(cache_path, file.sha256, file.size)
