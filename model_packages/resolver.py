"""Download URL resolution across the source precedence levels."""

from __future__ import annotations

import asyncio
import logging
import os

from huggingface_hub import constants as hf_constants

from .config import SOURCE_ENV_VAR, SourceConfig, SourceConfigLoader
from .errors import InvalidSourceError, SourceNotFoundError
from .models import (
    FileEntry,
    Manifest,
    ModelOptions,
    PackageDefaults,
    ResolvedSource,
    Source,
    SourceKind,
)

logger = logging.getLogger(__name__)

DIRECT_URL_PREFIXES = ("http://", "https://", "file://")
DIRECT_URL_SOURCE_NAME = "options-direct"


def redact_url(url: str) -> str:
    """Hide query strings, which may carry credentials, from log output."""
    base, sep, _ = url.partition("?")
    return f"{base}?[REDACTED]" if sep else url


class SourceResolver:
    """
    Resolve the download URL for a manifest file.

    Source name precedence (highest first):
    1. ModelOptions.source as a literal URL (returned as-is)
    2. ModelOptions.source as a source name
    3. MODELPACKAGES_SOURCE environment variable
    4. Project-level model-sources.json defaultSource
    5. User-level model-sources.json defaultSource
    6. PackageDefaults.source
    7. Manifest defaultSource

    The chosen name is looked up in the override config first, then in the
    manifest's own sources.
    """

    def __init__(self, loader: SourceConfigLoader | None = None):
        """
        Initialize resolver.

        Args:
            loader: Override config loader (default: standard locations)
        """
        self._loader = loader or SourceConfigLoader()

    def resolve(
        self,
        manifest: Manifest,
        file: FileEntry,
        options: ModelOptions | None = None,
        defaults: PackageDefaults | None = None,
        config: SourceConfig | None = None,
    ) -> ResolvedSource:
        """
        Resolve download URL and source name for one file.

        Args:
            manifest: Manifest the file belongs to
            file: File to resolve
            options: Per-call options
            defaults: Package-declared defaults
            config: Already-loaded override config (default: read the files)

        Returns:
            ResolvedSource with URL, source name and precedence level

        Raises:
            SourceNotFoundError: If the chosen name matches no source
            InvalidSourceError: If the source lacks fields its type needs
            ConfigurationError: If an override file is malformed
        """
        options = options or ModelOptions()
        defaults = defaults or PackageDefaults()

        explicit = options.source
        if _is_direct_url(explicit):
            options.report(
                f"Source resolved: direct URL from options ({redact_url(explicit)})",
                logger,
            )
            return ResolvedSource(
                url=explicit,
                source_name=DIRECT_URL_SOURCE_NAME,
                level="options (direct URL)",
            )

        if config is None:
            config = self._loader.load()
        source_name, level = self._select_source_name(manifest, config, options, defaults)
        options.report(f"Source resolved: '{source_name}' (from {level})", logger)

        source = config.get(source_name) or manifest.sources.get(source_name)
        if source is None:
            available = ", ".join(manifest.sources)
            raise SourceNotFoundError(
                f"Source '{source_name}' not found in model-sources.json or manifest. "
                f"Available manifest sources: [{available}]. "
                f"Set {SOURCE_ENV_VAR} or add a model-sources.json entry."
            )

        url = build_url(source, manifest, file)
        options.report(f"Download URL: {redact_url(url)}", logger)
        return ResolvedSource(url=url, source_name=source_name, level=level)

    async def resolve_async(
        self,
        manifest: Manifest,
        file: FileEntry,
        options: ModelOptions | None = None,
        defaults: PackageDefaults | None = None,
    ) -> ResolvedSource:
        """Same as resolve(), reading the override files in a worker thread."""
        config = None
        if not _is_direct_url(options.source if options else None):
            config = await asyncio.to_thread(self._loader.load)
        return self.resolve(manifest, file, options, defaults, config)

    @staticmethod
    def _select_source_name(
        manifest: Manifest,
        config: SourceConfig,
        options: ModelOptions,
        defaults: PackageDefaults,
    ) -> tuple[str, str]:
        """Pick the source name and the level that supplied it."""
        candidates = (
            (options.source, "options"),
            (os.environ.get(SOURCE_ENV_VAR), f"env:{SOURCE_ENV_VAR}"),
            (config.project_default, "project model-sources.json"),
            (config.user_default, "user model-sources.json"),
            (defaults.source, "package defaults"),
        )
        for name, level in candidates:
            if name:
                return name, level
        return manifest.default_source, "manifest default"


def build_url(source: Source, manifest: Manifest, file: FileEntry) -> str:
    """
    Build the download URL for a file from a resolved source.

    Raises:
        InvalidSourceError: If the source lacks fields its type needs
    """
    if source.kind is SourceKind.HUGGINGFACE:
        endpoint = (source.endpoint or hf_constants.ENDPOINT).rstrip("/")
        repo = source.repo or manifest.id
        revision = source.revision or manifest.revision or "main"
        return f"{endpoint}/{repo}/resolve/{revision}/{file.path}"

    if source.kind is SourceKind.DIRECT:
        if not source.url:
            raise InvalidSourceError(f"Direct source '{source.name}' must have a url")
        return source.url

    if source.kind is SourceKind.MIRROR:
        if not source.endpoint:
            raise InvalidSourceError(
                f"Mirror source '{source.name}' must have an endpoint"
            )
        return f"{source.endpoint.rstrip('/')}/{manifest.id}/{file.path}"

    raise InvalidSourceError(f"Unknown source type: {source.kind}")


def _is_direct_url(source: str | None) -> bool:
    return bool(source) and source.startswith(DIRECT_URL_PREFIXES)
