"""Fetch, cache and verify model files declared by a manifest."""

from .cache import get_cache_path, resolve_cache_dir, write_atomically
from .config import SourceConfig, SourceConfigLoader
from .downloader import DownloadConfig, ModelDownloader
from .errors import (
    AuthenticationError,
    CachedFileNotFoundError,
    ConfigurationError,
    HashMismatchError,
    IntegrityError,
    InvalidSourceError,
    LockTimeoutError,
    ManifestParseError,
    ModelDownloadError,
    ModelError,
    ModelNotFoundError,
    RemoteNotFoundError,
    SizeMismatchError,
    SourceNotFoundError,
)
from .factory import create_model_package
from .lock import LockHandle, LockManager
from .manifest import load_manifest, load_manifest_resource, parse_manifest
from .models import (
    FileEntry,
    Manifest,
    ModelFiles,
    ModelInfo,
    ModelOptions,
    PackageDefaults,
    ResolvedSource,
    Source,
    SourceKind,
)
from .package import ModelPackage, PackageConfig
from .resolver import SourceResolver
from .verifier import ModelVerifier

__version__ = "0.1.0"

__all__ = [
    # Factory (main entry point)
    "create_model_package",
    "ModelPackage",
    # Manifest loading
    "parse_manifest",
    "load_manifest",
    "load_manifest_resource",
    # Errors
    "ModelError",
    "ManifestParseError",
    "ConfigurationError",
    "SourceNotFoundError",
    "InvalidSourceError",
    "LockTimeoutError",
    "ModelNotFoundError",
    "ModelDownloadError",
    "AuthenticationError",
    "RemoteNotFoundError",
    "IntegrityError",
    "CachedFileNotFoundError",
    "SizeMismatchError",
    "HashMismatchError",
    # Models
    "FileEntry",
    "Manifest",
    "ModelFiles",
    "ModelInfo",
    "ModelOptions",
    "PackageDefaults",
    "ResolvedSource",
    "Source",
    "SourceKind",
    # Config
    "DownloadConfig",
    "PackageConfig",
    "SourceConfig",
    # Components (for advanced usage/testing)
    "SourceConfigLoader",
    "SourceResolver",
    "LockManager",
    "LockHandle",
    "ModelDownloader",
    "ModelVerifier",
    "get_cache_path",
    "resolve_cache_dir",
    "write_atomically",
]
