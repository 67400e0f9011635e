"""Custom exceptions for model package operations."""

from __future__ import annotations


class ModelError(Exception):
    """Base exception for model package errors."""

    pass


# --- Configuration errors ---


class ManifestParseError(ModelError):
    """
    Raised when a model manifest cannot be parsed.

    This can happen when:
    - Manifest is not valid JSON
    - model.id, model.revision, model.files, sources or defaultSource is missing
    - A file entry lacks path or sha256
    """

    pass


class ConfigurationError(ModelError):
    """
    Raised when a model-sources.json override file is malformed.

    This can happen when:
    - File is not valid JSON
    - "sources" is not a list
    - A source entry lacks name or type
    """

    pass


class SourceNotFoundError(ModelError):
    """
    Raised when the selected source name matches no configured source.

    This can happen when:
    - MODELPACKAGES_SOURCE names a source that doesn't exist
    - Manifest defaultSource is not a key of its sources
    """

    pass


class InvalidSourceError(ModelError):
    """
    Raised when a source is missing fields required by its type.

    This can happen when:
    - A direct source has no url
    - A mirror source has no endpoint
    """

    pass


# --- Lock errors ---


class LockTimeoutError(ModelError):
    """
    Raised when a cache lock cannot be acquired in time.

    This can happen when:
    - Another process is downloading the same file for longer than the timeout
    - A crashed process left its lock file behind
    """

    pass


# --- Download errors ---


class ModelNotFoundError(ModelError):
    """Raised when a model file cannot be found, locally or at its source."""

    pass


class ModelDownloadError(ModelError):
    """
    Raised when a model download fails.

    This can happen when:
    - Network/connection error
    - Rate limiting (HTTP 429) or server errors persisting after retries
    - Any other non-success HTTP status

    status_code is None for connection-level failures.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ModelDownloadError):
    """
    Raised when the source rejects the request (HTTP 401/403).

    This can happen when:
    - Repository is private and HF_TOKEN is not set
    - Token is invalid or lacks access
    """

    pass


class RemoteNotFoundError(ModelDownloadError, ModelNotFoundError):
    """
    Raised when the source has no file at the resolved URL (HTTP 404).

    This can happen when:
    - Source repo, revision or endpoint is misconfigured
    - File path in the manifest is wrong
    """

    pass


# --- Verification errors ---


class IntegrityError(ModelError):
    """Base exception for cached file verification failures."""

    pass


class CachedFileNotFoundError(IntegrityError, ModelNotFoundError):
    """Raised when verifying a file that is not in the cache."""

    pass


class SizeMismatchError(IntegrityError):
    """
    Raised when a file's size differs from the manifest size.

    This can happen when:
    - Download was truncated
    - Source serves a different file than the manifest describes

    The offending file is deleted before this is raised.
    """

    pass


class HashMismatchError(IntegrityError):
    """
    Raised when a file's SHA-256 doesn't match the manifest hash.

    This can happen when:
    - Cached file was modified or corrupted on disk
    - Source serves a different revision than the manifest describes
    - Corrupted download

    The offending file is deleted before this is raised.
    """

    pass
