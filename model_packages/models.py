"""Data models for model packages."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    """Addressing scheme of a model source."""

    HUGGINGFACE = "huggingface"
    DIRECT = "direct"
    MIRROR = "mirror"

    @classmethod
    def parse(cls, value: str) -> SourceKind:
        """Parse a type string, falling back to DIRECT for unknown types."""
        try:
            return cls(value.lower())
        except ValueError:
            logger.warning(f"Unknown source type '{value}', treating as direct")
            return cls.DIRECT


@dataclass(frozen=True)
class FileEntry:
    """A single file listed in a manifest."""

    path: str  # Relative path inside the source, e.g. "onnx/model.onnx"
    sha256: str  # Expected hex digest (64 chars)
    size: int | None = None  # Expected size in bytes, if known

    @property
    def name(self) -> str:
        """File name without directories."""
        return self.path.rsplit("/", 1)[-1]

    @classmethod
    def from_dict(cls, data: dict) -> FileEntry:
        """Create from manifest JSON."""
        return cls(
            path=data["path"],
            sha256=data["sha256"],
            size=data.get("size"),
        )


@dataclass(frozen=True)
class Source:
    """A named origin that model files can be fetched from."""

    name: str
    kind: SourceKind
    endpoint: str | None = None
    url: str | None = None
    repo: str | None = None
    revision: str | None = None

    @classmethod
    def from_dict(cls, name: str, data: dict) -> Source:
        """
        Create from a source JSON object.

        Used for both manifest sources (name is the mapping key) and
        model-sources.json entries (name is passed in from the "name" field).
        """
        return cls(
            name=name,
            kind=SourceKind.parse(data["type"]),
            endpoint=data.get("endpoint"),
            url=data.get("url"),
            repo=data.get("repo"),
            revision=data.get("revision"),
        )


@dataclass(frozen=True)
class Manifest:
    """
    Parsed model-manifest.json.

    Immutable after parse, so one instance can be shared by any number of
    concurrent operations.
    """

    id: str  # e.g. "sentence-transformers/all-MiniLM-L6-v2"
    revision: str
    files: tuple[FileEntry, ...]
    sources: Mapping[str, Source]
    default_source: str

    @property
    def primary_file(self) -> FileEntry:
        """First file in the manifest."""
        return self.files[0]

    def get_file(self, path: str) -> FileEntry:
        """Look up a file entry by its manifest path."""
        for entry in self.files:
            if entry.path == path:
                return entry
        available = ", ".join(f.path for f in self.files)
        raise KeyError(f"File '{path}' not found in manifest. Available: [{available}]")


@dataclass(frozen=True)
class PackageDefaults:
    """
    Defaults declared by whoever ships a manifest.

    Sits below environment and config files but above the manifest's own
    defaultSource in resolution order.
    """

    source: str | None = None
    cache_dir: Path | None = None


@dataclass(frozen=True)
class ModelOptions:
    """Per-call options. Never persisted or mutated by the library."""

    source: str | None = None
    """Named source key or a literal http(s):// or file:// URL."""

    cache_dir: Path | None = None
    """Overrides the cache root for this call."""

    token: str | None = None
    """Bearer token. Falls back to HF_TOKEN when unset."""

    force_redownload: bool = False
    """Skip the cache-hit checks and always download."""

    progress: Callable[[str], None] | None = None
    """Receives human-readable status lines."""

    def report(self, message: str, log: logging.Logger = logger) -> None:
        """Send a status line to the given logger and the progress callback."""
        log.info(message)
        if self.progress is not None:
            self.progress(message)


@dataclass(frozen=True)
class ResolvedSource:
    """Outcome of source resolution for one file."""

    url: str
    source_name: str
    level: str  # Which precedence level chose the source name


@dataclass(frozen=True)
class ModelInfo:
    """Read-only information about a resolved model file."""

    model_id: str
    revision: str
    file_name: str
    sha256: str
    expected_bytes: int | None
    source_name: str
    url: str
    local_path: Path
    is_cached: bool

    @property
    def resolved_source(self) -> str:
        """Source name with its URL, for display."""
        return f"{self.source_name} ({self.url})"


@dataclass(frozen=True)
class ModelFiles:
    """
    Local paths of every file in a manifest.

    Keyed by manifest path, in manifest order. The first entry is the
    primary model file.
    """

    files: Mapping[str, Path] = field(default_factory=dict)

    @property
    def primary_path(self) -> Path:
        """Local path of the primary model file."""
        return next(iter(self.files.values()))

    @property
    def model_directory(self) -> Path:
        """Directory containing the primary model file."""
        return self.primary_path.parent

    def get_path(self, manifest_path: str) -> Path:
        """Local path for a manifest file path."""
        try:
            return self.files[manifest_path]
        except KeyError:
            available = ", ".join(self.files)
            raise KeyError(
                f"File '{manifest_path}' not found in manifest. Available: [{available}]"
            ) from None

    def has_file(self, manifest_path: str) -> bool:
        return manifest_path in self.files

    def __iter__(self) -> Iterator[str]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)
