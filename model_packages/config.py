"""
Source override configuration.

This module provides access to:
- Environment variable names consumed by the library
- model-sources.json override files (user-level, then project-level)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError
from .models import Source

logger = logging.getLogger(__name__)

# Environment variables
SOURCE_ENV_VAR = "MODELPACKAGES_SOURCE"
CACHE_DIR_ENV_VAR = "MODELPACKAGES_CACHE_DIR"
TOKEN_ENV_VAR = "HF_TOKEN"  # Read through huggingface_hub.get_token()

SOURCES_FILENAME = "model-sources.json"
USER_CONFIG_DIRNAME = ".modelpackages"

_OPTIONAL_SOURCE_FIELDS = ("endpoint", "url", "repo", "revision")


@dataclass(frozen=True)
class SourceConfig:
    """
    Merged override configuration.

    Sources are keyed case-insensitively; project-level entries replace
    user-level entries with the same name.
    """

    sources: dict[str, Source] = field(default_factory=dict)
    user_default: str | None = None
    project_default: str | None = None

    @property
    def default_source(self) -> str | None:
        """Last non-empty defaultSource (project wins over user)."""
        return self.project_default or self.user_default

    def get(self, name: str) -> Source | None:
        """Find a configured source by name (case-insensitive)."""
        return self.sources.get(name.lower())


class SourceConfigLoader:
    """
    Read and merge model-sources.json files.

    Locations:
        ~/.modelpackages/model-sources.json   (user-level, loaded first)
        {project_dir}/model-sources.json      (project-level, loaded last)

    Either file may be absent.
    """

    def __init__(
        self,
        user_dir: Path | None = None,
        project_dir: Path | None = None,
    ):
        """
        Initialize loader.

        Args:
            user_dir: Directory holding the user-level file
                (default: ~/.modelpackages)
            project_dir: Directory holding the project-level file
                (default: current working directory at load time)
        """
        self._user_dir = user_dir
        self._project_dir = project_dir

    @property
    def user_file(self) -> Path:
        user_dir = self._user_dir or Path.home() / USER_CONFIG_DIRNAME
        return user_dir / SOURCES_FILENAME

    @property
    def project_file(self) -> Path:
        project_dir = self._project_dir or Path.cwd()
        return project_dir / SOURCES_FILENAME

    def load(self) -> SourceConfig:
        """
        Load and merge both files.

        Returns:
            Merged SourceConfig (empty if neither file exists)

        Raises:
            ConfigurationError: If a file exists but is malformed
        """
        sources: dict[str, Source] = {}

        user_sources, user_default = self._load_file(self.user_file)
        sources.update(user_sources)

        project_sources, project_default = self._load_file(self.project_file)
        sources.update(project_sources)

        return SourceConfig(
            sources=sources,
            user_default=user_default,
            project_default=project_default,
        )

    @staticmethod
    def _load_file(path: Path) -> tuple[dict[str, Source], str | None]:
        """Parse one override file. Missing files yield nothing."""
        if not path.is_file():
            return {}, None

        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a JSON object")

        entries = data.get("sources", [])
        if not isinstance(entries, list):
            raise ConfigurationError(f"'sources' in {path} must be a list")

        sources: dict[str, Source] = {}
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("name") or not entry.get("type"):
                raise ConfigurationError(
                    f"Every source in {path} needs a 'name' and a 'type'"
                )
            for key in ("name", "type", *_OPTIONAL_SOURCE_FIELDS):
                value = entry.get(key)
                if value is not None and not isinstance(value, str):
                    raise ConfigurationError(
                        f"Field '{key}' of source '{entry['name']}' in {path} "
                        f"must be a string"
                    )
            source = Source.from_dict(entry["name"], entry)
            sources[source.name.lower()] = source

        default_source = data.get("defaultSource")
        if default_source is not None and not isinstance(default_source, str):
            raise ConfigurationError(f"'defaultSource' in {path} must be a string")
        default_source = default_source or None
        logger.debug(
            f"Loaded {len(sources)} sources from {path} (default: {default_source})"
        )
        return sources, default_source
