"""Shared fixtures for model_packages unit tests."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from model_packages import (
    DownloadConfig,
    FileEntry,
    Manifest,
    ModelPackage,
    PackageConfig,
    SourceConfigLoader,
    create_model_package,
    parse_manifest,
)

MODEL_BYTES = b"onnx model weights " * 512
MODEL_SHA256 = hashlib.sha256(MODEL_BYTES).hexdigest()

TOKENIZER_BYTES = b'{"vocab": {"hello": 0}}'
TOKENIZER_SHA256 = hashlib.sha256(TOKENIZER_BYTES).hexdigest()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep the developer's environment and HF login out of tests."""
    for var in ("MODELPACKAGES_SOURCE", "MODELPACKAGES_CACHE_DIR", "HF_TOKEN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("huggingface_hub.constants.ENDPOINT", "https://huggingface.co")
    with patch("model_packages.downloader.get_token", return_value=None):
        yield


@pytest.fixture
def manifest_dict() -> dict:
    """Two-file manifest document with a huggingface default source."""
    return {
        "model": {
            "id": "org/model",
            "revision": "main",
            "files": [
                {
                    "path": "onnx/model.onnx",
                    "sha256": MODEL_SHA256,
                    "size": len(MODEL_BYTES),
                },
                {"path": "tokenizer.json", "sha256": TOKENIZER_SHA256, "size": None},
            ],
        },
        "sources": {
            "huggingface": {"type": "huggingface", "repo": "org/model"},
            "mirror": {"type": "mirror", "endpoint": "https://mirror.example.com/models/"},
        },
        "defaultSource": "huggingface",
    }


@pytest.fixture
def manifest(manifest_dict: dict) -> Manifest:
    return parse_manifest(json.dumps(manifest_dict))


@pytest.fixture
def model_file(manifest: Manifest) -> FileEntry:
    return manifest.primary_file


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "model_cache"


@pytest.fixture
def user_dir(tmp_path: Path) -> Path:
    path = tmp_path / "user"
    path.mkdir()
    return path


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def loader(user_dir: Path, project_dir: Path) -> SourceConfigLoader:
    """Loader reading only the temp user/project directories."""
    return SourceConfigLoader(user_dir=user_dir, project_dir=project_dir)


@pytest.fixture
def write_sources() -> Callable[[Path, dict], Path]:
    """Write a model-sources.json into a directory."""

    def _write(directory: Path, document: dict) -> Path:
        path = directory / "model-sources.json"
        path.write_text(json.dumps(document))
        return path

    return _write


@pytest.fixture
def download_config() -> DownloadConfig:
    """Download config with fast settings for tests."""
    return DownloadConfig(retry_base_seconds=0, progress_interval_seconds=0)


class FakeSource:
    """
    httpx handler serving manifest files by URL suffix.

    Records every request so tests can count attempts.
    """

    def __init__(self, files: dict[str, bytes] | None = None):
        self.files = files if files is not None else {
            "onnx/model.onnx": MODEL_BYTES,
            "tokenizer.json": TOKENIZER_BYTES,
        }
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, content in self.files.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(200, content=content)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def make_source() -> Callable[[dict[str, bytes]], FakeSource]:
    """FakeSource serving custom content."""
    return FakeSource


@pytest.fixture
def model_bytes() -> bytes:
    return MODEL_BYTES


@pytest.fixture
def tokenizer_bytes() -> bytes:
    return TOKENIZER_BYTES


@pytest.fixture
def make_package(
    manifest: Manifest,
    cache_dir: Path,
    user_dir: Path,
    project_dir: Path,
    download_config: DownloadConfig,
) -> Callable[..., ModelPackage]:
    """Build a fully-wired ModelPackage against a fake transport."""

    def _make(
        transport: httpx.AsyncBaseTransport,
        package_config: PackageConfig | None = None,
        target: Manifest | None = None,
    ) -> ModelPackage:
        return create_model_package(
            target or manifest,
            cache_dir=cache_dir,
            download_config=download_config,
            package_config=package_config,
            project_dir=project_dir,
            user_config_dir=user_dir,
            transport=transport,
        )

    return _make
