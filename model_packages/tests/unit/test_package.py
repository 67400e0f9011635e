"""Unit tests for ModelPackage."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from model_packages import (
    CachedFileNotFoundError,
    HashMismatchError,
    LockManager,
    Manifest,
    ModelDownloader,
    ModelOptions,
    ModelPackage,
    PackageConfig,
    PackageDefaults,
    RemoteNotFoundError,
    SourceNotFoundError,
    SourceResolver,
    create_model_package,
)
from model_packages.lock import LOCK_SUFFIX


def _leftovers(directory: Path) -> list[str]:
    """Lock and partial files left in a cache directory."""
    if not directory.exists():
        return []
    return [
        p.name
        for p in directory.iterdir()
        if p.name.endswith(LOCK_SUFFIX) or ".partial." in p.name
    ]


class TestEnsureFile:
    """Tests for ModelPackage.ensure_file method."""

    @pytest.mark.asyncio
    async def test_downloads_verifies_and_caches(
        self, make_package, fake_source, cache_dir: Path, model_bytes: bytes
    ) -> None:
        package = make_package(fake_source.transport)

        path = await package.ensure_model()

        assert path == cache_dir / "org" / "model" / "main" / "model.onnx"
        assert path.read_bytes() == model_bytes
        assert str(fake_source.requests[0].url) == (
            "https://huggingface.co/org/model/resolve/main/onnx/model.onnx"
        )
        assert _leftovers(path.parent) == []

    @pytest.mark.asyncio
    async def test_is_idempotent(self, make_package, fake_source) -> None:
        """Second call returns the same path without downloading again."""
        package = make_package(fake_source.transport)

        first = await package.ensure_model()
        second = await package.ensure_model()

        assert first == second
        assert len(fake_source.requests) == 1

    @pytest.mark.asyncio
    async def test_cache_hit_takes_no_lock(
        self, manifest: Manifest, cache_dir: Path, model_bytes: bytes
    ) -> None:
        path = cache_dir / "org" / "model" / "main" / "model.onnx"
        path.parent.mkdir(parents=True)
        path.write_bytes(model_bytes)
        lock_manager = MagicMock(spec=LockManager)
        downloader = MagicMock(spec=ModelDownloader)
        package = ModelPackage(manifest, lock_manager=lock_manager, downloader=downloader)

        result = await package.ensure_model(ModelOptions(cache_dir=cache_dir))

        assert result == path
        lock_manager.locked.assert_not_called()
        downloader.download.assert_not_called()

    @pytest.mark.asyncio
    async def test_force_redownload_fetches_again(
        self, make_package, fake_source
    ) -> None:
        package = make_package(fake_source.transport)

        await package.ensure_model()
        await package.ensure_model(ModelOptions(force_redownload=True))

        assert len(fake_source.requests) == 2

    @pytest.mark.asyncio
    async def test_repairs_corrupted_cache(
        self, make_package, fake_source, model_bytes: bytes
    ) -> None:
        package = make_package(fake_source.transport)
        path = await package.ensure_model()
        path.write_bytes(b"tampered")

        repaired = await package.ensure_model()

        assert repaired.read_bytes() == model_bytes
        assert len(fake_source.requests) == 2

    @pytest.mark.asyncio
    async def test_bad_download_leaves_previous_file_untouched(
        self, make_package, make_source, model_bytes: bytes
    ) -> None:
        """Verification failure only discards the temp file."""
        good = make_package(make_source(None).transport)
        path = await good.ensure_model()

        bad_source = make_source({"onnx/model.onnx": b"y" * len(model_bytes)})
        bad = make_package(bad_source.transport)

        with pytest.raises(HashMismatchError):
            await bad.ensure_model(ModelOptions(force_redownload=True))

        assert path.read_bytes() == model_bytes
        assert _leftovers(path.parent) == []

    @pytest.mark.asyncio
    async def test_download_error_leaves_nothing_behind(
        self, make_package, make_source, cache_dir: Path
    ) -> None:
        package = make_package(make_source({}).transport)

        with pytest.raises(RemoteNotFoundError):
            await package.ensure_model()

        model_dir = cache_dir / "org" / "model" / "main"
        assert not (model_dir / "model.onnx").exists()
        assert _leftovers(model_dir) == []

    @pytest.mark.asyncio
    async def test_source_errors_surface_before_locking(
        self, make_package, fake_source, cache_dir: Path
    ) -> None:
        package = make_package(fake_source.transport)

        with pytest.raises(SourceNotFoundError):
            await package.ensure_model(ModelOptions(source="nowhere"))

        assert fake_source.requests == []
        assert not cache_dir.exists()

    @pytest.mark.asyncio
    async def test_literal_file_url_source(
        self, make_package, fake_source, tmp_path: Path, model_bytes: bytes
    ) -> None:
        local = tmp_path / "artifacts" / "model.onnx"
        local.parent.mkdir()
        local.write_bytes(model_bytes)
        package = make_package(fake_source.transport)

        path = await package.ensure_model(ModelOptions(source=local.as_uri()))

        assert path.read_bytes() == model_bytes
        assert fake_source.requests == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_download_once(
        self, make_package, model_bytes: bytes
    ) -> None:
        """N concurrent ensures of one path: one download, same path for all."""
        in_flight = 0
        max_in_flight = 0
        downloads = 0

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, max_in_flight, downloads
            in_flight += 1
            downloads += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.1)
            in_flight -= 1
            return httpx.Response(200, content=model_bytes)

        package = make_package(httpx.MockTransport(slow_handler))

        paths = await asyncio.gather(*(package.ensure_model() for _ in range(4)))

        assert downloads == 1
        assert max_in_flight == 1
        assert len(set(paths)) == 1
        assert paths[0].read_bytes() == model_bytes
        assert _leftovers(paths[0].parent) == []

    @pytest.mark.asyncio
    async def test_cancellation_cleans_up(
        self, make_package, cache_dir: Path
    ) -> None:
        started = asyncio.Event()

        async def hanging_handler(request: httpx.Request) -> httpx.Response:
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200, content=b"late")

        package = make_package(httpx.MockTransport(hanging_handler))
        task = asyncio.create_task(package.ensure_model())
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        model_dir = cache_dir / "org" / "model" / "main"
        assert not (model_dir / "model.onnx").exists()
        assert _leftovers(model_dir) == []

    @pytest.mark.asyncio
    async def test_reports_progress(self, make_package, fake_source) -> None:
        package = make_package(fake_source.transport)
        messages: list[str] = []

        await package.ensure_model(ModelOptions(progress=messages.append))

        assert messages[0] == "Source resolved: 'huggingface' (from manifest default)"
        assert messages[-1].startswith("Model file cached at ")


class TestEnsureFiles:
    """Tests for ModelPackage.ensure_files method."""

    @pytest.mark.asyncio
    async def test_returns_paths_in_manifest_order(
        self, make_package, fake_source, tokenizer_bytes: bytes
    ) -> None:
        package = make_package(fake_source.transport)

        files = await package.ensure_files()

        assert list(files) == ["onnx/model.onnx", "tokenizer.json"]
        assert files.primary_path.name == "model.onnx"
        assert files.get_path("tokenizer.json").read_bytes() == tokenizer_bytes
        assert files.model_directory == files.primary_path.parent
        assert files.has_file("tokenizer.json")

    @pytest.mark.asyncio
    async def test_parallel_variant_keeps_order(
        self, make_package, fake_source
    ) -> None:
        package = make_package(
            fake_source.transport, package_config=PackageConfig(max_concurrent_files=4)
        )

        files = await package.ensure_files()

        assert list(files) == ["onnx/model.onnx", "tokenizer.json"]
        assert len(fake_source.requests) == 2

    @pytest.mark.asyncio
    async def test_parallel_failure_cancels_remaining_files(
        self, make_package, cache_dir: Path
    ) -> None:
        """One failing file stops the others before ensure_files raises."""
        cancelled = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("tokenizer.json"):
                await asyncio.sleep(0.05)
                return httpx.Response(404)
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return httpx.Response(200, content=b"late")

        package = make_package(
            httpx.MockTransport(handler),
            package_config=PackageConfig(max_concurrent_files=2),
        )

        with pytest.raises(RemoteNotFoundError):
            await asyncio.wait_for(package.ensure_files(), timeout=5)

        assert cancelled.is_set()
        assert _leftovers(cache_dir / "org" / "model" / "main") == []

    @pytest.mark.asyncio
    async def test_unknown_manifest_path_lists_available(
        self, make_package, fake_source
    ) -> None:
        files = await make_package(fake_source.transport).ensure_files()

        with pytest.raises(KeyError, match="Available"):
            files.get_path("missing.bin")


class TestInspection:
    """Tests for info, verify and clear operations."""

    def test_model_info_resolves_without_io(
        self, make_package, fake_source, cache_dir: Path
    ) -> None:
        package = make_package(fake_source.transport)

        info = package.get_model_info()

        assert info.model_id == "org/model"
        assert info.file_name == "model.onnx"
        assert info.source_name == "huggingface"
        assert info.resolved_source == (
            "huggingface (https://huggingface.co/org/model/resolve/main/onnx/model.onnx)"
        )
        assert info.local_path == cache_dir / "org" / "model" / "main" / "model.onnx"
        assert info.is_cached is False
        assert fake_source.requests == []
        assert not cache_dir.exists()

    @pytest.mark.asyncio
    async def test_verify_model_checks_cached_file(
        self, make_package, fake_source
    ) -> None:
        package = make_package(fake_source.transport)
        path = await package.ensure_model()

        assert await package.verify_model() == path
        assert len(fake_source.requests) == 1

    @pytest.mark.asyncio
    async def test_verify_model_raises_when_not_cached(
        self, make_package, fake_source
    ) -> None:
        package = make_package(fake_source.transport)

        with pytest.raises(CachedFileNotFoundError):
            await package.verify_model()

    @pytest.mark.asyncio
    async def test_verify_model_deletes_corrupted_file(
        self, make_package, fake_source
    ) -> None:
        package = make_package(fake_source.transport)
        path = await package.ensure_model()
        corrupted = bytearray(path.read_bytes())
        corrupted[0] ^= 0xFF
        path.write_bytes(bytes(corrupted))

        with pytest.raises(HashMismatchError):
            await package.verify_model()

        assert not path.exists()

    @pytest.mark.asyncio
    async def test_clear_cache_removes_every_file(
        self, make_package, fake_source
    ) -> None:
        package = make_package(fake_source.transport)
        files = await package.ensure_files()

        removed = package.clear_cache()

        assert sorted(removed) == sorted(files.files.values())
        assert not any(p.exists() for p in removed)
        assert package.clear_cache() == []


class TestConstruction:
    """Tests for factory entry points."""

    def test_from_manifest_file(self, tmp_path: Path, manifest_dict: dict) -> None:
        path = tmp_path / "model-manifest.json"
        path.write_text(json.dumps(manifest_dict))

        package = ModelPackage.from_manifest_file(path)

        assert package.manifest.id == "org/model"

    def test_create_model_package_accepts_path(
        self, tmp_path: Path, manifest_dict: dict
    ) -> None:
        path = tmp_path / "model-manifest.json"
        path.write_text(json.dumps(manifest_dict))

        package = create_model_package(path, cache_dir=tmp_path / "cache")

        assert package.get_cache_path() == (
            tmp_path / "cache" / "org" / "model" / "main" / "model.onnx"
        )

    @pytest.mark.asyncio
    async def test_package_default_source_beats_manifest_default(
        self, manifest: Manifest, loader, cache_dir: Path, model_bytes: bytes
    ) -> None:
        downloader = MagicMock(spec=ModelDownloader)

        async def fake_download(url, destination, options):
            destination.write_bytes(model_bytes)

        downloader.download = AsyncMock(side_effect=fake_download)
        package = ModelPackage(
            manifest,
            defaults=PackageDefaults(source="mirror", cache_dir=cache_dir),
            resolver=SourceResolver(loader),
            downloader=downloader,
        )

        await package.ensure_model()

        url = downloader.download.await_args.args[0]
        assert url == "https://mirror.example.com/models/org/model/onnx/model.onnx"
