"""Streaming model file downloader with retry."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx
from huggingface_hub import constants as hf_constants
from huggingface_hub import get_token
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import AuthenticationError, ModelDownloadError, RemoteNotFoundError
from .models import ModelOptions
from .resolver import redact_url

logger = logging.getLogger(__name__)

USER_AGENT = "model-packages/0.1.0"
_MB = 1024 * 1024


@dataclass
class DownloadConfig:
    """Configuration for model downloads."""

    max_attempts: int = 3
    retry_base_seconds: float = 2.0  # 2s -> 4s (2^attempt)
    chunk_size: int = 81920  # 80 KiB
    progress_interval_seconds: float = 5.0
    timeout_seconds: float | None = None  # None: rely on caller cancellation
    user_agent: str = USER_AGENT


def is_transient(error: BaseException) -> bool:
    """
    Whether a failed attempt is worth retrying.

    Retries rate limiting (429), server errors (5xx) and connection-level
    failures without a status code. Never retries 401/403/404.
    """
    if not isinstance(error, ModelDownloadError):
        return False
    if error.status_code is None:
        return True
    return error.status_code == 429 or error.status_code >= 500


class ModelDownloader:
    """
    Download model files over HTTP(S) or from file:// URLs.

    Features:
    - Streaming writes (files never held in memory)
    - Bearer token auth (ModelOptions.token; HF_TOKEN or the stored HF
      login only for requests to the HuggingFace endpoint host)
    - Retry with exponential backoff on transient failures (2s -> 4s)
    - Progress lines at most every 5 seconds

    Every attempt rewrites the destination from byte zero.
    """

    def __init__(
        self,
        config: DownloadConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize downloader.

        Args:
            config: Download configuration
            transport: Optional httpx transport (for proxies or tests)
        """
        self._config = config or DownloadConfig()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        """Create a new HTTP client for a download."""
        return httpx.AsyncClient(
            transport=self._transport,
            headers={"User-Agent": self._config.user_agent},
            timeout=self._config.timeout_seconds,
            follow_redirects=True,
        )

    async def download(
        self,
        url: str,
        destination: Path,
        options: ModelOptions | None = None,
    ) -> None:
        """
        Download url to destination.

        Args:
            url: http(s):// or file:// URL
            destination: File to write (overwritten)
            options: Per-call options (token, progress callback)

        Raises:
            AuthenticationError: On HTTP 401/403
            RemoteNotFoundError: On HTTP 404
            ModelDownloadError: On other failures, after retries
            OSError: On local file:// copy failures
        """
        options = options or ModelOptions()

        if url.lower().startswith("file://"):
            await self._copy_local(url, destination, options)
            return

        def _log_retry(retry_state) -> None:
            exc = retry_state.outcome.exception()
            wait_time = retry_state.next_action.sleep
            options.report(
                f"Download attempt {retry_state.attempt_number}/{self._config.max_attempts} "
                f"failed ({exc}). Retrying in {wait_time:.0f}s...",
                logger,
            )

        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=self._config.retry_base_seconds),
            stop=stop_after_attempt(self._config.max_attempts),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                await self._download_once(url, destination, options)

    async def _download_once(
        self, url: str, destination: Path, options: ModelOptions
    ) -> None:
        """Single streaming GET attempt."""
        headers = {}
        token = options.token
        if token is None and _is_hf_endpoint(url):
            token = get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        display_url = redact_url(url)
        options.report(f"Downloading from {display_url}...", logger)

        async with self._client() as client:
            try:
                async with client.stream("GET", url, headers=headers) as response:
                    self._raise_for_status(response, display_url)

                    total = _content_length(response)
                    total_text = f"{total / _MB:.1f} MB" if total else "unknown"
                    logger.debug(f"Content-Length: {total_text}")

                    received = 0
                    last_report = time.monotonic()
                    with open(destination, "wb") as f:
                        async for chunk in response.aiter_bytes(self._config.chunk_size):
                            await asyncio.to_thread(f.write, chunk)
                            received += len(chunk)

                            now = time.monotonic()
                            if now - last_report >= self._config.progress_interval_seconds:
                                options.report(_progress_line(received, total), logger)
                                last_report = now

            except httpx.RequestError as e:
                raise ModelDownloadError(
                    f"Connection error downloading {display_url}: {e}"
                ) from e

        options.report(f"Download complete: {received / _MB:.1f} MB", logger)

    @staticmethod
    def _raise_for_status(response: httpx.Response, display_url: str) -> None:
        """Map non-success statuses to typed errors."""
        status = response.status_code
        if response.is_success:
            return
        if status in (401, 403):
            raise AuthenticationError(
                f"HTTP {status}: Authentication failed for {display_url}. "
                f"Set HF_TOKEN for private repos or choose another source "
                f"with MODELPACKAGES_SOURCE.",
                status_code=status,
            )
        if status == 404:
            raise RemoteNotFoundError(
                f"HTTP 404: Model file not found at {display_url}. "
                f"Check the manifest source configuration.",
                status_code=status,
            )
        raise ModelDownloadError(
            f"HTTP {status}: Download failed from {display_url}",
            status_code=status,
        )

    async def _copy_local(
        self, url: str, destination: Path, options: ModelOptions
    ) -> None:
        """Copy a file:// source in chunks. No retry."""
        source_path = Path(url2pathname(urlparse(url).path))
        options.report(f"Copying from local path: {source_path}", logger)

        copied = 0
        with open(source_path, "rb") as src, open(destination, "wb") as dst:
            while chunk := await asyncio.to_thread(src.read, self._config.chunk_size):
                await asyncio.to_thread(dst.write, chunk)
                copied += len(chunk)

        options.report(f"Copy complete: {copied / _MB:.1f} MB", logger)


def _content_length(response: httpx.Response) -> int | None:
    value = response.headers.get("Content-Length")
    try:
        return int(value) if value else None
    except ValueError:
        return None


def _progress_line(received: int, total: int | None) -> str:
    if total:
        return (
            f"Progress: {received / _MB:.1f} MB / {total / _MB:.1f} MB "
            f"({100.0 * received / total:.1f}%)"
        )
    return f"Progress: {received / _MB:.1f} MB downloaded"


def _is_hf_endpoint(url: str) -> bool:
    """Whether url points at the HuggingFace endpoint host."""
    return urlparse(url).hostname == urlparse(hf_constants.ENDPOINT).hostname
