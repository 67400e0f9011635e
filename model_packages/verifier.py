"""Model file integrity verification (size, SHA-256)."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path

from .errors import CachedFileNotFoundError, HashMismatchError, SizeMismatchError

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 81920  # 80 KiB

_REMEDY = (
    "The file has been deleted. Force a redownload or fix the source configuration."
)


class ModelVerifier:
    """
    Verify model file integrity.

    Verification steps:
    1. File exists
    2. Size matches the manifest size (when the manifest has one)
    3. Streaming SHA-256 matches the manifest hash (case-insensitive)

    verify() deletes files that fail 2 or 3; is_valid() never deletes.
    """

    async def verify(
        self,
        file_path: Path,
        expected_sha256: str,
        expected_size: int | None = None,
    ) -> None:
        """
        Verify a file, deleting it on mismatch.

        Args:
            file_path: Path to model file
            expected_sha256: Expected hex digest
            expected_size: Expected size in bytes, if known

        Raises:
            CachedFileNotFoundError: If the file doesn't exist
            SizeMismatchError: If size differs (file deleted)
            HashMismatchError: If hash differs (file deleted)
        """
        if not file_path.is_file():
            raise CachedFileNotFoundError(f"Model file not found at {file_path}")

        if expected_size is not None:
            actual_size = file_path.stat().st_size
            if actual_size != expected_size:
                file_path.unlink(missing_ok=True)
                raise SizeMismatchError(
                    f"Size mismatch for {file_path}: expected {expected_size} bytes, "
                    f"got {actual_size} bytes. {_REMEDY}"
                )

        computed_hash = await asyncio.to_thread(self.compute_hash, file_path)

        if computed_hash != expected_sha256.lower():
            file_path.unlink(missing_ok=True)
            raise HashMismatchError(
                f"Hash mismatch for {file_path}: "
                f"computed {computed_hash}, expected {expected_sha256}. {_REMEDY}"
            )

        logger.debug(f"Hash verified for {file_path}")

    async def is_valid(
        self,
        file_path: Path,
        expected_sha256: str,
        expected_size: int | None = None,
    ) -> bool:
        """
        Check a file without side effects.

        A concurrent writer may still be producing the file, so nothing
        is deleted here.

        Returns:
            True if the file exists and matches size and hash
        """
        try:
            actual_size = file_path.stat().st_size
        except FileNotFoundError:
            return False

        if expected_size is not None and actual_size != expected_size:
            logger.debug(f"Size mismatch for {file_path}: {actual_size} != {expected_size}")
            return False

        try:
            computed_hash = await asyncio.to_thread(self.compute_hash, file_path)
        except FileNotFoundError:
            return False
        return computed_hash == expected_sha256.lower()

    @staticmethod
    def compute_hash(file_path: Path) -> str:
        """
        Compute SHA-256 hash of file without loading it into memory.

        Args:
            file_path: Path to file

        Returns:
            64-character lowercase hex hash
        """
        sha256 = hashlib.sha256()
        with open(file_path, "rb") as f:
            while chunk := f.read(HASH_CHUNK_SIZE):
                sha256.update(chunk)
        return sha256.hexdigest()
