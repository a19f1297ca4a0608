"""
Catalog Backend — File Storage Service
========================================

What:  Owns the on-disk layout of product images: destination paths, upload
       size limits, safe path resolution, media type sniffing and cleanup.
Why:   Centralizes every filesystem decision outside the image pipeline.
How:   UUID file names in date-organized directories under STORAGE_ROOT;
       relative paths are what the database stores.
Who:   Called by ProductService and the uploads route.

Directory Structure:
    uploads/
    └── 2024/
        └── 01/
            └── 15/
                ├── a1b2c3d4-....jpg
                └── e5f6g7h8-....png

Security Model:
    - UUID file names: no user input reaches the filesystem except a short,
      alphanumeric extension
    - resolve() refuses any relative path that escapes STORAGE_ROOT
    - Size limit enforced before any decoding work starts
"""

import logging
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import magic
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from catalog.config import settings
from catalog.exceptions import FileStorageError, ValidationError

logger = logging.getLogger(__name__)

# Extensions must be short and plain to be kept in generated file names
SAFE_EXTENSION = re.compile(r"^\.[a-z0-9]{1,10}$")

# Bytes handed to libmagic; its signatures look at the file header only
SNIFF_BYTES = 2048

# Used only when libmagic itself fails on a file
EXTENSION_MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


class FileService:
    """
    Manages where optimized images live and how they go away.

    Lifecycle of a product image:
        1. validate_size() rejects empty or oversized uploads
        2. generate_destination() picks YYYY/MM/DD/<uuid><ext>
        3. The image pipeline writes the optimized file there
        4. The relative path is stored on the Product row
        5. cleanup_file() removes it when the image is replaced or the
           product deleted (background task, best-effort)
    """

    def __init__(self, storage_root: Optional[str] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
                          If None, uses settings.storage_root.
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    @staticmethod
    def normalize_extension(filename: Optional[str]) -> str:
        """
        Extension to keep in the generated name ("" when unusable).

        Any extension is accepted; unknown ones are encoded as JPEG by the
        optimizer but keep their suffix.
        """
        ext = Path(filename or "").suffix.lower()
        return ext if SAFE_EXTENSION.match(ext) else ""

    def validate_size(self, size: int) -> None:
        """
        Reject empty uploads and uploads above settings.max_file_size.

        Raises:
            ValidationError with a human-readable limit message.
        """
        if size == 0:
            raise ValidationError(
                message="Uploaded image is empty.",
                field="image",
                context={"actual_size": 0},
            )

        if size > settings.max_file_size:
            max_mb = settings.max_file_size / (1024 * 1024)
            raise ValidationError(
                message=f"Image is too large ({size / (1024 * 1024):.1f}MB). Maximum is {max_mb:.0f}MB.",
                field="image",
                context={"max_size_mb": max_mb, "actual_size": size},
            )

    def generate_destination(self, extension: str) -> Tuple[Path, str]:
        """
        Generate a unique, date-organized destination for a new image.

        Returns:
            Tuple of (absolute_path, relative_path_from_storage_root).
            The date directory exists when this returns.

        Raises:
            FileStorageError if the directory cannot be created.
        """
        now = datetime.now(timezone.utc)
        date_dir = now.strftime("%Y/%m/%d")
        relative_path = f"{date_dir}/{uuid.uuid4()}{extension}"
        absolute_path = self.storage_root / relative_path

        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to create storage directory %s: %s", absolute_path.parent, str(e))
            raise FileStorageError(
                message="Failed to prepare image storage. Please try again.",
                context={"path": str(absolute_path.parent), "os_error": str(e)},
            ) from e

        return absolute_path, relative_path

    def resolve(self, relative_path: str) -> Path:
        """
        Absolute path for a stored relative path, confined to storage_root.

        Raises:
            ValidationError if the path escapes the storage root.
        """
        full_path = (self.storage_root / relative_path).resolve()
        if not full_path.is_relative_to(self.storage_root):
            raise ValidationError(message="Invalid file path", field="path")
        return full_path

    async def sniff_media_type(self, path: Path) -> Optional[str]:
        """
        Media type from the file's content, not its name.

        What:    python-magic matches the header bytes against libmagic's
                 signatures (e.g. JPEG starts with FF D8 FF).
        Why:     Uploads with unknown extensions are stored as JPEG under the
                 client's suffix, so the name can lie about the content.
        Fallback: If libmagic errors on the file, the extension decides
                 (None when the extension is unknown too).
        """
        async with aiofiles.open(path, "rb") as f:
            head = await f.read(SNIFF_BYTES)

        try:
            return magic.from_buffer(head, mime=True)
        except magic.MagicException as e:
            logger.warning(
                "MIME detection failed for %s, falling back to extension: %s", path.name, str(e)
            )
            return EXTENSION_MEDIA_TYPES.get(path.suffix.lower())

    async def cleanup_file(self, file_path: str) -> None:
        """
        Remove a stored image (best-effort, never raises).

        What:    Deletes an absolute or storage-relative path if it exists.
        When:    Background task after an image is replaced, a product is
                 deleted, or a freshly written image could not be persisted.
        How:     Transient OS errors (e.g. a reader on a network mount holding
                 the file) are retried a few times with tenacity; anything
                 left behind is only logged.
        """
        path = Path(file_path)
        if not path.is_absolute():
            path = self.storage_root / path

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(OSError),
                stop=stop_after_attempt(settings.cleanup_max_attempts),
                wait=wait_fixed(settings.cleanup_retry_wait),
            ):
                with attempt:
                    self._remove(path)
        except RetryError as e:
            logger.warning(
                "Failed to clean up file %s after %d attempts: %s",
                path.name,
                settings.cleanup_max_attempts,
                e.last_attempt.exception(),
            )

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            os.remove(path)
            logger.info("Cleaned up file: %s", path.name)
        except FileNotFoundError:
            logger.debug("Cleanup: file already gone: %s", path.name)


# ── Singleton Instance ────────────────────────────────────────────────────
# Why singleton: Storage root doesn't change; no per-request state needed
file_service = FileService()
