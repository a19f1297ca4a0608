"""
Catalog Backend — Image Optimizer
===================================

What:  Turns raw uploaded image bytes into a bounded, re-encoded file on disk.
Why:   Product images are shown as catalog thumbnails and detail shots; the
       originals from phones and cameras are far larger than needed.
How:   decode (Pillow, format auto-detected) → fit inside the bounding box
       (BOX resampling, never upscale) → encode into a pooled buffer →
       write a temporary sibling file → atomic rename onto the destination.
Who:   Called by UploadOrchestrator from a worker thread.

Encoding policy (by the extension the client supplied, case-insensitive):
    .jpg / .jpeg  → JPEG, quality 80
    .png          → PNG, default zlib effort (level 6)
    anything else → JPEG, quality 80

    The fallback keeps the client's extension in the file name even though the
    content is JPEG. Downloads sniff the magic bytes instead of trusting it.

Failure policy:
    Failures are returned inside an OptimizationResult, not raised. A result
    that reports success always points at a complete file: the rename is the
    last step, and any temporary file is removed on failure.

Cancellation:
    Pillow's codecs cannot be interrupted mid-call, so cancellation is checked
    between steps. An abandoned job stops at the next boundary instead of
    running to completion.
"""

import io
import logging
import os
import threading
import uuid
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from catalog.exceptions import (
    ImageDecodeError,
    ImageProcessingError,
    ImageWriteError,
    OptimizationCancelled,
)
from catalog.services.buffer_pool import BufferPool

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE: Tuple[int, int] = (800, 800)
DEFAULT_JPEG_QUALITY = 80
DEFAULT_PNG_COMPRESS_LEVEL = 6

JPEG_EXTENSIONS = {".jpg", ".jpeg"}
PNG_EXTENSIONS = {".png"}

# Background used when flattening transparency for JPEG output
FLATTEN_BACKGROUND = (255, 255, 255)

# Modes the PNG encoder takes as-is after resizing
PNG_MODES = {"RGB", "RGBA", "L", "LA"}

# Pillow raises a zoo of exceptions for bad input depending on the plugin
DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    SyntaxError,
    ValueError,
    EOFError,
)


@dataclass(frozen=True)
class OptimizationResult:
    """
    Outcome of one optimization: either a path or an error, never both.

    Attributes:
        path:  Absolute path of the written image (success).
        error: ImageDecodeError, ImageWriteError or ImageTimeoutError (failure).
    """

    path: Optional[str] = None
    error: Optional[ImageProcessingError] = None

    def __post_init__(self):
        if (self.path is None) == (self.error is None):
            raise ValueError("OptimizationResult requires exactly one of path or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        """Return the written path, or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.path


def output_format(extension: str) -> str:
    """Map a client-supplied extension to the Pillow format we encode."""
    ext = (extension or "").strip().lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    if ext in PNG_EXTENSIONS:
        return "PNG"
    return "JPEG"


def fit_dimensions(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """
    Largest size inside (max_width, max_height) with the same aspect ratio.

    Images already inside the box are returned unchanged. Otherwise the
    dimension that overflows the most lands exactly on the bound and the
    other is rounded, with a floor of one pixel.
    """
    if width <= max_width and height <= max_height:
        return width, height
    if width * max_height > height * max_width:
        return max_width, max(1, round(height * max_width / width))
    return max(1, round(width * max_height / height)), max_height


class ImageOptimizer:
    """
    Decode, bound, re-encode and persist a single image.

    Stateless apart from its configuration and the injected buffer pool,
    so one instance is shared by every worker thread.

    Args:
        buffer_pool: Source of encode buffers (BufferPool or NullBufferPool).
        max_size: Bounding box (width, height) for the output.
        jpeg_quality: Quality for JPEG output (1-95).
        png_compress_level: zlib level for PNG output (0-9).
    """

    def __init__(
        self,
        buffer_pool: BufferPool,
        max_size: Tuple[int, int] = DEFAULT_MAX_SIZE,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        png_compress_level: int = DEFAULT_PNG_COMPRESS_LEVEL,
    ):
        self.buffer_pool = buffer_pool
        self.max_width, self.max_height = max_size
        self.jpeg_quality = jpeg_quality
        self.png_compress_level = png_compress_level

    def optimize(
        self,
        raw_bytes: bytes,
        destination_path: Union[str, Path],
        extension: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationResult:
        """
        Optimize raw image bytes into destination_path.

        Args:
            raw_bytes: Full contents of the uploaded file.
            destination_path: Where the result goes; created or replaced.
            extension: Client-supplied extension, selects the output format.
            cancel_event: When set, the job stops at the next step boundary.

        Returns:
            OptimizationResult with the destination path, or with
            ImageDecodeError / ImageWriteError / OptimizationCancelled.
        """
        destination = Path(destination_path)
        fmt = output_format(extension)

        try:
            with self._decode(raw_bytes) as source:
                self._check_cancelled(cancel_event, "decode")
                original_size = source.size
                resized = self._resize(source)
                self._check_cancelled(cancel_event, "resize")

                with self.buffer_pool.borrow() as buffer:
                    self._encode(resized, fmt, buffer)
                    self._check_cancelled(cancel_event, "encode")
                    written = self._write(buffer, destination, cancel_event)
                    final_size = resized.size
        except ImageProcessingError as e:
            if isinstance(e, OptimizationCancelled):
                logger.info("Optimization for %s cancelled: %s", destination.name, e.context)
            else:
                logger.warning("Optimization for %s failed: %s", destination.name, e.message)
            return OptimizationResult(error=e)

        logger.debug(
            "Optimized %s: %dx%d → %dx%d %s, %d bytes",
            destination.name,
            original_size[0],
            original_size[1],
            final_size[0],
            final_size[1],
            fmt,
            written,
        )
        return OptimizationResult(path=str(destination))

    # ── Steps ─────────────────────────────────────────────────────────────

    def _decode(self, raw_bytes: bytes) -> Image.Image:
        """Open and fully decode; truncation only surfaces on load()."""
        try:
            image = Image.open(io.BytesIO(raw_bytes))
            image.load()
        except DECODE_ERRORS as e:
            raise ImageDecodeError(
                context={"error": str(e), "error_type": type(e).__name__, "size": len(raw_bytes)}
            ) from e
        return image

    def _resize(self, image: Image.Image) -> Image.Image:
        # Palette and bilevel images would be resized with NEAREST
        if image.mode == "P":
            image = image.convert("RGBA" if "transparency" in image.info else "RGB")
        elif image.mode == "1":
            image = image.convert("L")

        target = fit_dimensions(image.width, image.height, self.max_width, self.max_height)
        if target == image.size:
            return image
        return image.resize(target, Image.Resampling.BOX)

    def _encode(self, image: Image.Image, fmt: str, buffer: io.BytesIO) -> None:
        try:
            if fmt == "PNG":
                self._png_ready(image).save(
                    buffer, format="PNG", compress_level=self.png_compress_level
                )
            else:
                self._jpeg_ready(image).save(buffer, format="JPEG", quality=self.jpeg_quality)
        except (OSError, ValueError) as e:
            raise ImageWriteError(
                message="Failed to encode image",
                context={"format": fmt, "mode": image.mode, "error": str(e)},
            ) from e

    def _write(
        self,
        buffer: io.BytesIO,
        destination: Path,
        cancel_event: Optional[threading.Event],
    ) -> int:
        """Write to a hidden temporary sibling, then rename onto destination."""
        tmp_path = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, "wb") as fh, buffer.getbuffer() as view:
                written = fh.write(view)
            self._check_cancelled(cancel_event, "write")
            os.replace(tmp_path, destination)
        except OSError as e:
            self._discard(tmp_path)
            raise ImageWriteError(
                context={"path": str(destination), "os_error": str(e)},
            ) from e
        except OptimizationCancelled:
            self._discard(tmp_path)
            raise
        return written

    # ── Helpers ───────────────────────────────────────────────────────────

    @staticmethod
    def _jpeg_ready(image: Image.Image) -> Image.Image:
        if image.mode in ("RGBA", "LA", "PA"):
            rgba = image.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, FLATTEN_BACKGROUND)
            flattened.paste(rgba, mask=rgba.getchannel("A"))
            return flattened
        if image.mode not in ("RGB", "L"):
            return image.convert("RGB")
        return image

    @staticmethod
    def _png_ready(image: Image.Image) -> Image.Image:
        if image.mode in PNG_MODES:
            return image
        return image.convert("RGBA" if "A" in image.getbands() else "RGB")

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], step: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OptimizationCancelled(context={"after": step})

    @staticmethod
    def _discard(path: Path) -> None:
        with suppress(OSError):
            path.unlink()
