"""
Catalog Backend — Image Optimizer Unit Tests
==============================================

What:  Tests for decode → bound → encode → atomic write.
Why:   The optimizer decides what every stored product image looks like.
How:   Real images generated with Pillow, written into pytest's tmp_path.

Test Strategy:
    ✅ Bounds and aspect ratio (landscape, portrait, already small)
    ✅ Output format by extension, including the JPEG fallback
    ✅ Failures: undecodable input, unwritable destination, cancellation
    ✅ Pooled and unpooled buffers produce identical files
    ✅ Encode buffers go back to the pool even when a job is cancelled
"""

import io
import threading

import pytest
from PIL import Image

from catalog.exceptions import (
    ImageDecodeError,
    ImageWriteError,
    OptimizationCancelled,
)
from catalog.services.buffer_pool import BufferPool, NullBufferPool
from catalog.services.image_optimizer import (
    ImageOptimizer,
    OptimizationResult,
    fit_dimensions,
    output_format,
)

JPEG_MAGIC = b"\xff\xd8\xff"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@pytest.fixture
def optimizer():
    return ImageOptimizer(buffer_pool=BufferPool())


def _open(path):
    with Image.open(path) as img:
        img.load()
        return img.format, img.size, img.mode


class TestFitDimensions:
    """Pure geometry of the bounding box."""

    def test_inside_box_unchanged(self):
        assert fit_dimensions(640, 480, 800, 800) == (640, 480)

    def test_exactly_at_bound_unchanged(self):
        assert fit_dimensions(800, 800, 800, 800) == (800, 800)

    def test_landscape_width_hits_bound(self):
        assert fit_dimensions(1600, 1200, 800, 800) == (800, 600)

    def test_portrait_height_hits_bound(self):
        assert fit_dimensions(300, 900, 800, 800) == (267, 800)

    def test_extreme_aspect_keeps_one_pixel(self):
        assert fit_dimensions(10000, 2, 800, 800) == (800, 1)


class TestOutputFormat:

    @pytest.mark.parametrize("ext", [".jpg", ".JPEG", "jpeg"])
    def test_jpeg_extensions(self, ext):
        assert output_format(ext) == "JPEG"

    @pytest.mark.parametrize("ext", [".png", ".PNG", "png"])
    def test_png_extensions(self, ext):
        assert output_format(ext) == "PNG"

    @pytest.mark.parametrize("ext", [".gif", ".webp", "", ".bin"])
    def test_unknown_extensions_fall_back_to_jpeg(self, ext):
        assert output_format(ext) == "JPEG"


class TestOptimizationResult:

    def test_requires_exactly_one_outcome(self):
        with pytest.raises(ValueError):
            OptimizationResult()
        with pytest.raises(ValueError):
            OptimizationResult(path="/x.jpg", error=ImageDecodeError())

    def test_unwrap_raises_carried_error(self):
        error = ImageWriteError()
        with pytest.raises(ImageWriteError):
            OptimizationResult(error=error).unwrap()

    def test_unwrap_returns_path(self):
        assert OptimizationResult(path="/x.jpg").unwrap() == "/x.jpg"


class TestOptimize:
    """End-to-end optimize() on real images."""

    def test_large_jpeg_is_bounded(self, optimizer, tmp_path, sample_jpeg_bytes):
        dest = tmp_path / "out.jpg"
        result = optimizer.optimize(sample_jpeg_bytes, dest, ".jpg")

        assert result.ok
        assert result.path == str(dest)
        fmt, size, _ = _open(dest)
        assert fmt == "JPEG"
        assert size == (800, 600)

    def test_tall_png_keeps_aspect_and_alpha(self, optimizer, tmp_path, sample_png_bytes):
        dest = tmp_path / "out.png"
        result = optimizer.optimize(sample_png_bytes, dest, ".png")

        assert result.ok
        fmt, size, mode = _open(dest)
        assert fmt == "PNG"
        assert size == (267, 800)
        assert mode == "RGBA"

    def test_small_image_is_not_upscaled(self, optimizer, tmp_path, make_image):
        dest = tmp_path / "small.jpg"
        result = optimizer.optimize(make_image((120, 90)), dest, ".jpg")

        assert result.ok
        assert _open(dest)[1] == (120, 90)

    def test_unknown_extension_writes_jpeg(self, optimizer, tmp_path, make_image):
        dest = tmp_path / "photo.gif"
        result = optimizer.optimize(make_image((50, 50), "PNG"), dest, ".gif")

        assert result.ok
        assert dest.read_bytes().startswith(JPEG_MAGIC)

    def test_empty_extension_writes_jpeg(self, optimizer, tmp_path, make_image):
        dest = tmp_path / "noext"
        result = optimizer.optimize(make_image((50, 50), "PNG"), dest, "")

        assert result.ok
        assert dest.read_bytes().startswith(JPEG_MAGIC)

    def test_transparent_png_saved_as_jpeg_is_flattened(self, optimizer, tmp_path, make_image):
        raw = make_image((40, 40), "PNG", mode="RGBA", color=(0, 0, 0, 0))
        dest = tmp_path / "flat.jpg"
        result = optimizer.optimize(raw, dest, ".jpg")

        assert result.ok
        with Image.open(dest) as img:
            assert img.mode == "RGB"
            # Fully transparent pixels land on the white background
            assert all(channel > 240 for channel in img.getpixel((20, 20)))

    def test_palette_image_to_png(self, optimizer, tmp_path):
        palette = Image.new("P", (1000, 500), 3)
        buf = io.BytesIO()
        palette.save(buf, format="GIF")
        dest = tmp_path / "palette.png"

        result = optimizer.optimize(buf.getvalue(), dest, ".png")

        assert result.ok
        fmt, size, _ = _open(dest)
        assert fmt == "PNG"
        assert size == (800, 400)

    def test_existing_destination_is_replaced(self, optimizer, tmp_path, make_image):
        dest = tmp_path / "replace.png"
        dest.write_bytes(b"stale")
        result = optimizer.optimize(make_image((30, 30), "PNG"), dest, ".png")

        assert result.ok
        assert dest.read_bytes().startswith(PNG_MAGIC)

    def test_pooled_and_unpooled_outputs_are_identical(self, tmp_path, sample_jpeg_bytes):
        pooled = ImageOptimizer(buffer_pool=BufferPool())
        unpooled = ImageOptimizer(buffer_pool=NullBufferPool())

        # Run the pooled one twice so the second run reuses a dirty buffer
        pooled.optimize(sample_jpeg_bytes, tmp_path / "warmup.jpg", ".jpg")
        pooled.optimize(sample_jpeg_bytes, tmp_path / "a.jpg", ".jpg")
        unpooled.optimize(sample_jpeg_bytes, tmp_path / "b.jpg", ".jpg")

        assert (tmp_path / "a.jpg").read_bytes() == (tmp_path / "b.jpg").read_bytes()


class TestOptimizeFailures:
    """Failures are returned, never raised, and leave nothing behind."""

    def test_garbage_bytes_return_decode_error(self, optimizer, tmp_path):
        dest = tmp_path / "bad.jpg"
        result = optimizer.optimize(b"definitely not an image", dest, ".jpg")

        assert not result.ok
        assert isinstance(result.error, ImageDecodeError)
        assert not dest.exists()
        assert list(tmp_path.iterdir()) == []

    def test_truncated_image_returns_decode_error(self, optimizer, tmp_path, sample_jpeg_bytes):
        dest = tmp_path / "truncated.jpg"
        result = optimizer.optimize(sample_jpeg_bytes[: len(sample_jpeg_bytes) // 2], dest, ".jpg")

        assert isinstance(result.error, ImageDecodeError)
        assert not dest.exists()

    def test_empty_input_returns_decode_error(self, optimizer, tmp_path):
        result = optimizer.optimize(b"", tmp_path / "empty.jpg", ".jpg")
        assert isinstance(result.error, ImageDecodeError)

    def test_missing_directory_returns_write_error(self, optimizer, tmp_path, make_image):
        dest = tmp_path / "missing" / "out.jpg"
        result = optimizer.optimize(make_image(), dest, ".jpg")

        assert isinstance(result.error, ImageWriteError)
        assert not dest.parent.exists()

    def test_cancelled_job_writes_nothing(self, optimizer, tmp_path, make_image):
        cancel = threading.Event()
        cancel.set()
        dest = tmp_path / "cancelled.jpg"

        result = optimizer.optimize(make_image(), dest, ".jpg", cancel_event=cancel)

        assert isinstance(result.error, OptimizationCancelled)
        assert list(tmp_path.iterdir()) == []


class _SetAfter(threading.Event):
    """Event that reports set from its n-th is_set() call onwards."""

    def __init__(self, n):
        super().__init__()
        self.calls = 0
        self.n = n

    def is_set(self):
        self.calls += 1
        return self.calls >= self.n


class TestBufferOwnership:

    def test_buffer_is_returned_after_success(self, tmp_path, make_image):
        pool = BufferPool()
        ImageOptimizer(buffer_pool=pool).optimize(make_image(), tmp_path / "ok.jpg", ".jpg")
        assert pool.idle_count == 1

    def test_job_cancelled_while_holding_a_buffer_returns_it(self, tmp_path, make_image):
        pool = BufferPool()
        # Checks run after decode, resize, encode; the third is inside the borrow
        cancel = _SetAfter(3)

        result = ImageOptimizer(buffer_pool=pool).optimize(
            make_image(), tmp_path / "late.jpg", ".jpg", cancel_event=cancel
        )

        assert isinstance(result.error, OptimizationCancelled)
        assert pool.idle_count == 1
        assert list(tmp_path.iterdir()) == []

    def test_upload_bytes_are_never_pooled(self, tmp_path, make_image):
        pool = BufferPool()
        raw = make_image()
        snapshot = bytes(raw)

        ImageOptimizer(buffer_pool=pool).optimize(raw, tmp_path / "a.jpg", ".jpg")
        with pool.borrow() as buffer:
            assert buffer.getvalue() == b""
        assert raw == snapshot
