"""
Catalog Backend — File Service Unit Tests
===========================================

What:  Tests for destination paths, size limits, path confinement, media
       type sniffing and best-effort cleanup.
Why:   FileService is the only code that decides where bytes land on disk.
How:   Each test gets a FileService rooted in its own temporary directory.

Test Strategy:
    ✅ Extension normalization (case, junk, missing)
    ✅ Size limits (empty, boundary, over)
    ✅ Date-organized UUID destinations
    ✅ Path traversal rejected
    ✅ Cleanup retries transient errors and never raises
"""

import re
from pathlib import Path
from unittest.mock import patch

import magic
import pytest

from catalog.config import settings
from catalog.exceptions import ValidationError
from catalog.services.file_service import FileService

DESTINATION_PATTERN = re.compile(r"^\d{4}/\d{2}/\d{2}/[0-9a-f-]{36}(\.[a-z0-9]+)?$")


@pytest.fixture
def service(temp_storage):
    return FileService(storage_root=temp_storage)


class TestNormalizeExtension:

    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("photo.jpg", ".jpg"),
            ("Photo.JPEG", ".jpeg"),
            ("scan.PNG", ".png"),
            ("archive.tar.gz", ".gz"),
            ("anim.gif", ".gif"),
            ("noextension", ""),
            ("", ""),
            (None, ""),
            ("bad.ex$e", ""),
            ("long.abcdefghijklm", ""),
        ],
    )
    def test_normalize(self, filename, expected):
        assert FileService.normalize_extension(filename) == expected


class TestValidateSize:

    def test_within_limit(self, service):
        service.validate_size(1000)

    def test_at_limit(self, service):
        service.validate_size(settings.max_file_size)

    def test_over_limit(self, service):
        with pytest.raises(ValidationError, match="too large") as exc_info:
            service.validate_size(settings.max_file_size + 1)
        assert exc_info.value.field == "image"

    def test_empty(self, service):
        with pytest.raises(ValidationError, match="empty"):
            service.validate_size(0)


class TestGenerateDestination:

    def test_date_organized_uuid_name(self, service, temp_storage):
        absolute, relative = service.generate_destination(".png")

        assert DESTINATION_PATTERN.match(relative)
        assert relative.endswith(".png")
        assert absolute == Path(temp_storage).resolve() / relative
        assert absolute.parent.is_dir()
        assert not absolute.exists()

    def test_without_extension(self, service):
        _, relative = service.generate_destination("")
        assert DESTINATION_PATTERN.match(relative)
        assert "." not in relative.rsplit("/", 1)[-1]

    def test_destinations_are_unique(self, service):
        paths = {service.generate_destination(".jpg")[1] for _ in range(50)}
        assert len(paths) == 50


class TestResolve:

    def test_relative_path_inside_root(self, service, temp_storage):
        resolved = service.resolve("2024/01/15/a.jpg")
        assert resolved == Path(temp_storage).resolve() / "2024/01/15/a.jpg"

    @pytest.mark.parametrize("path", ["../secret.txt", "2024/../../etc/passwd", "/etc/passwd"])
    def test_traversal_rejected(self, service, path):
        with pytest.raises(ValidationError, match="Invalid file path"):
            service.resolve(path)


class TestSniffMediaType:

    @pytest.mark.asyncio
    async def test_jpeg(self, service, tmp_path, make_image):
        path = tmp_path / "x.gif"
        path.write_bytes(make_image(fmt="JPEG"))
        assert await service.sniff_media_type(path) == "image/jpeg"

    @pytest.mark.asyncio
    async def test_png(self, service, tmp_path, make_image):
        path = tmp_path / "x.jpg"
        path.write_bytes(make_image(fmt="PNG"))
        assert await service.sniff_media_type(path) == "image/png"

    @pytest.mark.asyncio
    async def test_non_image_content(self, service, tmp_path):
        path = tmp_path / "x.png"
        path.write_bytes(b"hello world\n")
        assert await service.sniff_media_type(path) == "text/plain"

    @pytest.mark.asyncio
    async def test_libmagic_failure_falls_back_to_extension(self, service, tmp_path, make_image):
        path = tmp_path / "x.PNG"
        path.write_bytes(make_image(fmt="PNG"))
        with patch("catalog.services.file_service.magic.from_buffer",
                   side_effect=magic.MagicException("corrupt database")):
            assert await service.sniff_media_type(path) == "image/png"

    @pytest.mark.asyncio
    async def test_libmagic_failure_with_unknown_extension(self, service, tmp_path):
        path = tmp_path / "x.gif"
        path.write_bytes(b"GIF89a")
        with patch("catalog.services.file_service.magic.from_buffer",
                   side_effect=magic.MagicException("corrupt database")):
            assert await service.sniff_media_type(path) is None


class TestCleanup:

    @pytest.mark.asyncio
    async def test_removes_relative_path(self, service, temp_storage):
        absolute, relative = service.generate_destination(".jpg")
        absolute.write_bytes(b"data")

        await service.cleanup_file(relative)

        assert not absolute.exists()

    @pytest.mark.asyncio
    async def test_removes_absolute_path(self, service):
        absolute, _ = service.generate_destination(".jpg")
        absolute.write_bytes(b"data")

        await service.cleanup_file(str(absolute))

        assert not absolute.exists()

    @pytest.mark.asyncio
    async def test_missing_file_is_noop(self, service):
        await service.cleanup_file("2024/01/01/does-not-exist.jpg")

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, service):
        with patch.object(FileService, "_remove", side_effect=[PermissionError("busy"), None]) as remove:
            await service.cleanup_file("2024/01/01/a.jpg")
        assert remove.call_count == 2

    @pytest.mark.asyncio
    async def test_persistent_error_is_logged_not_raised(self, service):
        with patch.object(FileService, "_remove", side_effect=PermissionError("denied")) as remove:
            await service.cleanup_file("2024/01/01/a.jpg")
        assert remove.call_count == settings.cleanup_max_attempts
