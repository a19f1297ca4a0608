"""
Catalog Backend — Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Reusable test infrastructure (mocked DB, real images, API client).
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── mock_db_session: Mock AsyncSession whose flush() assigns IDs/timestamps
    ├── temp_storage: Temporary directory for file operations
    ├── make_image: Factory producing real encoded images with Pillow
    ├── sample_jpeg_bytes / sample_png_bytes: Ready-made small images
    └── test_client: HTTPX AsyncClient against the app on a SQLite database
"""

import io
import itertools
import os
import tempfile
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Override settings BEFORE any catalog import: settings and the service
# singletons read them at import time
_TEST_DIR = tempfile.mkdtemp(prefix="catalog_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/catalog_test.db"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_DIR, "uploads")
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests
os.environ["CLEANUP_RETRY_WAIT"] = "0"


# ══════════════════════════════════════════════════════════════════════════
# Database Mocks
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    Provides a mock async database session.

    flush() behaves like an INSERT for every object passed to add(): it
    assigns an integer id (when missing) and the timestamps.

    Usage:
        mock_db_session.execute.return_value = query_result(value=product)
    """
    session = AsyncMock()
    added = []
    ids = itertools.count(1)

    def _add(obj):
        added.append(obj)

    async def _flush():
        now = datetime.now(timezone.utc)
        for obj in added:
            if getattr(obj, "id", None) is None:
                obj.id = next(ids)
            if getattr(obj, "created_at", None) is None:
                obj.created_at = now
            obj.updated_at = now

    session.add = MagicMock(side_effect=_add)
    session.flush = AsyncMock(side_effect=_flush)
    session.execute = AsyncMock()
    session.delete = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.info = {}
    return session


def _query_result(value=None, scalar=None, many=None):
    """
    Build the object AsyncSession.execute() resolves to.

    Args:
        value: Returned by scalar_one_or_none()
        scalar: Returned by scalar()
        many: Returned by scalars().all()
    """
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar.return_value = scalar
    result.scalars.return_value.all.return_value = many or []
    return result


@pytest.fixture
def query_result():
    """Factory fixture for execute() results, see _query_result."""
    return _query_result


# ══════════════════════════════════════════════════════════════════════════
# Files & Images
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def temp_storage(tmp_path):
    """A fresh storage directory for each test."""
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


def encode_image(size=(64, 48), fmt="JPEG", mode="RGB", color=(200, 40, 40)):
    """Encode a solid-color image with Pillow and return the bytes."""
    image = Image.new(mode, size, color)
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


def gradient_image(size=(64, 48), fmt="JPEG", seed=0):
    """An image with distinct content per seed, for telling outputs apart."""
    tile = Image.new("RGB", (32, 24))
    tile.putdata([
        ((x * 7 + seed * 53) % 256, (y * 11 + seed * 29) % 256, (seed * 97) % 256)
        for y in range(24)
        for x in range(32)
    ])
    image = tile.resize(size, Image.Resampling.NEAREST)
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_image():
    """Factory fixture: make_image(size=(w, h), fmt="PNG", mode="RGBA", color=...)."""
    return encode_image


@pytest.fixture
def make_gradient():
    """Factory fixture: make_gradient(size=(w, h), fmt="JPEG", seed=n)."""
    return gradient_image


@pytest.fixture
def sample_jpeg_bytes():
    return encode_image((1600, 1200), "JPEG")


@pytest.fixture
def sample_png_bytes():
    return encode_image((300, 900), "PNG", mode="RGBA", color=(10, 120, 200, 128))


# ══════════════════════════════════════════════════════════════════════════
# API Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client():
    """
    Provides an async HTTP test client for endpoint testing.

    Tables are created in the SQLite test database before the test and
    dropped afterwards; the engine is disposed so no pooled connection
    outlives the test's event loop.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from catalog.database import Base, create_tables, engine
    from catalog.main import app

    await create_tables()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
