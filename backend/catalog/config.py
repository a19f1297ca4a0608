"""
Catalog Backend — Application Configuration
=============================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by every module that needs configuration values.
When:  Loaded once at module import time; validated before app starts.

Image pipeline constants (bounds, quality, deadline) live here too. They are
deployment settings, never request parameters: every upload is processed with
the same policy so output size and latency stay predictable.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Attributes are grouped by concern for readability.
    """

    # ── Database ──────────────────────────────────────────────────────────
    # What: Full async SQLAlchemy URL. When empty, the URL is assembled from
    # the DB_* parts below.
    database_url: str = Field(default="", description="Async database connection URL")

    db_user: str = Field(default="postgres")
    db_password: str = Field(default="123")
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432, ge=1, le=65535)
    db_name: str = Field(default="productdb")

    # Pool sizing: 20 persistent connections, up to 50 in total
    db_pool_size: int = Field(default=20, ge=1, le=100)
    db_max_overflow: int = Field(default=30, ge=0, le=100)

    # Recycle connections after 30 minutes
    db_pool_recycle: int = Field(default=1800, ge=60, le=86400)
    db_pool_pre_ping: bool = Field(default=True)

    # What: Create missing tables at startup (no migration tooling)
    db_auto_create: bool = Field(default=True)

    @property
    def sqlalchemy_url(self) -> str:
        """Explicit DATABASE_URL wins; otherwise build a PostgreSQL asyncpg URL."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── File Storage ──────────────────────────────────────────────────────
    # What: Root directory for optimized product images
    storage_root: str = Field(default="./uploads")

    # What: Maximum accepted upload size in bytes (8 MiB)
    max_file_size: int = Field(default=8_388_608, ge=1_048_576, le=52_428_800)

    # ── Image Pipeline ────────────────────────────────────────────────────
    # Bounding box for resized images; aspect ratio is preserved, never upscaled
    image_max_width: int = Field(default=800, ge=16, le=8192)
    image_max_height: int = Field(default=800, ge=16, le=8192)

    # JPEG quality 80: moderate fidelity, noticeably smaller and faster than 90+
    image_jpeg_quality: int = Field(default=80, ge=1, le=95)

    # zlib level 6 is Pillow's default effort; 9 is much slower for little gain
    image_png_compress_level: int = Field(default=6, ge=0, le=9)

    # Hard deadline for one decode/resize/encode/write cycle
    image_timeout_seconds: float = Field(default=10.0, gt=0, le=300)

    # Worker threads dedicated to image processing
    image_workers: int = Field(default=4, ge=1, le=64)

    # Buffer pool: idle buffers kept, and the largest buffer worth keeping
    buffer_pool_max_idle: int = Field(default=32, ge=0, le=1024)
    buffer_pool_max_buffer_bytes: int = Field(default=16_777_216, ge=65_536)

    # ── Cleanup ───────────────────────────────────────────────────────────
    # Best-effort deletion of replaced images is retried on transient OS errors
    cleanup_max_attempts: int = Field(default=3, ge=1, le=10)
    cleanup_retry_wait: float = Field(default=0.2, ge=0, le=10)

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs, or "*" for any origin
    cors_origins: str = Field(default="*")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=3006, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,  # DATABASE_URL and database_url both work
        "extra": "ignore",
    }


# Singleton instance, imported throughout the application
settings = Settings()
