"""
Catalog Backend — Product SQLAlchemy Model
============================================

What:  ORM model representing the `products` table.
Why:   Maps Python objects to database rows for type-safe CRUD.
Who:   Used by ProductService; create_tables() builds the table at startup.

Table Design Rationale:
    - Integer primary key: products are addressed as /products/{id}
    - image_path: Relative path from STORAGE_ROOT; empty string when the
      product has no image
    - price: Float, matching the API contract (no currency handling)
    - created_at / updated_at: UTC with timezone; updated_at is refreshed
      by SQLAlchemy on every UPDATE
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from catalog.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Product(Base):
    """
    A catalog entry with an optional optimized image.

    Lifecycle:
        1. Created by POST /products (image optimized before the INSERT)
        2. Updated by PUT /products/{id}; a replaced image file is deleted
           in the background once the new one is stored
        3. Deleted by DELETE /products/{id}; its image file follows in the
           background
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name",
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Free-form description",
    )

    price: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Unit price",
    )

    image_path: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        comment="Relative path from storage root to the optimized image",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        comment="When this product was created (UTC)",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="When this product was last modified (UTC)",
    )

    def __repr__(self) -> str:
        """Developer-friendly string representation for debugging."""
        return f"<Product(id={self.id}, name='{self.name}', price={self.price})>"
