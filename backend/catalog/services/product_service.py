"""
Catalog Backend — Product Service (Business Logic)
====================================================

What:  CRUD for products, with image ingestion on create/update and image
       cleanup on replace/delete.
Why:   Keeps business rules out of the route handlers.
How:   Composes FileService (paths, limits, cleanup), UploadOrchestrator
       (bounded-time optimization) and the per-request database session.
Who:   Called by the /products route handlers.

Image Flow (create / update with an image):
    ┌────────────┐    ┌──────────────┐    ┌──────────────┐    ┌──────────┐
    │ Size check │───▶│ Destination  │───▶│ Orchestrator │───▶│  Flush   │
    │ (FileServ) │    │ (FileServ)   │    │ (≤ deadline) │    │  (DB)    │
    └────────────┘    └──────────────┘    └──────────────┘    └──────────┘

    On failure:
    - Decode / write / timeout errors surface unchanged (422 / 500 / 504)
    - A database failure after the image was written removes that image,
      including a commit that fails after the flush succeeded (rollback hook)
    - The previous image of an updated product is only scheduled for deletion
      once the new image is stored and the row is flushed

Old-image deletion runs as a FastAPI background task after the response has
been sent. It is best-effort: a failure is logged, never reported.
"""

import logging
import math
import time
from functools import partial
from typing import Optional, Tuple, Union

from fastapi import BackgroundTasks
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.database import on_rollback
from catalog.exceptions import DatabaseError, NotFoundError, ValidationError
from catalog.models.product import Product
from catalog.schemas.product import MessageResponse, ProductListResponse, ProductResponse
from catalog.services.file_service import FileService, file_service
from catalog.services.upload_orchestrator import (
    RawUpload,
    UploadOrchestrator,
    upload_orchestrator,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class ProductService:
    """
    Business logic layer for product operations.

    Stateless apart from its collaborators; each call receives its own
    database session.

    Error Handling Strategy:
        Application exceptions (CatalogError subclasses) propagate as-is.
        Anything else coming out of the database is wrapped in DatabaseError
        so SQL details never reach the client.
    """

    def __init__(self, orchestrator: UploadOrchestrator, files: FileService):
        self.orchestrator = orchestrator
        self.files = files

    # ── Commands ──────────────────────────────────────────────────────────

    async def create_product(
        self,
        db: AsyncSession,
        name: str,
        price: str,
        description: Optional[str] = None,
        image: Optional[RawUpload] = None,
    ) -> ProductResponse:
        """
        Create a product, optimizing its image first when one is attached.

        Raises:
            ValidationError: Blank name, bad price, empty or oversized image
            ImageDecodeError / ImageWriteError / ImageTimeoutError
            DatabaseError: The INSERT failed (the stored image is removed)
        """
        started = time.perf_counter()
        product = Product(
            name=self._validate_name(name),
            description=description or "",
            price=self._parse_price(price),
            image_path="",
        )

        stored_path: Optional[str] = None
        if image is not None:
            stored_path, product.image_path = await self._store_image(image)

        try:
            db.add(product)
            await db.flush()
        except Exception as e:
            if stored_path:
                await self.files.cleanup_file(stored_path)
            logger.error("Failed to create product: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Failed to create product. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        if stored_path:
            # The commit happens after this returns; if it fails, drop the image
            on_rollback(db, partial(self.files.cleanup_file, stored_path))

        logger.info(
            "Product %s created in %dms",
            product.id,
            (time.perf_counter() - started) * 1000,
        )
        return ProductResponse.model_validate(product)

    async def update_product(
        self,
        db: AsyncSession,
        product_id: int,
        background_tasks: BackgroundTasks,
        name: Optional[str] = None,
        description: Optional[str] = None,
        price: Optional[str] = None,
        image: Optional[RawUpload] = None,
    ) -> ProductResponse:
        """
        Partially update a product; fields left as None are unchanged.

        A new image replaces the old one. The old file is deleted in the
        background only after the update is flushed, so a failed upload
        never leaves the product pointing at a deleted file.
        """
        started = time.perf_counter()
        product = await self._load(db, product_id)

        # Validate everything before spending time on the image
        new_name = self._validate_name(name) if name is not None else None
        new_price = self._parse_price(price) if price is not None else None

        if new_name is not None:
            product.name = new_name
        if description is not None:
            product.description = description
        if new_price is not None:
            product.price = new_price

        stored_path: Optional[str] = None
        previous_image = product.image_path
        if image is not None:
            stored_path, product.image_path = await self._store_image(image)

        try:
            await db.flush()
        except Exception as e:
            if stored_path:
                await self.files.cleanup_file(stored_path)
            logger.error("Failed to update product %s: %s", product_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Failed to update product. Please try again.",
                context={"product_id": product_id, "error_type": type(e).__name__},
            ) from e

        if stored_path:
            on_rollback(db, partial(self.files.cleanup_file, stored_path))
        if stored_path and previous_image:
            background_tasks.add_task(self.files.cleanup_file, previous_image)

        logger.info(
            "Product %s updated in %dms",
            product_id,
            (time.perf_counter() - started) * 1000,
        )
        return ProductResponse.model_validate(product)

    async def delete_product(
        self,
        db: AsyncSession,
        product_id: int,
        background_tasks: BackgroundTasks,
    ) -> MessageResponse:
        """Delete a product row; its image file is removed in the background."""
        product = await self._load(db, product_id)
        image_path = product.image_path

        try:
            await db.delete(product)
            await db.flush()
        except Exception as e:
            logger.error("Failed to delete product %s: %s", product_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Failed to delete product. Please try again.",
                context={"product_id": product_id, "error_type": type(e).__name__},
            ) from e

        if image_path:
            background_tasks.add_task(self.files.cleanup_file, image_path)

        logger.info("Product %s deleted", product_id)
        return MessageResponse(message="Product deleted successfully")

    # ── Queries ───────────────────────────────────────────────────────────

    async def get_product(self, db: AsyncSession, product_id: int) -> ProductResponse:
        """
        Retrieve a single product by ID.

        Raises:
            NotFoundError: No product with that ID (→ 404)
            DatabaseError: Query execution failed (→ 500)
        """
        product = await self._load(db, product_id)
        return ProductResponse.model_validate(product)

    async def list_products(
        self,
        db: AsyncSession,
        page: Union[int, str, None] = 1,
        page_size: Union[int, str, None] = DEFAULT_PAGE_SIZE,
    ) -> ProductListResponse:
        """
        List products with offset pagination, ordered by ID.

        Bad parameters are corrected rather than rejected: values that are
        not integers count as 0, then page < 1 becomes 1 and page_size
        outside 1..100 becomes 10.
        """
        page = _lenient_int(page)
        page_size = _lenient_int(page_size)
        if page < 1:
            page = 1
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            page_size = DEFAULT_PAGE_SIZE

        try:
            count_result = await db.execute(select(func.count(Product.id)))
            total = count_result.scalar() or 0

            result = await db.execute(
                select(Product)
                .order_by(Product.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            products = list(result.scalars().all())
        except Exception as e:
            logger.error("Database error listing products: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Failed to fetch products. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        return ProductListResponse(
            data=[ProductResponse.model_validate(p) for p in products],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _load(self, db: AsyncSession, product_id: int) -> Product:
        try:
            result = await db.execute(select(Product).where(Product.id == product_id))
            product = result.scalar_one_or_none()
        except Exception as e:
            logger.error("Database error fetching product %s: %s", product_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the product. Please try again.",
                context={"product_id": product_id},
            ) from e

        if product is None:
            raise NotFoundError(resource="product", resource_id=str(product_id))
        return product

    async def _store_image(self, image: RawUpload) -> Tuple[str, str]:
        """
        Optimize an upload into a fresh destination.

        Returns:
            Tuple of (absolute_path, relative_path_for_db).

        Raises:
            ValidationError, FileStorageError, or the ImageProcessingError
            carried by the optimization result.
        """
        self.files.validate_size(image.size)
        absolute_path, relative_path = self.files.generate_destination(image.extension)

        result = await self.orchestrator.run(image.content, absolute_path, image.extension)
        result.unwrap()

        logger.info("Image stored: %s (%d bytes uploaded)", relative_path, image.size)
        return str(absolute_path), relative_path

    @staticmethod
    def _validate_name(name: str) -> str:
        stripped = (name or "").strip()
        if not stripped:
            raise ValidationError(message="Product name is required", field="name")
        if len(stripped) > 255:
            raise ValidationError(message="Product name must be at most 255 characters", field="name")
        return stripped

    @staticmethod
    def _parse_price(price: str) -> float:
        try:
            value = float(price)
        except (TypeError, ValueError):
            raise ValidationError(
                message="Invalid price format",
                field="price",
                context={"value": str(price)[:50]},
            ) from None
        if not math.isfinite(value):
            raise ValidationError(message="Invalid price format", field="price")
        return value


def _lenient_int(value: Union[int, str, None]) -> int:
    """Query parameter as int; anything unparseable is 0."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


# ── Singleton Instance ────────────────────────────────────────────────────
product_service = ProductService(orchestrator=upload_orchestrator, files=file_service)
