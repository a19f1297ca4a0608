"""
Catalog Backend — Product Route Handlers
==========================================

What:  CRUD endpoints for /products.
Why:   The catalog's public API; the frontend and admin tools talk to these.
How:   Writes are multipart forms (an image may ride along); handlers read
       the form, delegate to ProductService and shape the HTTP response.
Who:   Called by any HTTP client of the catalog.

Request Flow (POST /products with an image):
    1. FastAPI parses the multipart body (name, price, description, image)
    2. The image is read into memory and its extension normalized
    3. ProductService validates, optimizes (bounded by the image deadline)
       and inserts
    4. 201 Created with the product JSON

Error responses are produced by the global handlers in main.py:
    400 ValidationError, 404 NotFoundError, 422 ImageDecodeError,
    500 ImageWriteError / DatabaseError, 504 ImageTimeoutError
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.database import get_db_session
from catalog.schemas.product import (
    ErrorResponse,
    MessageResponse,
    ProductListResponse,
    ProductResponse,
)
from catalog.services.file_service import file_service
from catalog.services.product_service import product_service
from catalog.services.upload_orchestrator import RawUpload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])

IMAGE_ERROR_RESPONSES = {
    400: {"description": "Invalid field or image size", "model": ErrorResponse},
    422: {"description": "The image could not be decoded", "model": ErrorResponse},
    500: {"description": "Image could not be stored", "model": ErrorResponse},
    504: {"description": "Image processing timed out", "model": ErrorResponse},
}


async def _read_image(image: Optional[UploadFile]) -> Optional[RawUpload]:
    """
    Read an uploaded image into memory.

    Browsers submit an empty file part when no file was chosen; that counts
    as "no image" rather than an empty upload.
    """
    if image is None:
        return None
    try:
        content = await image.read()
    finally:
        await image.close()

    if not image.filename and not content:
        return None

    logger.info("Received image upload: filename=%s, size=%d bytes", image.filename, len(content))
    return RawUpload(
        content=content,
        extension=file_service.normalize_extension(image.filename),
    )


@router.post(
    "",
    status_code=201,
    response_model=ProductResponse,
    responses={201: {"description": "Product created"}, **IMAGE_ERROR_RESPONSES},
    summary="Create a product",
    description=(
        "Create a product from a multipart form. An optional image is resized to fit "
        "800x800 and re-encoded (JPEG quality 80, or PNG for .png uploads)."
    ),
)
async def create_product(
    name: str = Form(..., description="Display name"),
    price: str = Form(..., description="Unit price, e.g. 19.99"),
    description: Optional[str] = Form(default=None, description="Free-form description"),
    image: Optional[UploadFile] = File(default=None, description="Product image"),
    db: AsyncSession = Depends(get_db_session),
) -> ProductResponse:
    upload = await _read_image(image)
    return await product_service.create_product(
        db=db,
        name=name,
        price=price,
        description=description,
        image=upload,
    )


@router.get(
    "",
    response_model=ProductListResponse,
    responses={500: {"description": "Server error", "model": ErrorResponse}},
    summary="List products",
    description=(
        "Offset pagination ordered by ID. Bad values are corrected, never rejected: "
        "page < 1 or non-numeric becomes 1, page_size outside 1..100 or non-numeric becomes 10."
    ),
)
async def list_products(
    response: Response,
    page: Optional[str] = Query(default=None, description="Page number (1-based)"),
    page_size: Optional[str] = Query(default=None, description="Items per page (1-100)"),
    db: AsyncSession = Depends(get_db_session),
) -> ProductListResponse:
    """
    Why X-Total-Count as well as the body field:
        Table widgets and generic REST clients read the header; the body
        carries the full pagination state.
    """
    result = await product_service.list_products(db=db, page=page, page_size=page_size)
    response.headers["X-Total-Count"] = str(result.total)
    return result


@router.get(
    "/{product_id}",
    response_model=ProductResponse,
    responses={404: {"description": "Product not found", "model": ErrorResponse}},
    summary="Get a product by ID",
)
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> ProductResponse:
    return await product_service.get_product(db=db, product_id=product_id)


@router.put(
    "/{product_id}",
    response_model=ProductResponse,
    responses={
        404: {"description": "Product not found", "model": ErrorResponse},
        **IMAGE_ERROR_RESPONSES,
    },
    summary="Update a product",
    description=(
        "Partial update from a multipart form; omitted fields are left unchanged. "
        "A new image replaces the old one, which is deleted in the background."
    ),
)
async def update_product(
    product_id: int,
    background_tasks: BackgroundTasks,
    name: Optional[str] = Form(default=None),
    price: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    image: Optional[UploadFile] = File(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> ProductResponse:
    upload = await _read_image(image)
    return await product_service.update_product(
        db=db,
        product_id=product_id,
        background_tasks=background_tasks,
        name=name,
        description=description,
        price=price,
        image=upload,
    )


@router.delete(
    "/{product_id}",
    response_model=MessageResponse,
    responses={404: {"description": "Product not found", "model": ErrorResponse}},
    summary="Delete a product",
)
async def delete_product(
    product_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await product_service.delete_product(
        db=db,
        product_id=product_id,
        background_tasks=background_tasks,
    )
