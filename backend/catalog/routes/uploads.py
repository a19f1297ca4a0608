"""
Catalog Backend — Stored Image Route
======================================

What:  GET /uploads/{path} serves optimized product images.
Why:   image_url in product responses points here; the storage directory is
       not exposed as a static web root.
How:   The path is resolved inside STORAGE_ROOT, the media type is sniffed
       from the file header with python-magic, and the file is streamed back.

Why sniff instead of guessing from the name:
    Uploads with an unrecognized extension are stored as JPEG but keep the
    client's suffix, so the name cannot be trusted to describe the content.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import FileResponse

from catalog.exceptions import NotFoundError
from catalog.schemas.product import UPLOADS_URL_PREFIX, ErrorResponse
from catalog.services.file_service import file_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix=UPLOADS_URL_PREFIX, tags=["Uploads"])


@router.get(
    "/{file_path:path}",
    summary="Serve a stored product image",
    responses={
        200: {"description": "Image file"},
        400: {"description": "Path outside the storage root", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
)
async def serve_upload(file_path: str) -> FileResponse:
    full_path = file_service.resolve(file_path)

    if not full_path.is_file():
        raise NotFoundError(resource="file", resource_id=file_path)

    media_type = await file_service.sniff_media_type(full_path) or "application/octet-stream"

    return FileResponse(
        path=str(full_path),
        media_type=media_type,
        # File names are UUIDs and never rewritten, so long caching is safe
        headers={"Cache-Control": "public, max-age=86400"},
    )
