"""
Catalog Backend — Pydantic Request/Response Schemas
=====================================================

What:  Pydantic models defining the API contract of the catalog.
Why:   Automatic serialization and OpenAPI doc generation; the ORM model
       never leaks straight into a response.
How:   Routes declare these as response models; ProductResponse reads
       attributes from Product rows directly (from_attributes).

Write requests are multipart forms (they may carry an image), so there is
no request-body model: the form fields are declared on the routes.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

# URL prefix under which stored images are served
UPLOADS_URL_PREFIX = "/uploads"


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ProductResponse(BaseModel):
    """
    What:  Full representation of a product.
    Who:   Returned by every product endpoint that yields a single product.

    image_path is the stored relative path (empty when there is no image);
    image_url is the path a browser can fetch it from.
    """
    id: int = Field(description="Product identifier")
    name: str = Field(description="Display name")
    description: str = Field(default="", description="Free-form description")
    price: float = Field(description="Unit price")
    image_path: str = Field(default="", description="Stored image path relative to the storage root")
    created_at: datetime = Field(description="Creation timestamp (UTC)")
    updated_at: datetime = Field(description="Last modification timestamp (UTC)")

    model_config = {"from_attributes": True}

    @computed_field(description="URL of the optimized image, null without an image")
    @property
    def image_url(self) -> Optional[str]:
        if not self.image_path:
            return None
        return f"{UPLOADS_URL_PREFIX}/{self.image_path}"


class ProductListResponse(BaseModel):
    """
    What:  Page envelope returned by GET /products.

    Offset pagination: page is 1-based, total_pages = ceil(total / page_size).
    """
    data: List[ProductResponse] = Field(description="Products on this page")
    total: int = Field(description="Total number of products")
    page: int = Field(description="Current page (1-based)")
    page_size: int = Field(description="Items per page")
    total_pages: int = Field(description="Number of pages at this page size")


class MessageResponse(BaseModel):
    """Plain confirmation message, e.g. after a delete."""
    message: str = Field(description="Human-readable confirmation")


# ══════════════════════════════════════════════════════════════════════════
# Error & Health Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "image_decode_error",
            "message": "The uploaded file is not a valid image",
            "request_id": "1a2b3c4d"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    What:  Health check response showing service and dependency status.
    Who:   Returned by GET /health for load balancers and monitoring.
    """
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    uptime_seconds: float = Field(description="Seconds since service started")
