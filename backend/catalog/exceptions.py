"""
Catalog Backend — Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for the catalog and its image pipeline.
Why:   Typed errors map cleanly onto HTTP status codes in the global handlers
       registered by main.py, without leaking internal details to clients.
How:   Each exception carries a user-facing message and an optional context
       dict that is logged server-side only.

Exception Hierarchy:
    CatalogError (base)
    ├── ValidationError          → 400 Bad Request
    ├── NotFoundError            → 404 Not Found
    ├── FileStorageError         → 500 Internal Server Error
    ├── DatabaseError            → 500 Internal Server Error
    └── ImageProcessingError     → 500 (base for the image pipeline)
        ├── ImageDecodeError     → 422 Unprocessable Entity
        ├── ImageWriteError      → 500 Internal Server Error
        └── ImageTimeoutError    → 504 Gateway Timeout

The image errors double as the failure values of an OptimizationResult:
the optimizer returns them instead of raising, and the product service
raises them via OptimizationResult.unwrap().
"""

from typing import Any, Dict, Optional


class CatalogError(Exception):
    """
    Base exception for all catalog application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CatalogError):
    """
    Raised when client input fails business validation.

    When:    Blank name, unparseable price, empty or oversized upload,
             path traversal attempts.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(CatalogError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing rows; the service layer converts
    that into this exception so routes never deal with None checks.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource.capitalize()} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class FileStorageError(CatalogError):
    """Raised when the storage directory cannot be prepared or read."""

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(CatalogError):
    """
    Raised when database operations fail unexpectedly.

    The client always receives a generic message; the SQL error lives
    only in the server log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


# ══════════════════════════════════════════════════════════════════════════
# Image Pipeline Errors
# ══════════════════════════════════════════════════════════════════════════


class ImageProcessingError(CatalogError):
    """Base class for terminal outcomes of one image optimization call."""

    def __init__(
        self,
        message: str = "Failed to process image",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ImageDecodeError(ImageProcessingError):
    """
    The uploaded bytes are not a readable image.

    HTTP:    422 Unprocessable Entity. The client sent something we cannot
             parse; retrying the same bytes will never succeed.
    """

    def __init__(
        self,
        message: str = "The uploaded file is not a valid image",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ImageWriteError(ImageProcessingError):
    """
    The optimized image could not be written to its destination.

    When:    Permission denied, disk full, destination directory missing.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "Failed to process image",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ImageTimeoutError(ImageProcessingError):
    """
    The optimization deadline elapsed before a result was produced.

    HTTP:    504 Gateway Timeout. Distinct from the other failures so callers
             can retry with a smaller image or at a quieter moment.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"Image processing timed out after {timeout:g} seconds"
        ctx = context or {}
        ctx["timeout"] = timeout
        super().__init__(message=message, context=ctx)
        self.timeout = timeout


class OptimizationCancelled(ImageProcessingError):
    """
    Internal signal: an abandoned optimization noticed its cancel event.

    Never delivered to callers. The orchestrator has already returned
    ImageTimeoutError by the time this is raised.
    """

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Image processing was cancelled", context=context)
