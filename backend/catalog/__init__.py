"""
Catalog Backend — Application Package Initializer
===================================================

What: Product catalog service with optimized image uploads.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← CRUD rules, image pipeline
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The image pipeline (services.image_optimizer and friends) has no
    knowledge of HTTP or the database and is tested on its own.
"""

__version__ = "1.0.0"
