# Services package init
"""
Catalog Backend — Services Layer
==================================

What:  Business logic between the routes (HTTP) and the database.
How:   Module-level singletons, wired once at import; routes call them and
       pass in the per-request database session.

Service Inventory:
    - BufferPool:           Reusable in-memory encode buffers
    - ImageOptimizer:       Decode → bound to 800x800 → re-encode → atomic write
    - UploadOrchestrator:   Runs the optimizer on worker threads under a deadline
    - FileService:          Destination paths, size limits, safe resolution, cleanup
    - ProductService:       Product CRUD, composing all of the above

Dependency direction:
    ProductService → UploadOrchestrator → ImageOptimizer → BufferPool
                   → FileService
"""
