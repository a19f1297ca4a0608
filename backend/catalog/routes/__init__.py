# Routes package init
"""
Catalog Backend — API Routes Package
======================================

What:  HTTP route handlers that accept requests and return responses.
How:   One module per resource.

Route Inventory:
    - products.py:  POST   /products            (create, multipart)
                    GET    /products            (paginated list)
                    GET    /products/{id}       (detail)
                    PUT    /products/{id}       (partial update, multipart)
                    DELETE /products/{id}
    - uploads.py:   GET    /uploads/{path}      (stored images)
    - health.py:    GET    /health

Routes stay thin: they read the request, call a service, and set status
codes and headers. Business rules live in catalog.services.
"""
