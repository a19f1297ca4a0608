# Middleware package init
"""
Catalog Backend — Middleware Package
======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain:
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID first, so every log line of the request can carry it
    2. Logging measures the full handler duration, including image work

    Responses travel back through the same chain in reverse, which is where
    the X-Request-ID header is added and the access line is written.
"""
