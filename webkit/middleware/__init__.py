"""
webkit - Middleware Package
=============================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Request ID] → [Logging] → Route Handler

    1. Request ID: Assign the correlation ID before anything logs
    2. Logging: Access log line with the ID, status and duration

    Unhandled exceptions are caught by the catch-all handler registered in
    main.py, which logs the traceback and answers 500 (panic recovery).
"""
