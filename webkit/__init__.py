"""
webkit - Web Service Bootstrap Template
=========================================

What: Marks the `webkit` directory as a Python package.
Why:  Enables imports like `from webkit.config import init_by_env`.
Who:  Used by uvicorn, pytest, and `python -m webkit`.

Startup Order:

    ┌─────────────────────────────────────┐
    │  Config      (env or config file)   │  ← must be fully built first
    ├─────────────────────────────────────┤
    │  Logger      (root logging setup)   │
    ├─────────────────────────────────────┤
    │  App         (middleware + routes)  │
    ├─────────────────────────────────────┤
    │  Database    (async engine + ping)  │
    ├─────────────────────────────────────┤
    │  Validator   (request error format) │
    ├─────────────────────────────────────┤
    │  Server      (listen, signal, stop) │
    └─────────────────────────────────────┘

    The Config object is passed explicitly to every layer; nothing reads
    configuration from a module-level global.
"""

__version__ = "1.0.0"
