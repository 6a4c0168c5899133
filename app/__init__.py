"""
RELAYCHAT APPLICATION PACKAGE
=============================

Main Python package for the RelayChat backend and its client helpers.

FILE STRUCTURE:
  app/
    __init__.py    - This file; marks 'app' as a package.
    main.py        - FastAPI app and HTTP endpoints (/api/chat, /health, /).
    models.py      - Pydantic models for the chat request and the error envelope.
    exceptions.py  - RelayError hierarchy.
    services/      - Search, completion relay and SSE re-framing.
    utils/         - Helpers: content sanitizer, retry with backoff.
    client/        - Client-side SSE consumer (token join, reconstruction buffer).
"""
