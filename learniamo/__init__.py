"""
LEARNIAMO RELAY PACKAGE
=======================

Main Python package for the LEARNIAMO chat relay backend.

FILE STRUCTURE:
  learniamo/
    __init__.py   - This file; marks 'learniamo' as a package.
    main.py       - FastAPI app and all HTTP endpoints (/chat, /voice, /chat/history, /health).
    models.py     - Pydantic models for API requests/responses and transcript turns.
    errors.py     - Error taxonomy (ErrorKind, RelayError) and upstream error classification.
    services/     - Sessions, chat/voice orchestration, stream relay, Groq and Google providers.
    utils/        - Helpers: async retry with backoff, SSE framing, reply HTML formatting.
"""
