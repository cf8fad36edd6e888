"""
RUN SCRIPT - Start the LEARNIAMO relay
======================================

PURPOSE:
  Single entry point to start the backend, locally or in the container.

WHAT IT DOES:
  - Runs the FastAPI app (learniamo.main:app) with uvicorn on HOST:PORT
    (0.0.0.0:8080 unless overridden; Cloud Run sets PORT).
  - RELOAD=1 restarts the server when Python files change (development only).

USAGE:
  python run.py

  Then POST to http://localhost:8080/chat, or run `python client.py`.
  API docs: http://localhost:8080/docs

NOTE:
  Set GROQ_API_KEY in .env. Voice needs Google Cloud credentials
  (GOOGLE_APPLICATION_CREDENTIALS locally; the service account on Cloud Run).
"""

import os

import uvicorn

from config import HOST, PORT

if __name__ == "__main__":
    uvicorn.run(
        "learniamo.main:app",
        host=HOST,
        port=PORT,
        reload=os.getenv("RELOAD", "").strip().lower() in ("1", "true", "yes"),
    )
