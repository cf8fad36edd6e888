"""
SERVICES PACKAGE
=================

Business logic lives here. The API layer (learniamo.main) calls these services;
they don't handle HTTP, only sessions, conversation flow and provider calls.

MODULES:
    session_store    - token -> bounded transcript, plus per-session locks
    session_identity - cookie -> session token (issues new tokens)
    gateway          - capability protocols the orchestrators depend on
    chat_service     - text turns (plain and streamed)
    stream_relay     - forwards streamed fragments, commits only complete replies
    voice_service    - transcribe -> chat -> synthesize, with text-only fallback
    groq_service     - completion provider (LangChain + Groq, round-robin keys)
    speech_service   - transcription provider (Google Speech-to-Text)
    tts_service      - synthesis provider (Google Text-to-Speech)
"""
