"""
CONFIGURATION MODULE
====================

PURPOSE:
  Central place for all LEARNIAMO relay settings: API keys, model names,
  session/cookie policy, upstream timeouts, the language-to-voice table and the
  assistant system prompt. Every value can be overridden from the environment
  (or a .env file), so the same code runs locally and on Cloud Run.

WHAT THIS FILE DOES:
  - Loads environment variables from .env (so API keys stay out of code).
  - Exposes GROQ_API_KEYS / GROQ_MODEL for the completion provider.
  - Defines the transcript bound and the session cookie lifetime.
  - Defines speech-to-text encoding and the language -> voice mapping used by
    both speech-to-text and text-to-speech.
  - Holds the system prompt that defines the assistant's tone.

USAGE:
  Import what you need: `from config import MAX_TRANSCRIPT_TURNS, GROQ_MODEL`
  All services import from here so behaviour is consistent.
"""

import os
import logging
from typing import Dict, List

from dotenv import load_dotenv


# -----------------------------------------------------------------------------
# LOGGING
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# ENVIRONMENT
# -----------------------------------------------------------------------------
# Load environment variables from .env file (if it exists).
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment ("1", "true", "yes", "on" are true)."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    """Read an integer from the environment; fall back to default if unset or malformed."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s: %r", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric value for %s: %r", name, raw)
        return default


# ============================================================================
# SERVER
# ============================================================================
# Cloud Run sets PORT; locally the relay listens on 8080.
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _env_int("PORT", 8080)

# Origins allowed to call the relay from a browser. Comma separated.
# "*" is only safe for local development because the session cookie needs credentials.
CORS_ORIGINS: List[str] = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "https://learniamo.com,https://www.learniamo.com,http://localhost:8080",
    ).split(",")
    if o.strip()
]


# ============================================================================
# GROQ API CONFIGURATION
# ============================================================================
# Groq is the completion provider. You can set one key (GROQ_API_KEY) or several:
#   GROQ_API_KEY, GROQ_API_KEY_2, GROQ_API_KEY_3, ... (no upper limit).
# Requests rotate through the keys one-by-one. If a key is throttled (429) or
# rejected, the relay tries the next key before giving up.

def _load_groq_api_keys() -> list:
    """
    Load all GROQ API keys from the environment.
    Reads GROQ_API_KEY first, then GROQ_API_KEY_2, GROQ_API_KEY_3, ... until
    a number has no value. Returns a list of non-empty key strings.
    """
    keys = []
    first = os.getenv("GROQ_API_KEY", "").strip()
    if first:
        keys.append(first)
    i = 2
    while True:
        k = os.getenv(f"GROQ_API_KEY_{i}", "").strip()
        if not k:
            break
        keys.append(k)
        i += 1
    return keys


GROQ_API_KEYS = _load_groq_api_keys()
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")

# Upper bound on reply length (tokens) and sampling temperature.
MAX_OUTPUT_TOKENS = _env_int("MAX_OUTPUT_TOKENS", 2000)
TEMPERATURE = _env_float("TEMPERATURE", 0.6)


# ============================================================================
# UPSTREAM CALL POLICY
# ============================================================================
# Every call to Groq / Speech-to-Text / Text-to-Speech is bounded by this many
# seconds. For streamed replies the bound covers the whole stream.
UPSTREAM_TIMEOUT_SECONDS = _env_float("UPSTREAM_TIMEOUT_SECONDS", 60.0)

# Transient provider errors (503, deadline exceeded) are retried this many times
# (first attempt included), with exponential backoff starting at the given delay.
UPSTREAM_MAX_RETRIES = _env_int("UPSTREAM_MAX_RETRIES", 2)
UPSTREAM_RETRY_DELAY_SECONDS = _env_float("UPSTREAM_RETRY_DELAY_SECONDS", 0.5)


# ============================================================================
# SESSION POLICY
# ============================================================================
# Maximum number of turns (user and model messages, counted separately) kept per
# session. When a new turn would exceed it, the oldest turn is dropped.
MAX_TRANSCRIPT_TURNS = _env_int("MAX_TRANSCRIPT_TURNS", 20)

# The browser keeps the session token in this cookie. 24 hours by default.
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "sessionId")
SESSION_COOKIE_MAX_AGE = _env_int("SESSION_COOKIE_MAX_AGE", 24 * 60 * 60)
# Set to true behind HTTPS (Cloud Run) so the cookie is never sent in clear text.
SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", False)

# Maximum length (characters) for a single user message.
MAX_MESSAGE_LENGTH = _env_int("MAX_MESSAGE_LENGTH", 32_000)

# When true, POST /chat streams by default (Server-Sent Events) even if the
# client did not ask for it.
STREAM_REPLIES = _env_bool("STREAM_REPLIES", False)


# ============================================================================
# VOICE CONFIGURATION
# ============================================================================
# Encoding of the audio the browser records (MediaRecorder audio/webm;codecs=opus).
STT_ENCODING = os.getenv("STT_ENCODING", "WEBM_OPUS")
# 0 lets Speech-to-Text read the rate from the WEBM header.
STT_SAMPLE_RATE_HERTZ = _env_int("STT_SAMPLE_RATE_HERTZ", 0)

# Largest accepted voice upload (bytes). Synchronous recognition caps at ~1 minute.
MAX_AUDIO_BYTES = _env_int("MAX_AUDIO_BYTES", 10 * 1024 * 1024)

# Language used when the client sends no hint or an unknown one.
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en-US")

# One table drives both stages: the resolved language code is the Speech-to-Text
# language_code AND selects the Text-to-Speech voice below.
LANGUAGE_VOICES: Dict[str, str] = {
    "en-US": "en-US-Standard-C",
    "en-GB": "en-GB-Standard-A",
    "it-IT": "it-IT-Standard-A",
    "de-DE": "de-DE-Standard-A",
    "fr-FR": "fr-FR-Standard-A",
    "es-ES": "es-ES-Standard-A",
}


# ============================================================================
# ASSISTANT PERSONALITY CONFIGURATION
# ============================================================================
# Assistant name is not hardcoded: set ASSISTANT_NAME in .env.

ASSISTANT_NAME = (os.getenv("ASSISTANT_NAME", "").strip() or "LEARNIAMO")

_SYSTEM_PROMPT_BASE = """You are {assistant_name}, a friendly tutor that helps people learn through conversation.

Tone and Style:
- Be warm, encouraging and clear
- Prefer short answers; expand only when the learner asks for detail
- When the learner makes a mistake, correct it gently and explain why

Formatting Rules:
- Write plain text without markdown
- Separate paragraphs with a blank line
- Replies may be read aloud, so avoid tables, emojis and decorative symbols
"""

SYSTEM_PROMPT = os.getenv("SYSTEM_PROMPT", "").strip() or _SYSTEM_PROMPT_BASE.format(
    assistant_name=ASSISTANT_NAME
)
