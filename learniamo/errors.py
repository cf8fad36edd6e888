"""
ERROR TAXONOMY
==============

Every failure the relay reports to a client is one of the kinds below. Raw
upstream exceptions (Groq, Google Cloud) never cross the orchestrator boundary:
they are classified here and re-raised as RelayError.

  InvalidInput        - bad request (empty message, empty/oversized/unreadable audio). 400
  NoSpeechDetected    - audio was fine but nothing was recognised; ask the user to retry. 422
  UpstreamAuth        - provider rejected our credentials; operator action needed. 401
  UpstreamThrottled   - provider quota / rate limit; retry later. 429
  UpstreamUnavailable - anything else, timeouts included; retry later. 500
  SynthesisDegraded   - warning only: the voice reply has text but no audio.
"""

import asyncio
from enum import Enum
from typing import Optional

from google.api_core import exceptions as google_exceptions
import groq


class ErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    NO_SPEECH_DETECTED = "NoSpeechDetected"
    UPSTREAM_AUTH = "UpstreamAuth"
    UPSTREAM_THROTTLED = "UpstreamThrottled"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    SYNTHESIS_DEGRADED = "SynthesisDegraded"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def retryable(self) -> bool:
        return self in (
            ErrorKind.NO_SPEECH_DETECTED,
            ErrorKind.UPSTREAM_THROTTLED,
            ErrorKind.UPSTREAM_UNAVAILABLE,
        )

    @property
    def action(self) -> str:
        """What the client should tell the user to do next."""
        return _ACTIONS[self]

    @property
    def message(self) -> str:
        """Fixed, user-facing message. Never includes upstream error text."""
        return _MESSAGES[self]


_STATUS_CODES = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NO_SPEECH_DETECTED: 422,
    ErrorKind.UPSTREAM_AUTH: 401,
    ErrorKind.UPSTREAM_THROTTLED: 429,
    ErrorKind.UPSTREAM_UNAVAILABLE: 500,
    ErrorKind.SYNTHESIS_DEGRADED: 200,
}

_ACTIONS = {
    ErrorKind.INVALID_INPUT: "fix_request",
    ErrorKind.NO_SPEECH_DETECTED: "retry_speaking",
    ErrorKind.UPSTREAM_AUTH: "contact_operator",
    ErrorKind.UPSTREAM_THROTTLED: "retry_later",
    ErrorKind.UPSTREAM_UNAVAILABLE: "retry_later",
    ErrorKind.SYNTHESIS_DEGRADED: "none",
}

_MESSAGES = {
    ErrorKind.INVALID_INPUT: "The request was not valid.",
    ErrorKind.NO_SPEECH_DETECTED: "Could not understand the audio. Please try speaking clearer.",
    ErrorKind.UPSTREAM_AUTH: (
        "The assistant is not configured correctly (provider credentials were rejected). "
        "Please contact the site operator."
    ),
    ErrorKind.UPSTREAM_THROTTLED: (
        "The assistant has reached its usage limit for now. Please try again later."
    ),
    ErrorKind.UPSTREAM_UNAVAILABLE: (
        "The assistant is temporarily unavailable. Please try again in a moment."
    ),
    ErrorKind.SYNTHESIS_DEGRADED: "The spoken reply could not be generated; showing text only.",
}


class RelayError(Exception):
    """
    The only exception the orchestrators raise to their callers.

    `detail` is a user-safe message (defaults to the kind's fixed message). The
    original upstream exception, if any, is kept as __cause__ for logging only.
    """

    def __init__(self, kind: ErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail or kind.message
        super().__init__(f"{kind.value}: {self.detail}")

    def to_dict(self) -> dict:
        return {
            "error": self.detail,
            "kind": self.kind.value,
            "retryable": self.kind.retryable,
            "action": self.kind.action,
        }


# ==============================================================================
# UPSTREAM CLASSIFICATION
# ==============================================================================

_AUTH_GOOGLE = (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)
_THROTTLE_GOOGLE = (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)
_AUTH_GROQ = (groq.AuthenticationError, groq.PermissionDeniedError)


def _is_rate_limit_error(exc: Exception) -> bool:
    """True if the exception text looks like a rate limit (429 / tokens per day / quota)."""
    msg = str(exc).lower()
    return "429" in msg or "rate limit" in msg or "tokens per day" in msg or "quota" in msg


def _is_auth_error(exc: Exception) -> bool:
    msg = str(exc).lower()
    return "api key not valid" in msg or "invalid api key" in msg or "unauthenticated" in msg


def classify_upstream_error(exc: BaseException) -> ErrorKind:
    """
    Map any exception raised by a provider call to an ErrorKind.

    Order: timeouts, typed provider exceptions, HTTP status attributes, then
    message heuristics. Anything unrecognised is UpstreamUnavailable.
    """
    if isinstance(exc, RelayError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, groq.APITimeoutError)):
        return ErrorKind.UPSTREAM_UNAVAILABLE

    if isinstance(exc, _AUTH_GOOGLE) or isinstance(exc, _AUTH_GROQ):
        return ErrorKind.UPSTREAM_AUTH
    if isinstance(exc, _THROTTLE_GOOGLE) or isinstance(exc, groq.RateLimitError):
        return ErrorKind.UPSTREAM_THROTTLED
    # Speech-to-Text answers a bad encoding / malformed audio with INVALID_ARGUMENT.
    if isinstance(exc, google_exceptions.InvalidArgument):
        return ErrorKind.INVALID_INPUT

    status = getattr(exc, "status_code", None)
    if status in (401, 403):
        return ErrorKind.UPSTREAM_AUTH
    if status == 429:
        return ErrorKind.UPSTREAM_THROTTLED

    if isinstance(exc, Exception):
        if _is_rate_limit_error(exc):
            return ErrorKind.UPSTREAM_THROTTLED
        if _is_auth_error(exc):
            return ErrorKind.UPSTREAM_AUTH
    return ErrorKind.UPSTREAM_UNAVAILABLE


def is_transient_upstream_error(exc: BaseException) -> bool:
    """True for provider errors worth retrying immediately (overloaded, deadline exceeded)."""
    return isinstance(
        exc,
        (
            google_exceptions.ServiceUnavailable,
            google_exceptions.DeadlineExceeded,
            google_exceptions.InternalServerError,
        ),
    )
