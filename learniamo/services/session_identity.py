"""
SESSION IDENTITY MODULE
=======================

Turns the browser's session cookie into a session token.

  - Cookie present and looks like one of our tokens (a UUID): reuse it as-is.
  - Otherwise: mint a new UUID4 and hand back a SessionCredential describing the
    cookie the HTTP layer must set (HttpOnly, SameSite=Lax, 24 h by default).

The token only scopes a conversation. It is not an authentication assertion, and
it is never logged in full (see mask_token).
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from config import (
    SESSION_COOKIE_MAX_AGE,
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_SECURE,
)


@dataclass(frozen=True)
class SessionCredential:
    """Cookie the caller must persist on the client."""
    name: str
    value: str
    max_age: int
    httponly: bool = True
    samesite: str = "lax"
    secure: bool = False


def mask_token(token: Optional[str]) -> str:
    """Short, log-safe form of a session token: first 8 characters."""
    if not token:
        return "<none>"
    return f"{token[:8]}..."


def _looks_valid(credential: Optional[str]) -> bool:
    if not credential or len(credential) > 64:
        return False
    try:
        parsed = uuid.UUID(credential)
    except ValueError:
        return False
    # Only accept the canonical form we issue, so "{...}" / urn: variants mint a fresh token.
    return str(parsed) == credential


class SessionIdentity:
    """Resolves or issues session tokens. resolve() never fails."""

    def __init__(
        self,
        cookie_name: str = SESSION_COOKIE_NAME,
        max_age: int = SESSION_COOKIE_MAX_AGE,
        secure: bool = SESSION_COOKIE_SECURE,
    ):
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure

    def resolve(self, credential: Optional[str]) -> Tuple[str, Optional[SessionCredential]]:
        """
        Return (token, new_credential). new_credential is None when the incoming
        credential was reused; otherwise it describes the cookie to set.
        """
        if _looks_valid(credential):
            return credential, None

        token = str(uuid.uuid4())
        return token, SessionCredential(
            name=self.cookie_name,
            value=token,
            max_age=self.max_age,
            secure=self.secure,
        )
