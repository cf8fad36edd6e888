"""
SESSION STORE MODULE
====================

Maps an opaque session token to that session's transcript (ordered list of
turns, oldest first). This is the ONLY place transcript contents change.

BOUND:
  Each transcript keeps at most MAX_TRANSCRIPT_TURNS turns. Appending beyond the
  bound drops the oldest turn (FIFO); the newest turn is never dropped. The store
  does not check that roles alternate; callers append user/model pairs.

LIFETIME:
  In-memory and volatile: everything is lost on restart. There is no expiry.
  The SessionStore protocol is what the services depend on, so a persistent
  backend can replace InMemorySessionStore without touching them.

CONCURRENCY:
  get_or_create() and append() never await, so each call is atomic on the
  event loop. lock(token) returns that session's asyncio.Lock; orchestrators hold
  it across append -> upstream call -> commit so two requests from the same
  browser cannot interleave their turns. Different tokens never share a lock.
"""

import asyncio
from collections import deque
from typing import Deque, Dict, Protocol, Tuple

from config import MAX_TRANSCRIPT_TURNS
from learniamo.models import Role, Turn

# Immutable snapshot handed to readers.
Transcript = Tuple[Turn, ...]


class SessionStore(Protocol):
    def get_or_create(self, token: str) -> Transcript: ...

    def append(self, token: str, role: Role, text: str) -> None: ...

    def lock(self, token: str) -> asyncio.Lock: ...

    def session_count(self) -> int: ...


class InMemorySessionStore:
    """Process-wide token -> transcript map with a fixed per-session bound."""

    def __init__(self, max_turns: int = MAX_TRANSCRIPT_TURNS):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.max_turns = max_turns
        self._transcripts: Dict[str, Deque[Turn]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _transcript(self, token: str) -> Deque[Turn]:
        transcript = self._transcripts.get(token)
        if transcript is None:
            # deque(maxlen) drops from the left (oldest) when a right append overflows.
            transcript = deque(maxlen=self.max_turns)
            self._transcripts[token] = transcript
        return transcript

    def get_or_create(self, token: str) -> Transcript:
        """Return the session's turns, oldest first. Creates an empty transcript on first access."""
        return tuple(self._transcript(token))

    def append(self, token: str, role: Role, text: str) -> None:
        """Append one turn; evicts the oldest turn when the bound is exceeded."""
        self._transcript(token).append(Turn(role=role, text=text))

    def lock(self, token: str) -> asyncio.Lock:
        lock = self._locks.get(token)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[token] = lock
        return lock

    def session_count(self) -> int:
        return len(self._transcripts)
