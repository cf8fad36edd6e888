"""
CHAT SERVICE MODULE
===================

Runs one text turn for a session: validate, record the user's message, send the
whole transcript to the completion provider, record the reply.

  handle_text_turn(token, text)  -> reply text (non-streamed)
  stream_text_turn(token, text)  -> StreamRelay (validated up front; runs when iterated)

HISTORY RULES:
  - The user turn is recorded before the provider is called and stays there
    even if the call fails (the user really said it).
  - The model turn is recorded only once the complete reply is known. A failed,
    timed-out or abandoned call records nothing, so the next turn simply
    re-sends the unanswered transcript.
  - Both steps happen under the session's lock, so concurrent requests from one
    browser are served one after another.

Provider errors are translated to RelayError here; nothing else leaves this module.
"""

import asyncio
import logging
from typing import Optional

from config import MAX_MESSAGE_LENGTH, UPSTREAM_TIMEOUT_SECONDS
from learniamo.errors import ErrorKind, RelayError, classify_upstream_error
from learniamo.services.gateway import CompletionCapability
from learniamo.services.session_identity import mask_token
from learniamo.services.session_store import SessionStore
from learniamo.services.stream_relay import StreamRelay

logger = logging.getLogger("LEARNIAMO")


class ChatService:
    """Text-turn orchestration over an injected session store and completion provider."""

    def __init__(
        self,
        store: SessionStore,
        completion: CompletionCapability,
        timeout: float = UPSTREAM_TIMEOUT_SECONDS,
        max_message_length: int = MAX_MESSAGE_LENGTH,
    ):
        self.store = store
        self.completion = completion
        self.timeout = timeout
        self.max_message_length = max_message_length

    def validate_message(self, text: Optional[str]) -> str:
        """Return the message to record, or raise InvalidInput. Never touches history."""
        if text is None or not text.strip():
            raise RelayError(ErrorKind.INVALID_INPUT, "Message is required in the request body.")
        if len(text) > self.max_message_length:
            raise RelayError(
                ErrorKind.INVALID_INPUT,
                f"Message is too long (maximum {self.max_message_length} characters).",
            )
        return text.strip()

    async def handle_text_turn(self, token: str, text: Optional[str]) -> str:
        message = self.validate_message(text)

        async with self.store.lock(token):
            self.store.append(token, "user", message)
            transcript = self.store.get_or_create(token)
            logger.info("[CHAT] Session %s: %s turn(s) sent to completion", mask_token(token), len(transcript))

            try:
                reply = await asyncio.wait_for(self.completion.complete(transcript), self.timeout)
            except Exception as e:
                raise self._translate(token, e) from e

            if not reply or not reply.strip():
                logger.warning("[CHAT] Session %s: completion returned an empty reply", mask_token(token))
                raise RelayError(ErrorKind.UPSTREAM_UNAVAILABLE)

            self.store.append(token, "model", reply)

        logger.info("[CHAT] Session %s: reply committed (%s chars)", mask_token(token), len(reply))
        return reply

    def stream_text_turn(self, token: str, text: Optional[str]) -> StreamRelay:
        """
        Validate now (so InvalidInput is an ordinary error response) and return a
        relay that records the user turn, streams the reply, and commits it when
        the stream completes.
        """
        message = self.validate_message(text)

        def start():
            self.store.append(token, "user", message)
            transcript = self.store.get_or_create(token)
            logger.info("[CHAT] Session %s: %s turn(s) sent to streaming completion", mask_token(token), len(transcript))
            return self.completion.stream(transcript)

        def commit(reply: str) -> None:
            self.store.append(token, "model", reply)

        return StreamRelay(
            start=start,
            commit=commit,
            lock=self.store.lock(token),
            timeout=self.timeout,
            label=f"(session {mask_token(token)})",
        )

    @staticmethod
    def _translate(token: str, exc: Exception) -> RelayError:
        kind = classify_upstream_error(exc)
        if kind is ErrorKind.UPSTREAM_UNAVAILABLE and not isinstance(exc, asyncio.TimeoutError):
            logger.error("[CHAT] Session %s: completion failed: %s", mask_token(token), exc, exc_info=True)
        else:
            logger.warning("[CHAT] Session %s: completion failed: %s (%s)", mask_token(token), kind.value, exc)
        return RelayError(kind)
