"""
GROQ COMPLETION SERVICE MODULE
==============================

The completion capability: sends a transcript to Groq through LangChain's
ChatGroq and returns the reply, either whole (complete) or as fragments (stream).

PROMPT:
  [system prompt] + one HumanMessage / AIMessage per transcript turn. The last
  turn is the user's new message; there is no separate "question" slot.

ROUND-ROBIN API KEYS:
  - One ChatGroq client per configured key (GROQ_API_KEY, GROQ_API_KEY_2, ...).
  - A class-level counter picks the starting key, so consecutive requests use
    key 1, key 2, key 3, then back to key 1.
  - If a key is throttled (429) or rejected, the next key is tried. A stream
    only switches keys before its first fragment; after that the error is
    raised so the relay can report it.
  - Keys are logged masked (first 8 characters).

Errors are Groq / LangChain exceptions; the orchestrators classify them.
"""

import logging
from typing import AsyncIterator, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_groq import ChatGroq

from config import GROQ_API_KEYS, GROQ_MODEL, MAX_OUTPUT_TOKENS, SYSTEM_PROMPT, TEMPERATURE
from learniamo.errors import ErrorKind, classify_upstream_error
from learniamo.models import Turn

logger = logging.getLogger("LEARNIAMO")


def mask_api_key(key: str) -> str:
    """Show only the first 8 characters of an API key in logs."""
    if not key:
        return "<empty>"
    return f"{key[:8]}..." if len(key) > 8 else "***"


def _content_text(content) -> str:
    """LangChain message content is a str or a list of parts; return the text either way."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


# ==============================================================================
# GROQ COMPLETION SERVICE CLASS
# ==============================================================================

class GroqCompletionService:
    """
    Completion capability backed by Groq. Holds one ChatGroq client per API key
    and rotates through them.
    """

    # Shared across instances so every request (text, voice, stream) advances the same rotation.
    _shared_key_index = 0

    def __init__(
        self,
        api_keys: Optional[List[str]] = None,
        model: str = GROQ_MODEL,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        temperature: float = TEMPERATURE,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.api_keys = list(api_keys if api_keys is not None else GROQ_API_KEYS)
        if not self.api_keys:
            raise ValueError("No Groq API key configured. Set GROQ_API_KEY in .env.")

        self.model = model
        self.system_prompt = system_prompt
        self.llms = [
            ChatGroq(
                model=model,
                api_key=key,
                max_tokens=max_tokens,
                temperature=temperature,
                max_retries=1,
            )
            for key in self.api_keys
        ]
        logger.info(
            "Groq completion service ready: model=%s, %s key(s): %s",
            model,
            len(self.api_keys),
            ", ".join(mask_api_key(k) for k in self.api_keys),
        )

    # --------------------------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------------------------

    def _build_messages(self, turns: Sequence[Turn]) -> List[BaseMessage]:
        messages: List[BaseMessage] = [SystemMessage(content=self.system_prompt)]
        for turn in turns:
            if turn.role == "user":
                messages.append(HumanMessage(content=turn.text))
            else:
                messages.append(AIMessage(content=turn.text))
        return messages

    def _key_order(self) -> List[int]:
        """Indices of the clients to try for one request, starting at the next key in rotation."""
        n = len(self.llms)
        start = GroqCompletionService._shared_key_index % n
        GroqCompletionService._shared_key_index += 1
        return [(start + i) % n for i in range(n)]

    @staticmethod
    def _worth_next_key(exc: Exception) -> bool:
        return classify_upstream_error(exc) in (ErrorKind.UPSTREAM_THROTTLED, ErrorKind.UPSTREAM_AUTH)

    # --------------------------------------------------------------------------
    # CAPABILITY
    # --------------------------------------------------------------------------

    async def complete(self, turns: Sequence[Turn]) -> str:
        messages = self._build_messages(turns)
        order = self._key_order()

        for position, idx in enumerate(order):
            try:
                response = await self.llms[idx].ainvoke(messages)
                logger.info("Groq reply generated with key #%s (%s)", idx + 1, mask_api_key(self.api_keys[idx]))
                return _content_text(response.content)
            except Exception as e:
                if position == len(order) - 1 or not self._worth_next_key(e):
                    raise
                logger.warning(
                    "Groq key #%s (%s) failed, trying next key: %s",
                    idx + 1,
                    mask_api_key(self.api_keys[idx]),
                    e,
                )

        raise RuntimeError("no Groq client available")

    async def stream(self, turns: Sequence[Turn]) -> AsyncIterator[str]:
        messages = self._build_messages(turns)
        order = self._key_order()

        for position, idx in enumerate(order):
            started = False
            try:
                async for chunk in self.llms[idx].astream(messages):
                    text = _content_text(chunk.content)
                    if text:
                        started = True
                        yield text
                return
            except Exception as e:
                if started or position == len(order) - 1 or not self._worth_next_key(e):
                    raise
                logger.warning(
                    "Groq key #%s (%s) failed before streaming, trying next key: %s",
                    idx + 1,
                    mask_api_key(self.api_keys[idx]),
                    e,
                )
