"""
UPSTREAM GATEWAY CONTRACT
=========================

The orchestrators talk to providers only through these three capabilities. The
concrete providers live next to this file:

  CompletionCapability    - groq_service.GroqCompletionService (LangChain + Groq)
  TranscriptionCapability - speech_service.GoogleSpeechService
  SynthesisCapability     - tts_service.GoogleTextToSpeechService

Providers raise their SDK's own exceptions; the orchestrators classify them with
learniamo.errors.classify_upstream_error.
"""

from dataclasses import dataclass
from typing import AsyncIterator, Protocol, Sequence

from learniamo.models import Turn


@dataclass(frozen=True)
class VoiceSelection:
    """Text-to-Speech voice: language code plus voice name (e.g. en-US / en-US-Standard-C)."""
    language_code: str
    name: str


class CompletionCapability(Protocol):
    async def complete(self, turns: Sequence[Turn]) -> str:
        """Return the full reply to the conversation so far (last turn is the user's)."""
        ...

    def stream(self, turns: Sequence[Turn]) -> AsyncIterator[str]:
        """
        Return a finite, non-restartable iterator of reply fragments. Exhaustion
        is the end signal. Closing it (aclose) cancels the upstream call.
        """
        ...


class TranscriptionCapability(Protocol):
    async def transcribe(self, audio: bytes, encoding: str, language_code: str) -> str:
        """Best-effort transcript; "" when nothing was recognised."""
        ...


class SynthesisCapability(Protocol):
    async def synthesize(self, text: str, voice: VoiceSelection) -> bytes:
        """Encoded audio (MP3) for text."""
        ...
