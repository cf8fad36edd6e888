"""
VOICE SERVICE MODULE
====================

Runs one voice turn as three dependent stages:

  1. TRANSCRIBE  audio -> text (Speech-to-Text)
       empty/oversized audio         -> InvalidInput (no upstream call)
       bad encoding (INVALID_ARGUMENT)-> InvalidInput
       nothing recognised            -> NoSpeechDetected (user should try again)
       other failures                -> UpstreamAuth / UpstreamThrottled / UpstreamUnavailable
     Nothing in this stage touches history.

  2. COMPLETE    same path as a typed message (ChatService.handle_text_turn):
     user turn recorded, model turn recorded only on success.

  3. SYNTHESIZE  reply -> MP3 (Text-to-Speech)
     Any failure here is NOT an error: the turn still succeeds with the text
     reply, no audio, and a SynthesisDegraded warning.

LANGUAGE:
  The client's language hint is resolved once against LANGUAGE_VOICES and the
  resolved code is used for BOTH transcription and the synthesis voice:
  exact code ("it-IT"), then primary subtag ("it" -> "it-IT"), else DEFAULT_LANGUAGE.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import (
    DEFAULT_LANGUAGE,
    LANGUAGE_VOICES,
    MAX_AUDIO_BYTES,
    STT_ENCODING,
    UPSTREAM_TIMEOUT_SECONDS,
)
from learniamo.errors import ErrorKind, RelayError, classify_upstream_error
from learniamo.services.chat_service import ChatService
from learniamo.services.gateway import SynthesisCapability, TranscriptionCapability, VoiceSelection
from learniamo.services.session_identity import mask_token

logger = logging.getLogger("LEARNIAMO")


# ==============================================================================
# LANGUAGE / VOICE SELECTION
# ==============================================================================

def resolve_language(
    hint: Optional[str],
    voices: Dict[str, str] = LANGUAGE_VOICES,
    default: str = DEFAULT_LANGUAGE,
) -> str:
    """Map a client language hint to a code present in the voice table (or the default)."""
    if not hint or not hint.strip():
        return default
    wanted = hint.strip().replace("_", "-").lower()

    for code in voices:
        if code.lower() == wanted:
            return code
    primary = wanted.split("-", 1)[0]
    for code in voices:
        if code.lower().split("-", 1)[0] == primary:
            return code
    return default


def select_voice(
    language_code: str,
    voices: Dict[str, str] = LANGUAGE_VOICES,
    default: str = DEFAULT_LANGUAGE,
) -> VoiceSelection:
    if language_code in voices:
        return VoiceSelection(language_code=language_code, name=voices[language_code])
    return VoiceSelection(language_code=default, name=voices[default])


# ==============================================================================
# VOICE SERVICE CLASS
# ==============================================================================

@dataclass
class VoiceTurnResult:
    transcript: str
    reply_text: str
    reply_audio: Optional[bytes] = None
    warnings: List[ErrorKind] = field(default_factory=list)


class VoiceService:

    def __init__(
        self,
        chat_service: ChatService,
        transcriber: TranscriptionCapability,
        synthesizer: SynthesisCapability,
        timeout: float = UPSTREAM_TIMEOUT_SECONDS,
        encoding: str = STT_ENCODING,
        max_audio_bytes: int = MAX_AUDIO_BYTES,
        voices: Optional[Dict[str, str]] = None,
        default_language: str = DEFAULT_LANGUAGE,
    ):
        self.chat_service = chat_service
        self.transcriber = transcriber
        self.synthesizer = synthesizer
        self.timeout = timeout
        self.encoding = encoding
        self.max_audio_bytes = max_audio_bytes
        self.voices = voices if voices is not None else dict(LANGUAGE_VOICES)
        self.default_language = default_language
        if default_language not in self.voices:
            raise ValueError(f"Default language {default_language!r} has no voice configured")

    async def handle_voice_turn(
        self,
        token: str,
        audio: Optional[bytes],
        language_hint: Optional[str] = None,
    ) -> VoiceTurnResult:
        if not audio:
            raise RelayError(ErrorKind.INVALID_INPUT, "Audio file is missing or corrupted.")
        if len(audio) > self.max_audio_bytes:
            raise RelayError(ErrorKind.INVALID_INPUT, "Audio recording is too large.")

        language = resolve_language(language_hint, self.voices, self.default_language)

        transcript = await self._transcribe(token, audio, language)
        reply = await self.chat_service.handle_text_turn(token, transcript)
        result = VoiceTurnResult(transcript=transcript, reply_text=reply)

        voice = select_voice(language, self.voices, self.default_language)
        try:
            audio_out = await asyncio.wait_for(self.synthesizer.synthesize(reply, voice), self.timeout)
            if not audio_out:
                raise ValueError("Text-to-Speech returned no audio")
            result.reply_audio = audio_out
        except Exception as e:
            logger.warning(
                "[VOICE] Session %s: synthesis failed, replying with text only: %s",
                mask_token(token),
                e,
            )
            result.warnings.append(ErrorKind.SYNTHESIS_DEGRADED)

        return result

    async def _transcribe(self, token: str, audio: bytes, language: str) -> str:
        try:
            transcript = await asyncio.wait_for(
                self.transcriber.transcribe(audio, self.encoding, language),
                self.timeout,
            )
        except Exception as e:
            kind = classify_upstream_error(e)
            logger.warning("[VOICE] Session %s: transcription failed: %s (%s)", mask_token(token), kind.value, e)
            if kind is ErrorKind.INVALID_INPUT:
                raise RelayError(
                    kind,
                    f"Invalid audio format sent to Speech-to-Text. Record as {self.encoding}.",
                ) from e
            raise RelayError(kind) from e

        if not transcript or not transcript.strip():
            logger.warning("[VOICE] Session %s: Speech-to-Text returned no transcript", mask_token(token))
            raise RelayError(ErrorKind.NO_SPEECH_DETECTED)

        logger.info("[VOICE] Session %s: transcript (%s): %s chars", mask_token(token), language, len(transcript))
        return transcript.strip()
