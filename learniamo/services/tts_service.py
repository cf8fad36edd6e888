"""
TEXT-TO-SPEECH SERVICE MODULE
=============================

Synthesis capability backed by Google Cloud Text-to-Speech (async client).
Produces MP3, which every browser can play from a base64 data blob.
"""

import logging
from typing import Optional

from google.cloud import texttospeech

from config import UPSTREAM_MAX_RETRIES, UPSTREAM_RETRY_DELAY_SECONDS
from learniamo.errors import is_transient_upstream_error
from learniamo.services.gateway import VoiceSelection
from learniamo.utils.retry import with_retry

logger = logging.getLogger("LEARNIAMO")


class GoogleTextToSpeechService:

    def __init__(self, client: Optional[texttospeech.TextToSpeechAsyncClient] = None):
        self._client = client

    @property
    def client(self) -> texttospeech.TextToSpeechAsyncClient:
        if self._client is None:
            self._client = texttospeech.TextToSpeechAsyncClient()
        return self._client

    async def synthesize(self, text: str, voice: VoiceSelection) -> bytes:
        params = texttospeech.VoiceSelectionParams(
            language_code=voice.language_code,
            name=voice.name,
            ssml_gender=texttospeech.SsmlVoiceGender.NEUTRAL,
        )
        audio_config = texttospeech.AudioConfig(audio_encoding=texttospeech.AudioEncoding.MP3)

        response = await with_retry(
            lambda: self.client.synthesize_speech(
                input=texttospeech.SynthesisInput(text=text),
                voice=params,
                audio_config=audio_config,
            ),
            is_transient=is_transient_upstream_error,
            max_retries=UPSTREAM_MAX_RETRIES,
            initial_delay=UPSTREAM_RETRY_DELAY_SECONDS,
        )
        logger.info("Text-to-Speech audio generated (%s, %s bytes)", voice.name, len(response.audio_content))
        return response.audio_content
