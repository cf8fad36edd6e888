"""
SPEECH-TO-TEXT SERVICE MODULE
=============================

Transcription capability backed by Google Cloud Speech-to-Text (async client).
The browser records audio/webm;codecs=opus, so the default encoding is
WEBM_OPUS. Credentials come from the environment (GOOGLE_APPLICATION_CREDENTIALS
locally, the service account on Cloud Run).

Returns "" when nothing was recognised; deciding what that means is the voice
service's job. Transient Google errors are retried with backoff.
"""

import logging
from typing import Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import speech

from config import STT_SAMPLE_RATE_HERTZ, UPSTREAM_MAX_RETRIES, UPSTREAM_RETRY_DELAY_SECONDS
from learniamo.errors import is_transient_upstream_error
from learniamo.utils.retry import with_retry

logger = logging.getLogger("LEARNIAMO")


def _audio_encoding(name: str) -> speech.RecognitionConfig.AudioEncoding:
    try:
        return speech.RecognitionConfig.AudioEncoding[name.upper()]
    except KeyError:
        # Same failure Google reports for a bad encoding, so it classifies as InvalidInput.
        raise google_exceptions.InvalidArgument(f"Unsupported audio encoding: {name}")


class GoogleSpeechService:
    """Wraps speech.SpeechAsyncClient.recognize for short (synchronous) recordings."""

    def __init__(
        self,
        client: Optional[speech.SpeechAsyncClient] = None,
        sample_rate_hertz: int = STT_SAMPLE_RATE_HERTZ,
    ):
        # Created lazily: the gRPC aio channel must be built inside the running loop.
        self._client = client
        self.sample_rate_hertz = sample_rate_hertz

    @property
    def client(self) -> speech.SpeechAsyncClient:
        if self._client is None:
            self._client = speech.SpeechAsyncClient()
        return self._client

    async def transcribe(self, audio: bytes, encoding: str, language_code: str) -> str:
        config = speech.RecognitionConfig(
            encoding=_audio_encoding(encoding),
            language_code=language_code,
            enable_automatic_punctuation=True,
        )
        if self.sample_rate_hertz:
            config.sample_rate_hertz = self.sample_rate_hertz

        logger.info("Sending %s bytes of %s audio to Speech-to-Text (%s)", len(audio), encoding, language_code)
        response = await with_retry(
            lambda: self.client.recognize(config=config, audio=speech.RecognitionAudio(content=audio)),
            is_transient=is_transient_upstream_error,
            max_retries=UPSTREAM_MAX_RETRIES,
            initial_delay=UPSTREAM_RETRY_DELAY_SECONDS,
        )

        # One result per utterance; keep the top alternative of each.
        transcript = "\n".join(
            result.alternatives[0].transcript
            for result in response.results
            if result.alternatives
        )
        return transcript.strip()
