"""
Shared fixtures for the relay test suite.

Providers are replaced by small in-process fakes so nothing here needs network
access or API keys. The fakes record every call so tests can check exactly
what the orchestrators sent upstream.
"""

import asyncio
from typing import List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient

from learniamo import main
from learniamo.models import Turn
from learniamo.services.chat_service import ChatService
from learniamo.services.gateway import VoiceSelection
from learniamo.services.session_store import InMemorySessionStore
from learniamo.services.voice_service import VoiceService

TOKEN = "3f1c2a64-9a51-4c5e-8d7b-2f0e6a9b1c11"


class FakeCompletion:
    """
    complete(): returns `reply` (or raises `error`).
    stream():   yields `fragments`; raises `error` after `fail_after` fragments if set.
    A reply of None echoes the last user turn as "re: <text>".
    """

    def __init__(
        self,
        reply: Optional[str] = "Ciao!",
        fragments: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        fail_after: Optional[int] = None,
        delay: float = 0.0,
    ):
        self.reply = reply
        self.fragments = fragments if fragments is not None else ["Ci", "ao", "!"]
        self.error = error
        self.fail_after = fail_after
        self.delay = delay
        self.calls: List[tuple] = []
        self.stream_closed = False

    def _reply_for(self, turns: Sequence[Turn]) -> str:
        if self.reply is None:
            return f"re: {turns[-1].text}"
        return self.reply

    async def complete(self, turns: Sequence[Turn]) -> str:
        self.calls.append(tuple(turns))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self._reply_for(turns)

    async def stream(self, turns: Sequence[Turn]):
        self.calls.append(tuple(turns))
        try:
            for i, fragment in enumerate(self.fragments):
                if self.error is not None and self.fail_after == i:
                    raise self.error
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield fragment
            if self.error is not None and self.fail_after is None:
                raise self.error
        finally:
            self.stream_closed = True


class FakeTranscriber:
    def __init__(self, transcript: str = "how do I say hello", error: Optional[Exception] = None):
        self.transcript = transcript
        self.error = error
        self.calls: List[tuple] = []

    async def transcribe(self, audio: bytes, encoding: str, language_code: str) -> str:
        self.calls.append((audio, encoding, language_code))
        if self.error is not None:
            raise self.error
        return self.transcript


class FakeSynthesizer:
    def __init__(self, audio: bytes = b"ID3-mp3-bytes", error: Optional[Exception] = None):
        self.audio = audio
        self.error = error
        self.calls: List[tuple] = []

    async def synthesize(self, text: str, voice: VoiceSelection) -> bytes:
        self.calls.append((text, voice))
        if self.error is not None:
            raise self.error
        return self.audio


@pytest.fixture
def store():
    return InMemorySessionStore(max_turns=20)


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def chat_service(store, completion):
    return ChatService(store, completion, timeout=2.0)


@pytest.fixture
def voice_service(chat_service, transcriber, synthesizer):
    return VoiceService(chat_service, transcriber, synthesizer, timeout=2.0)


@pytest.fixture
def client(monkeypatch, store, chat_service, voice_service):
    """TestClient with fake services installed. The lifespan is not run."""
    monkeypatch.setattr(main, "session_store", store)
    monkeypatch.setattr(main, "chat_service", chat_service)
    monkeypatch.setattr(main, "voice_service", voice_service)
    return TestClient(main.app)
