"""Provider adapters with their SDK clients replaced by fakes (no network)."""
import pytest
from google.api_core import exceptions as google_exceptions
from google.cloud import speech, texttospeech
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage

from learniamo.models import Turn
from learniamo.services.gateway import VoiceSelection
from learniamo.services.groq_service import GroqCompletionService, mask_api_key
from learniamo.services.speech_service import GoogleSpeechService
from learniamo.services.tts_service import GoogleTextToSpeechService


# ==============================================================================
# GROQ
# ==============================================================================

class FakeChatModel:
    def __init__(self, reply="Ciao!", chunks=None, error=None, fail_after=None):
        self.reply = reply
        self.chunks = chunks or ["Ci", "ao!"]
        self.error = error
        self.fail_after = fail_after
        self.calls = []

    async def ainvoke(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.reply)

    async def astream(self, messages):
        self.calls.append(messages)
        for i, chunk in enumerate(self.chunks):
            if self.error is not None and self.fail_after == i:
                raise self.error
            yield AIMessageChunk(content=chunk)


@pytest.fixture
def groq(monkeypatch):
    monkeypatch.setattr(GroqCompletionService, "_shared_key_index", 0)
    service = GroqCompletionService(api_keys=["gsk_first_key_123", "gsk_second_key_456"], system_prompt="Be kind.")
    return service


TURNS = (
    Turn(role="user", text="hello"),
    Turn(role="model", text="Ciao!"),
    Turn(role="user", text="and goodbye?"),
)


def test_requires_a_key():
    with pytest.raises(ValueError):
        GroqCompletionService(api_keys=[])


def test_mask_api_key():
    assert mask_api_key("gsk_first_key_123") == "gsk_firs..."
    assert "123" not in mask_api_key("gsk_first_key_123")


@pytest.mark.asyncio
async def test_complete_builds_messages_from_turns(groq):
    first, second = FakeChatModel(), FakeChatModel()
    groq.llms = [first, second]

    assert await groq.complete(TURNS) == "Ciao!"

    messages = first.calls[0]
    assert isinstance(messages[0], SystemMessage) and messages[0].content == "Be kind."
    assert [type(m) for m in messages[1:]] == [HumanMessage, AIMessage, HumanMessage]
    assert messages[-1].content == "and goodbye?"


@pytest.mark.asyncio
async def test_keys_rotate_round_robin(groq):
    first, second = FakeChatModel(), FakeChatModel()
    groq.llms = [first, second]

    for _ in range(3):
        await groq.complete(TURNS)

    assert len(first.calls) == 2
    assert len(second.calls) == 1


@pytest.mark.asyncio
async def test_throttled_key_falls_back_to_next(groq):
    throttled = FakeChatModel(error=Exception("Error code: 429 - rate limit reached"))
    healthy = FakeChatModel(reply="from second key")
    groq.llms = [throttled, healthy]

    assert await groq.complete(TURNS) == "from second key"


@pytest.mark.asyncio
async def test_generic_failure_is_not_retried_on_other_keys(groq):
    broken = FakeChatModel(error=RuntimeError("connection reset"))
    other = FakeChatModel()
    groq.llms = [broken, other]

    with pytest.raises(RuntimeError):
        await groq.complete(TURNS)
    assert other.calls == []


@pytest.mark.asyncio
async def test_stream_yields_chunk_text(groq):
    groq.llms = [FakeChatModel(chunks=["Buon", "", "giorno"]), FakeChatModel()]
    assert [f async for f in groq.stream(TURNS)] == ["Buon", "giorno"]


@pytest.mark.asyncio
async def test_stream_switches_key_only_before_first_fragment(groq):
    limit = Exception("429 rate limit")
    groq.llms = [FakeChatModel(error=limit, fail_after=0), FakeChatModel(chunks=["ok"])]
    assert [f async for f in groq.stream(TURNS)] == ["ok"]

    groq.llms = [FakeChatModel(chunks=["a", "b"], error=limit, fail_after=1), FakeChatModel(chunks=["x"])]
    GroqCompletionService._shared_key_index = 0
    received = []
    with pytest.raises(Exception, match="429"):
        async for fragment in groq.stream(TURNS):
            received.append(fragment)
    assert received == ["a"]


# ==============================================================================
# GOOGLE SPEECH-TO-TEXT / TEXT-TO-SPEECH
# ==============================================================================

class FakeSpeechClient:
    def __init__(self, transcripts):
        self.transcripts = transcripts
        self.requests = []

    async def recognize(self, config, audio):
        self.requests.append((config, audio))
        return speech.RecognizeResponse(
            results=[
                speech.SpeechRecognitionResult(
                    alternatives=[speech.SpeechRecognitionAlternative(transcript=t)]
                )
                for t in self.transcripts
            ]
        )


class FakeTtsClient:
    def __init__(self):
        self.requests = []

    async def synthesize_speech(self, input, voice, audio_config):
        self.requests.append((input, voice, audio_config))
        return texttospeech.SynthesizeSpeechResponse(audio_content=b"mp3-bytes")


@pytest.mark.asyncio
async def test_speech_joins_results_and_sends_config():
    client = FakeSpeechClient(["ciao come stai", "bene grazie"])
    service = GoogleSpeechService(client=client, sample_rate_hertz=48000)

    transcript = await service.transcribe(b"audio", "WEBM_OPUS", "it-IT")

    assert transcript == "ciao come stai\nbene grazie"
    config, audio = client.requests[0]
    assert config.encoding == speech.RecognitionConfig.AudioEncoding.WEBM_OPUS
    assert config.language_code == "it-IT"
    assert config.sample_rate_hertz == 48000
    assert audio.content == b"audio"


@pytest.mark.asyncio
async def test_speech_no_results_is_empty_string():
    service = GoogleSpeechService(client=FakeSpeechClient([]))
    assert await service.transcribe(b"audio", "WEBM_OPUS", "en-US") == ""


@pytest.mark.asyncio
async def test_speech_unknown_encoding_is_invalid_argument():
    service = GoogleSpeechService(client=FakeSpeechClient(["x"]))
    with pytest.raises(google_exceptions.InvalidArgument):
        await service.transcribe(b"audio", "NOT_A_CODEC", "en-US")


@pytest.mark.asyncio
async def test_tts_requests_mp3_with_selected_voice():
    client = FakeTtsClient()
    service = GoogleTextToSpeechService(client=client)

    audio = await service.synthesize("Ciao!", VoiceSelection(language_code="it-IT", name="it-IT-Standard-A"))

    assert audio == b"mp3-bytes"
    text_input, voice, audio_config = client.requests[0]
    assert text_input.text == "Ciao!"
    assert voice.language_code == "it-IT"
    assert voice.name == "it-IT-Standard-A"
    assert audio_config.audio_encoding == texttospeech.AudioEncoding.MP3
