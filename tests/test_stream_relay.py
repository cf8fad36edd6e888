"""Streamed replies: ordering, commit-on-complete, and no partial commits."""
import asyncio

import pytest

from learniamo.errors import ErrorKind, RelayError
from learniamo.models import Turn
from learniamo.services.chat_service import ChatService
from learniamo.services.stream_relay import RelayState, StreamRelay

from tests.conftest import TOKEN, FakeCompletion


async def collect(relay):
    return [event async for event in relay.events()]


@pytest.mark.asyncio
async def test_completed_stream_forwards_in_order_and_commits_once(store):
    fragments = ["Buon", "gior", "no", ", ", "Luca"]
    completion = FakeCompletion(fragments=fragments)
    relay = ChatService(store, completion).stream_text_turn(TOKEN, "hello")

    events = await collect(relay)

    assert [e.text for e in events if e.type == "fragment"] == fragments
    assert events[-1].type == "done"
    assert events[-1].text == "Buongiorno, Luca"
    assert relay.state is RelayState.COMPLETED
    assert store.get_or_create(TOKEN) == (
        Turn(role="user", text="hello"),
        Turn(role="model", text="Buongiorno, Luca"),
    )


@pytest.mark.asyncio
async def test_disconnect_after_two_of_five_fragments_commits_nothing(store):
    completion = FakeCompletion(fragments=["1", "2", "3", "4", "5"])
    relay = ChatService(store, completion).stream_text_turn(TOKEN, "hello")

    async def gone():
        return relay.fragments_forwarded >= 2

    relay.set_disconnect_check(gone)
    events = await collect(relay)

    assert [e.text for e in events] == ["1", "2"]
    assert relay.state is RelayState.CANCELLED
    assert completion.stream_closed
    assert store.get_or_create(TOKEN) == (Turn(role="user", text="hello"),)


class SlowToFinishCompletion(FakeCompletion):
    """Yields every fragment, then keeps the stream open a little before ending it."""

    async def stream(self, turns):
        self.calls.append(tuple(turns))
        try:
            for fragment in self.fragments:
                yield fragment
            await asyncio.sleep(0.05)
        finally:
            self.stream_closed = True


@pytest.mark.asyncio
async def test_disconnect_after_last_fragment_commits_nothing(store):
    completion = SlowToFinishCompletion(fragments=["a", "b", "c"])
    relay = ChatService(store, completion).stream_text_turn(TOKEN, "hello")
    gone = False

    async def is_disconnected():
        return gone

    relay.set_disconnect_check(is_disconnected)
    events = []
    async for event in relay.events():
        events.append(event)
        if event.text == "c":
            gone = True

    assert [e.type for e in events] == ["fragment", "fragment", "fragment"]
    assert relay.state is RelayState.CANCELLED
    assert completion.stream_closed
    assert store.get_or_create(TOKEN) == (Turn(role="user", text="hello"),)
    assert not store.lock(TOKEN).locked()


@pytest.mark.asyncio
async def test_consumer_abandoning_the_stream_commits_nothing(store):
    completion = FakeCompletion(fragments=["1", "2", "3", "4", "5"])
    relay = ChatService(store, completion).stream_text_turn(TOKEN, "hello")

    events = relay.events()
    assert (await events.__anext__()).text == "1"
    assert (await events.__anext__()).text == "2"
    await events.aclose()

    assert completion.stream_closed
    assert store.get_or_create(TOKEN) == (Turn(role="user", text="hello"),)
    # The session lock was released with the stream.
    assert not store.lock(TOKEN).locked()


@pytest.mark.asyncio
async def test_mid_stream_error_emits_error_event_and_commits_nothing(store):
    completion = FakeCompletion(
        fragments=["a", "b", "c"],
        error=Exception("Error code: 429 - rate limit"),
        fail_after=2,
    )
    relay = ChatService(store, completion).stream_text_turn(TOKEN, "hello")

    events = await collect(relay)

    assert [e.type for e in events] == ["fragment", "fragment", "error"]
    assert events[-1].error.kind is ErrorKind.UPSTREAM_THROTTLED
    assert relay.state is RelayState.FAILED
    assert store.get_or_create(TOKEN) == (Turn(role="user", text="hello"),)


@pytest.mark.asyncio
async def test_stream_deadline_fails_as_unavailable(store):
    completion = FakeCompletion(fragments=["slow", "er"], delay=0.5)
    relay = ChatService(store, completion, timeout=0.1).stream_text_turn(TOKEN, "hello")

    events = await collect(relay)

    assert events[-1].type == "error"
    assert events[-1].error.kind is ErrorKind.UPSTREAM_UNAVAILABLE
    assert len(store.get_or_create(TOKEN)) == 1


@pytest.mark.asyncio
async def test_empty_stream_is_a_failure(store):
    relay = ChatService(store, FakeCompletion(fragments=[])).stream_text_turn(TOKEN, "hello")
    events = await collect(relay)
    assert [e.type for e in events] == ["error"]
    assert len(store.get_or_create(TOKEN)) == 1


@pytest.mark.asyncio
async def test_invalid_input_is_raised_before_streaming(store, completion):
    with pytest.raises(RelayError) as info:
        ChatService(store, completion).stream_text_turn(TOKEN, "")
    assert info.value.kind is ErrorKind.INVALID_INPUT
    assert store.get_or_create(TOKEN) == ()


@pytest.mark.asyncio
async def test_stream_holds_the_session_lock_until_commit(store):
    completion = FakeCompletion(reply=None, delay=0.02)
    service = ChatService(store, completion)

    async def plain_turn():
        await asyncio.sleep(0.01)
        await service.handle_text_turn(TOKEN, "second")

    relay = service.stream_text_turn(TOKEN, "first")
    await asyncio.gather(collect(relay), plain_turn())

    # The plain turn waited for the streamed reply to be committed.
    assert [t.text for t in store.get_or_create(TOKEN)] == ["first", "Ciao!", "second", "re: second"]


@pytest.mark.asyncio
async def test_relay_runs_only_once():
    relay = StreamRelay(start=lambda: FakeCompletion().stream(()), commit=lambda reply: None)
    await collect(relay)
    with pytest.raises(RuntimeError):
        await collect(relay)


def test_sse_framing():
    from learniamo.services.stream_relay import RelayEvent

    assert RelayEvent(type="fragment", text="Ci").to_sse() == 'data: {"text": "Ci"}\n\n'
    assert RelayEvent(type="done", text="Ciao").to_sse() == 'event: done\ndata: {"reply": "Ciao"}\n\n'
    error = RelayEvent(type="error", error=RelayError(ErrorKind.UPSTREAM_AUTH)).to_sse()
    assert error.startswith("event: error\ndata: ")
    assert '"kind": "UpstreamAuth"' in error
