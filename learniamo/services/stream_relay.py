"""
STREAM RELAY MODULE
===================

Forwards a streamed completion to the client one fragment at a time and commits
the reply to history only when the whole stream has arrived.

STATES:
  IDLE -> STREAMING -> COMPLETED   upstream finished; reply committed; "done" event
          STREAMING -> FAILED      upstream error/timeout/empty reply; "error" event; nothing committed
          STREAMING -> CANCELLED   client went away; forwarding stops; nothing committed

RULES:
  - Fragments are forwarded in arrival order, one event each, no batching.
  - The disconnect flag is checked before every forward and again before the
    commit. Once it is set no more events are produced, nothing
    is committed and the upstream iterator is closed (which cancels the
    provider call).
  - The whole stream shares one deadline (timeout seconds from the first wait).
  - If a session lock is given it is held for the entire run, from the user
    turn being appended until the reply is committed or dropped.

The relay runs once. It is driven by iterating events(); main.py turns each
RelayEvent into an SSE frame.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from config import UPSTREAM_TIMEOUT_SECONDS
from learniamo.errors import ErrorKind, RelayError, classify_upstream_error
from learniamo.utils.sse import format_sse

logger = logging.getLogger("LEARNIAMO")


class RelayState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RelayEvent:
    type: str  # "fragment" | "done" | "error"
    text: str = ""
    error: Optional[RelayError] = None

    def to_sse(self) -> str:
        if self.type == "fragment":
            return format_sse({"text": self.text})
        if self.type == "done":
            return format_sse({"reply": self.text}, event="done")
        return format_sse(self.error.to_dict(), event="error")


async def _close(source: AsyncIterator[str]) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.warning("Closing upstream stream failed: %s", e)


class StreamRelay:

    def __init__(
        self,
        start: Callable[[], AsyncIterator[str]],
        commit: Callable[[str], None],
        lock: Optional[asyncio.Lock] = None,
        timeout: float = UPSTREAM_TIMEOUT_SECONDS,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        label: str = "",
    ):
        """
        start: called once, under the lock; records the user turn and returns the
               upstream fragment iterator.
        commit: called with the full reply once the stream completes.
        """
        self._start = start
        self._commit = commit
        self._lock = lock
        self.timeout = timeout
        self._is_disconnected = is_disconnected
        self.label = label
        self.state = RelayState.IDLE
        self.fragments_forwarded = 0

    def set_disconnect_check(self, is_disconnected: Callable[[], Awaitable[bool]]) -> None:
        self._is_disconnected = is_disconnected

    async def _client_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()

    async def events(self) -> AsyncIterator[RelayEvent]:
        if self.state is not RelayState.IDLE:
            raise RuntimeError("StreamRelay can only be run once")
        self.state = RelayState.STREAMING

        if self._lock is not None:
            await self._lock.acquire()
        run = self._run()
        try:
            async for event in run:
                yield event
        finally:
            # Closing the inner generator closes the upstream iterator before the lock is released.
            await run.aclose()
            if self._lock is not None:
                self._lock.release()

    async def _run(self) -> AsyncIterator[RelayEvent]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        buffer: List[str] = []
        source = self._start()

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    fragment = await asyncio.wait_for(source.__anext__(), remaining)
                except StopAsyncIteration:
                    break
                if not fragment:
                    continue

                if await self._client_gone():
                    self.state = RelayState.CANCELLED
                    logger.info(
                        "[STREAM] Client disconnected after %s fragment(s) %s; reply discarded",
                        self.fragments_forwarded,
                        self.label,
                    )
                    return

                buffer.append(fragment)
                self.fragments_forwarded += 1
                yield RelayEvent(type="fragment", text=fragment)

            # The client may leave between the last fragment and the end of the stream.
            if await self._client_gone():
                self.state = RelayState.CANCELLED
                logger.info(
                    "[STREAM] Client disconnected before completion %s; reply discarded",
                    self.label,
                )
                return

            reply = "".join(buffer)
            if not reply.strip():
                raise RelayError(ErrorKind.UPSTREAM_UNAVAILABLE)
        except Exception as e:
            kind = classify_upstream_error(e)
            self.state = RelayState.FAILED
            if kind is ErrorKind.UPSTREAM_UNAVAILABLE and not isinstance(e, (RelayError, asyncio.TimeoutError)):
                logger.error("[STREAM] Upstream failed mid-stream %s: %s", self.label, e, exc_info=True)
            else:
                logger.warning("[STREAM] Stream failed %s: %s (%s)", self.label, kind.value, e)
            yield RelayEvent(type="error", error=RelayError(kind))
            return
        finally:
            await _close(source)

        self._commit(reply)
        self.state = RelayState.COMPLETED
        logger.info("[STREAM] Completed %s: %s fragment(s), %s chars", self.label, self.fragments_forwarded, len(reply))
        yield RelayEvent(type="done", text=reply)
