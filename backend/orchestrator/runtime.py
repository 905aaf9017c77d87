"""
Runtime: the event dispatcher for one relay session.

Responsibilities:
- Own the session's single FIFO event channel
- Run exactly one handler at a time, in submission order
- Translate events into registry / upstream / broadcaster calls
- Report failures to the affected client connection
- Own the response timeout timers

Non-responsibilities:
- Transport concerns (WebSocket framing, JSON parsing)
- Upstream lifecycle policy (see session.upstream / session.registry)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from observability.logger import log_event, now_ms
from orchestrator.events import (
    AudioAppended,
    ConnectionAttached,
    ConnectionDetached,
    Event,
    EventType,
    FrameReady,
    ResponseReceived,
    ResponseRequested,
    ResponseTimeout,
    SilenceDetected,
    StreamStartRequested,
)
from protocol.messages import encode_error, encode_stream_started
from session.errors import ConnectFailure, NotConnectedError
from spec import (
    ASSISTANT_ROLE,
    ERR_CONNECT_FAILED,
    ERR_CONNECTION_LOST,
    ERR_CREATE_RESPONSE,
    ERR_RESPONSE_TIMEOUT,
    ERR_START_STREAM,
    RESPONSE_TIMEOUT_S,
    bytes_to_seconds,
)

if TYPE_CHECKING:
    from session.relay_session import RelaySession


class Runtime:
    """
    Single-consumer event loop for a relay session.

    All event sources converge on submit():
    - Gateways (client messages, connect / disconnect)
    - The realtime adapter (completed responses)
    - The local microphone (audio blocks, silence)
    - Timers (response timeouts)

    Guarantees:
    - Handlers never interleave: each runs to completion before the next
      event is taken off the channel
    - Frames reach the upstream in append order per source
    - Responses are broadcast in the order the upstream produced them
    - A handler failure is logged and never stops the loop
    """

    def __init__(
        self,
        *,
        session: RelaySession,
        response_timeout_s: float = RESPONSE_TIMEOUT_S,
    ) -> None:
        if response_timeout_s <= 0:
            raise ValueError("response_timeout_s must be > 0")

        self._session = session
        self._response_timeout_s = response_timeout_s

        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._loop_task: asyncio.Task[None] | None = None

        # source -> pending response deadline
        self._response_timers: dict[str, asyncio.Task[None]] = {}
        # sources already told the upstream is down since their last good send
        self._lost_notified: set[str] = set()

        self._handlers: dict[EventType, Callable[[Any], Awaitable[None]]] = {
            EventType.CONNECTION_ATTACHED: self._on_connection_attached,
            EventType.CONNECTION_DETACHED: self._on_connection_detached,
            EventType.STREAM_START_REQUESTED: self._on_stream_start_requested,
            EventType.AUDIO_APPENDED: self._on_audio_appended,
            EventType.FRAME_READY: self._on_frame_ready,
            EventType.RESPONSE_REQUESTED: self._on_response_requested,
            EventType.SILENCE_DETECTED: self._on_silence_detected,
            EventType.RESPONSE_RECEIVED: self._on_response_received,
            EventType.RESPONSE_TIMEOUT: self._on_response_timeout,
        }

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    def submit(self, event: Event) -> None:
        """Enqueue an event. Never blocks; safe from any coroutine on the loop."""
        self._queue.put_nowait(event)

    async def start(self) -> None:
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self.run())

    async def run(self) -> None:
        """Take events off the channel forever, one at a time."""
        while True:
            event = await self._queue.get()
            try:
                await self.handle_event(event)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "RUNTIME_HANDLER_ERROR",
                    "session_id": self._session.session_id,
                    "dropped_event": event.event_type.value,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every submitted event has been handled."""
        await self._queue.join()

    async def shutdown(self) -> None:
        """Stop the loop and cancel pending timers."""
        for timer in self._response_timers.values():
            timer.cancel()
        self._response_timers.clear()

        task = self._loop_task
        self._loop_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def handle_event(self, event: Event) -> None:
        """Run the handler for one event to completion."""
        handler = self._handlers.get(event.event_type)
        if handler is None:
            log_event({
                "event_type": "UNHANDLED_EVENT",
                "session_id": self._session.session_id,
                "dropped_event": event.event_type.value,
            })
            return
        await handler(event)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def _on_connection_attached(self, event: ConnectionAttached) -> None:
        connection = event.connection
        try:
            await self._session.registry.attach(connection)
        except ConnectFailure:
            await self._reply(connection.connection_id, encode_error(ERR_CONNECT_FAILED))

    async def _on_connection_detached(self, event: ConnectionDetached) -> None:
        source = event.connection.connection_id

        discarded = self._session.drop_chunker(source)
        self._log_discarded(source, discarded, reason=event.reason or "detached")

        self._cancel_response_timer(source)
        self._lost_notified.discard(source)

        await self._session.registry.detach(event.connection)

    async def _on_stream_start_requested(self, event: StreamStartRequested) -> None:
        discarded = self._session.chunker_for(event.source).reset()
        self._log_discarded(event.source, discarded, reason="stream_restart")
        self._lost_notified.discard(event.source)

        try:
            await self._session.upstream.ensure_connected()
        except ConnectFailure:
            await self._reply(event.source, encode_error(ERR_START_STREAM))
            return

        log_event({
            "event_type": "STREAM_STARTED",
            "session_id": self._session.session_id,
            "source": event.source,
        })
        await self._reply(event.source, encode_stream_started())

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    async def _on_audio_appended(self, event: AudioAppended) -> None:
        chunker = self._session.chunker_for(event.source)
        chunker.append(event.pcm_bytes)

        # Frames are handled inline so no other event can slip between
        # two frames of the same append.
        for frame in chunker.drain():
            await self.handle_event(
                FrameReady(event_type=EventType.FRAME_READY, ts_ms=event.ts_ms, frame=frame)
            )

    async def _on_frame_ready(self, event: FrameReady) -> None:
        source = event.frame.source
        try:
            await self._session.upstream.send_frame(event.frame)
        except NotConnectedError as e:
            if source in self._lost_notified:
                return
            self._lost_notified.add(source)
            log_event({
                "event_type": "FRAME_DROPPED_NOT_CONNECTED",
                "session_id": self._session.session_id,
                "source": source,
                "seq_num": event.frame.sequence_num,
                "error": str(e),
            })
            await self._reply(source, encode_error(ERR_CONNECTION_LOST))
        else:
            self._lost_notified.discard(source)

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def _on_response_requested(self, event: ResponseRequested) -> None:
        await self._request_response(event.source, trigger="client")

    async def _on_silence_detected(self, event: SilenceDetected) -> None:
        await self._request_response(event.source, trigger="silence")

    async def _request_response(self, source: str, *, trigger: str) -> None:
        try:
            await self._session.upstream.request_response()
        except NotConnectedError as e:
            log_event({
                "event_type": "RESPONSE_REQUEST_FAILED",
                "session_id": self._session.session_id,
                "source": source,
                "trigger": trigger,
                "error": str(e),
            })
            await self._reply(source, encode_error(ERR_CREATE_RESPONSE))
            return

        log_event({
            "event_type": "RESPONSE_REQUESTED",
            "session_id": self._session.session_id,
            "source": source,
            "trigger": trigger,
        })
        self._start_response_timer(source)

    async def _on_response_received(self, event: ResponseReceived) -> None:
        if event.role == ASSISTANT_ROLE:
            for source in list(self._response_timers):
                self._cancel_response_timer(source)
        await self._session.broadcaster.broadcast_response(event)

    async def _on_response_timeout(self, event: ResponseTimeout) -> None:
        # Stale if a response already cleared the timer, or a newer request
        # replaced it with one that is still running
        timer = self._response_timers.get(event.source)
        if timer is None or not timer.done():
            return
        del self._response_timers[event.source]
        log_event({
            "event_type": "RESPONSE_TIMEOUT",
            "session_id": self._session.session_id,
            "source": event.source,
            "timeout_s": self._response_timeout_s,
        })
        await self._reply(event.source, encode_error(ERR_RESPONSE_TIMEOUT))

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _start_response_timer(self, source: str) -> None:
        self._cancel_response_timer(source)
        self._response_timers[source] = asyncio.create_task(
            self._response_deadline(source)
        )

    def _cancel_response_timer(self, source: str) -> None:
        timer = self._response_timers.pop(source, None)
        if timer is not None and not timer.done():
            timer.cancel()

    async def _response_deadline(self, source: str) -> None:
        await asyncio.sleep(self._response_timeout_s)
        self.submit(
            ResponseTimeout(event_type=EventType.RESPONSE_TIMEOUT, ts_ms=now_ms(), source=source)
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _reply(self, connection_id: str, message: dict[str, Any]) -> None:
        """Send to one connection; a dead connection never breaks the handler."""
        connection = self._session.registry.get(connection_id)
        if connection is None:
            log_event({
                "event_type": "REPLY_TARGET_MISSING",
                "session_id": self._session.session_id,
                "connection_id": connection_id,
                "message_type": message.get("type"),
            })
            return
        try:
            await connection.send_json(message)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "REPLY_FAILED",
                "session_id": self._session.session_id,
                "connection_id": connection_id,
                "message_type": message.get("type"),
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    def _log_discarded(self, source: str, discarded: int, *, reason: str) -> None:
        if discarded == 0:
            return
        log_event({
            "event_type": "AUDIO_REMAINDER_DISCARDED",
            "session_id": self._session.session_id,
            "source": source,
            "bytes": discarded,
            "duration_s": bytes_to_seconds(discarded),
            "reason": reason,
        })
