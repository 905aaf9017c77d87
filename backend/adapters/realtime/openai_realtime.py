"""
OpenAI Realtime API adapter.

Core model:
- One WebSocket per upstream session, opened by connect() and closed by
  disconnect(). The adapter never reconnects by itself.
- Turn detection is disabled on the server: input audio accumulates in the
  backend buffer until create_response() commits it and asks for a reply.
- Assistant audio arrives as base64 deltas keyed by item id. Deltas are
  collected per item and emitted as one ResponseReceived when the output
  item is done.

Design constraints:
- Adapter must not know about client connections or broadcast.
- Adapter must not own lifecycle policy (see session.upstream).
"""

from __future__ import annotations

import asyncio
import base64
import json
import urllib.parse
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import ClientConnection as WSClientConnection
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from adapters.realtime.base import ClosedCallback, RealtimeBackend
from observability.logger import log_event, now_ms
from orchestrator.events import Event, EventType, ResponseReceived
from spec import (
    REALTIME_AUDIO_FORMAT,
    REALTIME_BASE_URL,
    REALTIME_MAX_MESSAGE_BYTES,
)

# Both the preview and GA event names carry assistant audio deltas
_AUDIO_DELTA_EVENTS = frozenset({"response.audio.delta", "response.output_audio.delta"})

# High-volume events that are not worth a log line each
_QUIET_EVENTS = _AUDIO_DELTA_EVENTS | frozenset({
    "response.audio_transcript.delta",
    "response.output_audio_transcript.delta",
    "input_audio_buffer.committed",
})


class OpenAIRealtimeAdapter(RealtimeBackend):
    """
    WebSocket client for the OpenAI Realtime API.

    emit_event receives each completed conversation item as a
    ResponseReceived; it must not block (Runtime.submit in practice).
    """

    def __init__(
        self,
        *,
        emit_event: Callable[[Event], None],
        api_key: str,
        model: str,
        voice: str,
        instructions: str,
        session_id: str,
        base_url: str = REALTIME_BASE_URL,
        connect_fn: Callable[..., Awaitable[Any]] = ws_connect,
    ) -> None:
        self._emit = emit_event
        self._api_key = api_key
        self._model = model
        self._voice = voice
        self._instructions = instructions
        self._session_id = session_id
        self._base_url = base_url
        self._connect_fn = connect_fn

        self._ws: WSClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._on_closed: ClosedCallback | None = None
        self._closing = False

        # item_id -> accumulated PCM16 bytes
        self._audio_by_item: dict[str, bytearray] = {}
        self._uncommitted_bytes = 0

    # -------------------------------------------------------------------------
    # RealtimeBackend
    # -------------------------------------------------------------------------

    async def connect(self, *, on_closed: ClosedCallback | None = None) -> None:
        if self._ws is not None:
            return

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

        self._closing = False
        self._on_closed = on_closed
        self._audio_by_item.clear()
        self._uncommitted_bytes = 0

        ws = await self._connect_fn(
            self._build_url(),
            additional_headers=headers,
            max_size=REALTIME_MAX_MESSAGE_BYTES,
        )
        self._ws = ws

        try:
            await self._send(self._session_config())
        except BaseException:
            # Includes cancellation by the connect deadline
            await self._drop_connection()
            raise

        self._recv_task = asyncio.create_task(self._recv_loop(ws))

    async def send_audio(self, pcm_bytes: bytes) -> None:
        await self._send({
            "type": "input_audio_buffer.append",
            "audio": base64.b64encode(pcm_bytes).decode("ascii"),
        })
        self._uncommitted_bytes += len(pcm_bytes)

    async def create_response(self) -> None:
        # Committing an empty buffer is an API error, so only commit when
        # audio has been appended since the last commit.
        if self._uncommitted_bytes > 0:
            await self._send({"type": "input_audio_buffer.commit"})
            self._uncommitted_bytes = 0
        await self._send({"type": "response.create"})

    async def disconnect(self) -> None:
        self._closing = True
        await self._drop_connection()

    # -------------------------------------------------------------------------
    # Server events
    # -------------------------------------------------------------------------

    def handle_server_event(self, data: dict[str, Any]) -> None:
        """
        Apply one decoded server event.

        Audio deltas are buffered per item; a finished message item is
        emitted as ResponseReceived with whatever audio was collected
        (possibly none, which the broadcaster rejects).
        """
        event_type = data.get("type", "")

        if event_type not in _QUIET_EVENTS:
            log_event({
                "event_type": "REALTIME_SERVER_EVENT",
                "session_id": self._session_id,
                "server_event": event_type,
            })

        if event_type in _AUDIO_DELTA_EVENTS:
            item_id = data.get("item_id")
            delta = data.get("delta")
            if not item_id or not delta:
                return
            try:
                chunk = base64.b64decode(delta, validate=True)
            except ValueError as e:
                log_event({
                    "event_type": "REALTIME_AUDIO_DELTA_INVALID",
                    "session_id": self._session_id,
                    "item_id": item_id,
                    "error": str(e),
                })
                return
            self._audio_by_item.setdefault(item_id, bytearray()).extend(chunk)

        elif event_type == "response.output_item.done":
            item = data.get("item") or {}
            if item.get("type") != "message":
                return
            item_id = str(item.get("id", ""))
            audio = self._audio_by_item.pop(item_id, bytearray())
            self._emit(
                ResponseReceived(
                    event_type=EventType.RESPONSE_RECEIVED,
                    ts_ms=now_ms(),
                    item_id=item_id,
                    role=str(item.get("role", "")),
                    completed=item.get("status") == "completed",
                    pcm_bytes=bytes(audio),
                )
            )

        elif event_type == "error":
            log_event({
                "event_type": "REALTIME_API_ERROR",
                "session_id": self._session_id,
                "error": data.get("error", {}),
            })

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def _build_url(self) -> str:
        qs = urllib.parse.urlencode({"model": self._model})
        return f"{self._base_url}?{qs}"

    def _session_config(self) -> dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "modalities": ["text", "audio"],
                "instructions": self._instructions,
                "voice": self._voice,
                "input_audio_format": REALTIME_AUDIO_FORMAT,
                "output_audio_format": REALTIME_AUDIO_FORMAT,
                "turn_detection": None,
            },
        }

    async def _send(self, message: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            raise ConnectionError("realtime websocket is not connected")
        await ws.send(json.dumps(message))

    async def _drop_connection(self) -> None:
        ws = self._ws
        self._ws = None

        task = self._recv_task
        self._recv_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self._audio_by_item.clear()
        self._uncommitted_bytes = 0

        if ws is not None:
            await ws.close()

    # -------------------------------------------------------------------------
    # Background loop
    # -------------------------------------------------------------------------

    async def _recv_loop(self, ws: WSClientConnection) -> None:
        reason: str | None = None
        try:
            async for raw in ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    log_event({
                        "event_type": "REALTIME_JSON_DECODE_ERROR",
                        "session_id": self._session_id,
                        "error": str(e),
                    })
                    continue
                self.handle_server_event(data)
        except asyncio.CancelledError:
            return
        except ConnectionClosed as e:
            reason = f"closed: {e.rcvd.code if e.rcvd else 'no close frame'}"
        else:
            reason = "closed"

        if self._closing:
            return

        # Remote side ended the session: clear local state, then report.
        if self._ws is ws:
            self._ws = None
            self._recv_task = None
        if self._on_closed is not None:
            self._on_closed(reason)
