"""
Session gateway: the boundary between one client transport and the relay.

Responsibilities:
- Announce the connection to the relay (attach / detach)
- Decode inbound text and binary frames into relay events
- Answer malformed messages with an `error` without closing the connection

Not responsible for:
- Any relay decision (Runtime handles every event)
- Sending relay output (Runtime and the broadcaster talk to the
  connection directly)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from observability.logger import log_event, now_ms
from orchestrator.events import (
    AudioAppended,
    ConnectionAttached,
    ConnectionDetached,
    EventType,
    ResponseRequested,
    StreamStartRequested,
)
from protocol.messages import (
    ClientMessage,
    ClientMessageType,
    ProtocolError,
    decode_binary_message,
    decode_text_message,
    encode_error,
)
from spec import ERR_BAD_MESSAGE

if TYPE_CHECKING:
    from session.registry import ClientConnection
    from session.relay_session import RelaySession


# ------------------------------------------------------------------
# Gateway result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayResult:
    """
    Return value for gateway boundary methods.

    outbound_json:
        Immediate replies to this client (protocol errors only)

    close:
        The client asked to disconnect; the transport should close
    """
    outbound_json: tuple[dict[str, Any], ...] = ()
    close: bool = False


# ------------------------------------------------------------------
# SessionGateway
# ------------------------------------------------------------------

class SessionGateway:
    """One gateway == one client connection on the shared relay session."""

    def __init__(
        self,
        *,
        relay: RelaySession,
        connection: ClientConnection,
    ) -> None:
        self._relay = relay
        self._connection = connection
        self._attached = False

    @property
    def connection_id(self) -> str:
        return self._connection.connection_id

    def on_ws_connect(self) -> GatewayResult:
        """Called once the transport is accepted."""
        if not self._attached:
            self._attached = True
            self._relay.runtime.submit(
                ConnectionAttached(
                    event_type=EventType.CONNECTION_ATTACHED,
                    ts_ms=now_ms(),
                    connection=self._connection,
                )
            )
        return GatewayResult()

    def on_ws_disconnect(self, reason: str | None = None) -> GatewayResult:
        """Called when the transport closes. Idempotent."""
        if not self._attached:
            return GatewayResult()
        self._attached = False
        self._relay.runtime.submit(
            ConnectionDetached(
                event_type=EventType.CONNECTION_DETACHED,
                ts_ms=now_ms(),
                connection=self._connection,
                reason=reason,
            )
        )
        return GatewayResult()

    def on_json_message(self, payload: str) -> GatewayResult:
        """Route one inbound text frame."""
        try:
            message = decode_text_message(payload)
        except ProtocolError as e:
            return self._reject(e, payload_preview=payload[:100])
        return self._route(message)

    def on_binary_message(self, payload: bytes) -> GatewayResult:
        """Route one inbound binary frame (raw PCM16 audio)."""
        try:
            message = decode_binary_message(payload)
        except ProtocolError as e:
            return self._reject(e, payload_len=len(payload))
        return self._route(message)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _route(self, message: ClientMessage) -> GatewayResult:
        source = self.connection_id
        ts_ms = now_ms()
        runtime = self._relay.runtime

        if not self._attached:
            log_event({
                "event_type": "MESSAGE_WITHOUT_ATTACH",
                "session_id": self._relay.session_id,
                "connection_id": source,
                "msg_type": message.type.value,
            })
            return GatewayResult()

        if message.type is ClientMessageType.START_STREAM:
            runtime.submit(StreamStartRequested(
                event_type=EventType.STREAM_START_REQUESTED, ts_ms=ts_ms, source=source,
            ))
        elif message.type is ClientMessageType.AUDIO_DATA:
            runtime.submit(AudioAppended(
                event_type=EventType.AUDIO_APPENDED, ts_ms=ts_ms, source=source,
                pcm_bytes=message.pcm_bytes,
            ))
        elif message.type is ClientMessageType.CREATE_RESPONSE:
            runtime.submit(ResponseRequested(
                event_type=EventType.RESPONSE_REQUESTED, ts_ms=ts_ms, source=source,
            ))
        elif message.type is ClientMessageType.DISCONNECT:
            self.on_ws_disconnect(reason="client_requested")
            return GatewayResult(close=True)

        return GatewayResult()

    def _reject(self, error: ProtocolError, **details: Any) -> GatewayResult:
        log_event({
            "event_type": "CLIENT_MESSAGE_INVALID",
            "session_id": self._relay.session_id,
            "connection_id": self.connection_id,
            "exception": type(error).__name__,
            "error": str(error),
            **details,
        })
        return GatewayResult(outbound_json=(encode_error(f"{ERR_BAD_MESSAGE}: {error}"),))
