"""
Session broadcaster.

Fans one upstream's completed assistant audio out to every attached
client connection.

Rules:
- Non-assistant items are ignored (nothing to play).
- Assistant items must be complete, non-empty, whole PCM16 samples;
  otherwise InvalidAudioPayload is reported as an `error` to every client
  and the audio is not forwarded.
- Valid payloads are encoded once and the identical message is delivered
  to every connection, in registry order.
- A failing delivery is logged and recorded; it never aborts delivery to
  the remaining connections.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from audio.pcm import pcm16le_to_samples
from observability.logger import log_event
from orchestrator.events import ResponseReceived
from protocol.messages import encode_audio_response, encode_error
from session.errors import InvalidAudioPayload
from session.registry import ConnectionRegistry
from spec import ASSISTANT_ROLE, AUDIO_SAMPLE_WIDTH_BYTES, ERR_INVALID_AUDIO


@dataclass(frozen=True)
class BroadcastReport:
    """
    Outcome of one broadcast.

    delivered:
        connection_ids that received the message, in delivery order
    failed:
        (connection_id, error) for each connection whose send raised
    rejected:
        reason the payload was not forwarded, or None
    """
    delivered: tuple[str, ...] = ()
    failed: tuple[tuple[str, str], ...] = ()
    rejected: str | None = None


def validate_audio_payload(event: ResponseReceived) -> bytes:
    """
    Return the payload's PCM bytes if it is broadcastable.

    Raises:
        InvalidAudioPayload for incomplete, empty, or odd-length audio.
    """
    if not event.completed:
        raise InvalidAudioPayload(f"item {event.item_id} is not complete")
    if not event.pcm_bytes:
        raise InvalidAudioPayload(f"item {event.item_id} carries no audio")
    if len(event.pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise InvalidAudioPayload(
            f"item {event.item_id} audio is not whole PCM16 samples "
            f"({len(event.pcm_bytes)} bytes)"
        )
    return event.pcm_bytes


class SessionBroadcaster:
    """Deliver upstream responses to all attached connections."""

    def __init__(self, *, registry: ConnectionRegistry, session_id: str) -> None:
        self._registry = registry
        self._session_id = session_id

    async def broadcast_response(self, event: ResponseReceived) -> BroadcastReport:
        """Validate and fan out one completed upstream item."""
        if event.role != ASSISTANT_ROLE:
            log_event({
                "event_type": "RESPONSE_IGNORED",
                "session_id": self._session_id,
                "item_id": event.item_id,
                "role": event.role,
            })
            return BroadcastReport(rejected=f"role {event.role!r} is not broadcast")

        try:
            pcm = validate_audio_payload(event)
        except InvalidAudioPayload as e:
            log_event({
                "event_type": "AUDIO_PAYLOAD_INVALID",
                "session_id": self._session_id,
                "item_id": event.item_id,
                "error": str(e),
            })
            report = await self.broadcast(encode_error(ERR_INVALID_AUDIO))
            return BroadcastReport(
                delivered=report.delivered,
                failed=report.failed,
                rejected=str(e),
            )

        message = encode_audio_response(
            item_id=event.item_id,
            samples=pcm16le_to_samples(pcm),
        )
        report = await self.broadcast(message)

        log_event({
            "event_type": "AUDIO_RESPONSE_BROADCAST",
            "session_id": self._session_id,
            "item_id": event.item_id,
            "samples": len(pcm) // AUDIO_SAMPLE_WIDTH_BYTES,
            "delivered": len(report.delivered),
            "failed": len(report.failed),
        })
        return report

    async def broadcast(self, message: dict[str, Any]) -> BroadcastReport:
        """Send one message to every attached connection, isolating failures."""
        delivered: list[str] = []
        failed: list[tuple[str, str]] = []

        for connection in self._registry.connections():
            try:
                await connection.send_json(message)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                failed.append((connection.connection_id, repr(exc)))
                log_event({
                    "event_type": "BROADCAST_DELIVERY_FAILED",
                    "session_id": self._session_id,
                    "connection_id": connection.connection_id,
                    "message_type": message.get("type"),
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })
            else:
                delivered.append(connection.connection_id)

        return BroadcastReport(delivered=tuple(delivered), failed=tuple(failed))
