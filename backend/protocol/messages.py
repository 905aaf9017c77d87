"""
Client transport message codec.

Inbound (client -> server):
- Text frames: JSON objects with a "type" discriminant
    {"type": "startStream"}
    {"type": "audioData", "audio": "<base64 PCM16LE>"}
    {"type": "audioData", "data": [int16, ...]}
    {"type": "createResponse"}
    {"type": "disconnect"}
- Binary frames: raw PCM16LE mono audio (an implicit audioData)

Outbound (server -> client):
    {"type": "streamStarted"}
    {"type": "audioResponse", "item_id": "...", "samples": [int16, ...]}
    {"type": "error", "message": "..."}

Usage example:

    try:
        msg = decode_text_message(payload)
    except ProtocolError as e:
        log_event({"event_type": "CLIENT_MESSAGE_INVALID", "error": str(e)})
        await conn.send_json(encode_error(ERR_BAD_MESSAGE))
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from audio.pcm import samples_to_pcm16le
from spec import AUDIO_SAMPLE_WIDTH_BYTES


# -------------------------
# Exceptions
# -------------------------

class ProtocolError(Exception):
    """Base class for client protocol errors."""


class InvalidMessage(ProtocolError):
    """
    Raised when a text frame is not a JSON object with a string "type".

    The message is dropped; the connection stays open.
    """


class UnknownMessageType(ProtocolError):
    """Raised when "type" is not one of the inbound message types."""


class InvalidAudioData(ProtocolError):
    """
    Raised when an audioData payload is empty, not decodable, or not a
    whole number of PCM16 samples.
    """


# -------------------------
# Message types
# -------------------------

class ClientMessageType(str, Enum):
    """Inbound message discriminants (wire names)."""
    START_STREAM = "startStream"
    AUDIO_DATA = "audioData"
    CREATE_RESPONSE = "createResponse"
    DISCONNECT = "disconnect"


class ServerMessageType(str, Enum):
    """Outbound message discriminants (wire names)."""
    STREAM_STARTED = "streamStarted"
    AUDIO_RESPONSE = "audioResponse"
    ERROR = "error"


@dataclass(frozen=True)
class ClientMessage:
    """
    A decoded inbound message.

    pcm_bytes is set only for AUDIO_DATA.
    """
    type: ClientMessageType
    pcm_bytes: bytes = field(default=b"", repr=False)


# -------------------------
# Client -> Server
# -------------------------

def decode_text_message(payload: str) -> ClientMessage:
    """Decode one inbound JSON text frame."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise InvalidMessage(f"invalid JSON: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise InvalidMessage("message must be an object with a string 'type'")

    try:
        msg_type = ClientMessageType(data["type"])
    except ValueError as e:
        raise UnknownMessageType(f"unknown message type: {data['type']!r}") from e

    if msg_type is ClientMessageType.AUDIO_DATA:
        return ClientMessage(type=msg_type, pcm_bytes=_audio_from_json(data))

    return ClientMessage(type=msg_type)


def decode_binary_message(payload: bytes) -> ClientMessage:
    """Decode one inbound binary frame as raw PCM16 audio."""
    _check_pcm(payload)
    return ClientMessage(type=ClientMessageType.AUDIO_DATA, pcm_bytes=bytes(payload))


def _audio_from_json(data: dict[str, Any]) -> bytes:
    if "audio" in data:
        encoded = data["audio"]
        if not isinstance(encoded, str):
            raise InvalidAudioData("'audio' must be a base64 string")
        try:
            pcm = base64.b64decode(encoded, validate=True)
        except binascii.Error as e:
            raise InvalidAudioData(f"invalid base64 audio: {e}") from e

    elif "data" in data:
        samples = data["data"]
        if not isinstance(samples, list) or not all(
            isinstance(s, int) and not isinstance(s, bool) for s in samples
        ):
            raise InvalidAudioData("'data' must be a list of integers")
        try:
            pcm = samples_to_pcm16le(samples)
        except ValueError as e:
            raise InvalidAudioData(str(e)) from e

    else:
        raise InvalidAudioData("audioData requires 'audio' or 'data'")

    _check_pcm(pcm)
    return pcm


def _check_pcm(pcm: bytes) -> None:
    if not pcm:
        raise InvalidAudioData("empty audio payload")
    if len(pcm) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise InvalidAudioData(f"odd PCM16 byte length: {len(pcm)}")


# -------------------------
# Server -> Client
# -------------------------

def encode_stream_started() -> dict[str, Any]:
    return {"type": ServerMessageType.STREAM_STARTED.value}


def encode_audio_response(*, item_id: str, samples: list[int]) -> dict[str, Any]:
    return {
        "type": ServerMessageType.AUDIO_RESPONSE.value,
        "item_id": item_id,
        "samples": samples,
    }


def encode_error(message: str) -> dict[str, Any]:
    return {"type": ServerMessageType.ERROR.value, "message": message}
