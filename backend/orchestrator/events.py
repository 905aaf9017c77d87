"""
Event definitions for the relay dispatcher.

Rules:
- Events describe facts that have occurred (or requests that arrived).
- Events carry data only (no behavior).
- Every handler decision in Runtime is based on these events.
- Events are processed strictly in submission order per session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from audio.frames import PCMFrame

if TYPE_CHECKING:
    from session.registry import ClientConnection


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """Canonical event types understood by the Runtime."""

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    CONNECTION_ATTACHED = "CONNECTION_ATTACHED"
    CONNECTION_DETACHED = "CONNECTION_DETACHED"

    # ------------------------------------------------------------------
    # Client control
    # ------------------------------------------------------------------
    STREAM_START_REQUESTED = "STREAM_START_REQUESTED"
    RESPONSE_REQUESTED = "RESPONSE_REQUESTED"

    # ------------------------------------------------------------------
    # Audio ingest
    # ------------------------------------------------------------------
    AUDIO_APPENDED = "AUDIO_APPENDED"
    FRAME_READY = "FRAME_READY"
    SILENCE_DETECTED = "SILENCE_DETECTED"

    # ------------------------------------------------------------------
    # Upstream
    # ------------------------------------------------------------------
    RESPONSE_RECEIVED = "RESPONSE_RECEIVED"
    RESPONSE_TIMEOUT = "RESPONSE_TIMEOUT"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Connection Events
# =============================================================================

@dataclass(frozen=True)
class ConnectionAttached(Event):
    """A client connection joined the session."""
    connection: ClientConnection


@dataclass(frozen=True)
class ConnectionDetached(Event):
    """A client connection left the session."""
    connection: ClientConnection
    reason: str | None = None


# =============================================================================
# Client Control Events
# =============================================================================

@dataclass(frozen=True)
class StreamStartRequested(Event):
    """Client asked to (re)start its audio stream."""
    source: str


@dataclass(frozen=True)
class ResponseRequested(Event):
    """Client asked the upstream to synthesize a reply."""
    source: str


# =============================================================================
# Audio Events
# =============================================================================

@dataclass(frozen=True)
class AudioAppended(Event):
    """Raw PCM16 bytes arrived from a source."""
    source: str
    pcm_bytes: bytes = field(repr=False)


@dataclass(frozen=True)
class FrameReady(Event):
    """A complete frame was drained from a source's chunker."""
    frame: PCMFrame


@dataclass(frozen=True)
class SilenceDetected(Event):
    """The local microphone went quiet after speech."""
    source: str


# =============================================================================
# Upstream Events
# =============================================================================

@dataclass(frozen=True)
class ResponseReceived(Event):
    """
    An upstream conversation item completed.

    pcm_bytes holds the item's full audio (PCM16 little-endian). It may be
    empty or malformed; the broadcaster validates it.
    """
    item_id: str
    role: str
    completed: bool
    pcm_bytes: bytes = field(repr=False)


@dataclass(frozen=True)
class ResponseTimeout(Event):
    """No response arrived within the deadline after a request."""
    source: str
