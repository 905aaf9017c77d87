"""
RELAY CONSTANTS
---------------
Single source of truth for all behavioral constants of the relay.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio Format (PCM16 mono @ 24kHz, 100ms frames)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 24_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit, little-endian)
AUDIO_FRAME_MS: Final[int] = 100

AUDIO_SAMPLES_PER_FRAME: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_FRAME_MS) // 1000
AUDIO_BYTES_PER_FRAME_PCM: Final[int] = AUDIO_SAMPLES_PER_FRAME * AUDIO_SAMPLE_WIDTH_BYTES

# =============================================================================
# Upstream realtime backend
# =============================================================================

REALTIME_BASE_URL: Final[str] = "wss://api.openai.com/v1/realtime"
REALTIME_DEFAULT_MODEL: Final[str] = "gpt-4o-realtime-preview-2024-10-01"
REALTIME_DEFAULT_VOICE: Final[str] = "alloy"
REALTIME_AUDIO_FORMAT: Final[str] = "pcm16"
REALTIME_MAX_MESSAGE_BYTES: Final[int] = 2**24

# Roles whose completed audio is broadcast back to clients
ASSISTANT_ROLE: Final[str] = "assistant"

# =============================================================================
# Timeouts
# =============================================================================

UPSTREAM_CONNECT_TIMEOUT_S: Final[float] = 10.0
RESPONSE_TIMEOUT_S: Final[float] = 30.0

# =============================================================================
# Local microphone silence detection
# =============================================================================

# Blocks are one frame long (AUDIO_FRAME_MS)
SILENCE_RMS_THRESHOLD: Final[float] = 0.01
SILENCE_BLOCKS_REQUIRED: Final[int] = 6

# =============================================================================
# Client sources
# =============================================================================

# The host mic and speaker act as one client: audio source and response sink
LOCAL_AUDIO_CONNECTION_ID: Final[str] = "local-audio"

# =============================================================================
# User-visible error messages
# =============================================================================

ERR_CONNECT_FAILED: Final[str] = "Failed to connect to realtime backend"
ERR_START_STREAM: Final[str] = "Failed to start stream"
ERR_CONNECTION_LOST: Final[str] = "Connection lost. Please try again."
ERR_CREATE_RESPONSE: Final[str] = "Failed to create response"
ERR_INVALID_AUDIO: Final[str] = "Invalid audio response received"
ERR_RESPONSE_TIMEOUT: Final[str] = "Timed out waiting for response"
ERR_BAD_MESSAGE: Final[str] = "Malformed message"


# =============================================================================
# Helper Functions
# =============================================================================

def bytes_to_seconds(num_bytes: int) -> float:
    """
    Convert a PCM byte count to duration in seconds.

    Non-positive input returns 0.0.
    """
    if num_bytes <= 0:
        return 0.0
    return num_bytes / (AUDIO_SAMPLE_RATE_HZ * AUDIO_CHANNELS * AUDIO_SAMPLE_WIDTH_BYTES)
