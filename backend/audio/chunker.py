"""
PCM frame accumulator.

Purpose:
- Re-chunk an arbitrary stream of PCM16 byte buffers (mic callbacks,
  client WebSocket messages) into fixed-size frames for the upstream.

Invariants:
- Frame size is fixed at construction and never renegotiated.
- Frames come off the front of the accumulator in append order.
- No frame is emitted twice; no byte is dropped except by reset().
- After a drain pass completes, the remainder is < frame size.

reset() is a deliberate data-loss point: the partial remainder is thrown
away and its length returned so the caller can log it.
"""

from __future__ import annotations

from typing import Iterator

from audio.frames import PCMFrame
from spec import AUDIO_BYTES_PER_FRAME_PCM, AUDIO_SAMPLE_WIDTH_BYTES


class AudioChunker:
    """Accumulate raw bytes and emit complete fixed-size frames."""

    def __init__(
        self,
        *,
        source: str,
        frame_size: int = AUDIO_BYTES_PER_FRAME_PCM,
    ) -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be > 0")
        if frame_size % AUDIO_SAMPLE_WIDTH_BYTES != 0:
            raise ValueError("frame_size must hold whole PCM16 samples")

        self._source = source
        self._frame_size = frame_size
        self._buffer = bytearray()
        self._next_seq = 1

    @property
    def source(self) -> str:
        return self._source

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def pending_bytes(self) -> int:
        """Length of the buffered remainder."""
        return len(self._buffer)

    def append(self, data: bytes) -> None:
        """Add raw bytes to the end of the accumulator."""
        self._buffer += data

    def drain(self) -> Iterator[PCMFrame]:
        """
        Lazily yield every complete frame currently buffered.

        Each frame is removed from the accumulator before it is yielded,
        so abandoning the generator early never re-emits a frame.
        """
        while len(self._buffer) >= self._frame_size:
            chunk = bytes(self._buffer[: self._frame_size])
            del self._buffer[: self._frame_size]

            frame = PCMFrame(
                source=self._source,
                sequence_num=self._next_seq,
                pcm_bytes=chunk,
            )
            self._next_seq += 1
            yield frame

    def reset(self) -> int:
        """
        Discard the partial remainder.

        Returns:
            Number of bytes thrown away.
        """
        discarded = len(self._buffer)
        self._buffer.clear()
        return discarded
