"""
Audio frame primitives.

Pure data containers only.
No behavior, no buffering, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class PCMFrame:
    """
    Fixed-size block of PCM16 audio forwarded upstream as one unit.

    source:
        Id of the chunker owner (client connection id or the local mic).

    sequence_num:
        Monotonic per-source sequence number, starting at 1.
        Used for ordering checks and debugging only.

    pcm_bytes:
        Raw PCM16 little-endian audio bytes.
        Length equals the chunker's frame size.
    """
    source: str
    sequence_num: int
    pcm_bytes: bytes

    def __len__(self) -> int:
        return len(self.pcm_bytes)
