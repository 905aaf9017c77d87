"""
Realtime backend adapter contract.

This module defines the *interface only*: no lifecycle policy, retries,
timeouts, or client fan-out live here (see session.upstream).

Key invariants:
- connect() either completes with a usable connection or raises.
- send_audio()/create_response() raise if the connection is gone; the
  adapter never reconnects on its own.
- Completed response items are emitted as ResponseReceived events through
  the emit callback supplied at construction.
- on_closed is invoked when the remote side ends the connection, never for
  a local disconnect().
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable


ClosedCallback = Callable[[str | None], None]


class RealtimeBackend(ABC):
    """
    Abstract interface for a realtime speech backend.

    Non-responsibilities:
    - No knowledge of client connections or broadcast
    - No frame chunking (frames arrive already sized)
    """

    @abstractmethod
    async def connect(self, *, on_closed: ClosedCallback | None = None) -> None:
        """Open and configure the backend session."""
        raise NotImplementedError

    @abstractmethod
    async def send_audio(self, pcm_bytes: bytes) -> None:
        """Append one PCM16 frame to the backend's input buffer."""
        raise NotImplementedError

    @abstractmethod
    async def create_response(self) -> None:
        """Ask the backend to synthesize a reply from buffered input."""
        raise NotImplementedError

    @abstractmethod
    async def disconnect(self) -> None:
        """
        Close the backend session.

        Must be idempotent and must not invoke on_closed.
        """
        raise NotImplementedError
