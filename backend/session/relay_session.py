"""
Relay session container.

One RelaySession is constructed at process start and shared by every
connection handler. It owns:
- the Runtime (event channel + handlers)
- the UpstreamSession (single realtime backend connection)
- the ConnectionRegistry and SessionBroadcaster
- one AudioChunker per audio source

It contains no relay logic of its own; handlers live in Runtime.
Independent RelaySession objects share nothing, so tests (or several
relays in one process) run in isolation.
"""

from __future__ import annotations

from typing import Any, Callable
from uuid import uuid4

from adapters.realtime.base import RealtimeBackend
from audio.chunker import AudioChunker
from orchestrator.events import Event
from orchestrator.runtime import Runtime
from session.broadcaster import SessionBroadcaster
from session.registry import ConnectionRegistry
from session.upstream import UpstreamSession
from spec import (
    AUDIO_BYTES_PER_FRAME_PCM,
    RESPONSE_TIMEOUT_S,
    UPSTREAM_CONNECT_TIMEOUT_S,
)


# (emit_event, session_id) -> backend
BackendFactory = Callable[[Callable[[Event], None], str], RealtimeBackend]


def _new_session_id() -> str:
    return f"relay_{uuid4().hex[:12]}"


class RelaySession:
    """Explicit owner of all mutable relay state."""

    def __init__(
        self,
        *,
        backend_factory: BackendFactory,
        session_id: str | None = None,
        frame_size: int = AUDIO_BYTES_PER_FRAME_PCM,
        connect_timeout_s: float = UPSTREAM_CONNECT_TIMEOUT_S,
        response_timeout_s: float = RESPONSE_TIMEOUT_S,
    ) -> None:
        self.session_id = session_id or _new_session_id()
        self._frame_size = frame_size

        # Runtime first: the backend emits straight into its channel
        self.runtime = Runtime(session=self, response_timeout_s=response_timeout_s)

        self.upstream = UpstreamSession(
            backend=backend_factory(self.runtime.submit, self.session_id),
            session_id=self.session_id,
            connect_timeout_s=connect_timeout_s,
        )
        self.registry = ConnectionRegistry(
            upstream=self.upstream,
            session_id=self.session_id,
        )
        self.broadcaster = SessionBroadcaster(
            registry=self.registry,
            session_id=self.session_id,
        )

        self._chunkers: dict[str, AudioChunker] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the event loop. Call once from inside the running loop."""
        await self.runtime.start()

    async def shutdown(self) -> None:
        """Stop the event loop and close the upstream."""
        await self.runtime.shutdown()
        await self.upstream.disconnect()

    # ------------------------------------------------------------------
    # Per-source chunkers (used by Runtime handlers)
    # ------------------------------------------------------------------

    def chunker_for(self, source: str) -> AudioChunker:
        chunker = self._chunkers.get(source)
        if chunker is None:
            chunker = AudioChunker(source=source, frame_size=self._frame_size)
            self._chunkers[source] = chunker
        return chunker

    def drop_chunker(self, source: str) -> int:
        """
        Forget a source's chunker.

        Returns:
            Number of buffered bytes discarded with it.
        """
        chunker = self._chunkers.pop(source, None)
        if chunker is None:
            return 0
        return chunker.reset()

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this session."""
        return {
            "session_id": self.session_id,
            "upstream_state": self.upstream.state.value,
            "active_connections": len(self.registry),
        }
