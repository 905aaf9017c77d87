"""
Upstream session: the single connection to the realtime backend.

Responsibilities:
- Own the UpstreamState (DISCONNECTED | CONNECTING | CONNECTED)
- Connect idempotently, with a deadline
- Forward frames and response requests while CONNECTED
- Notify listeners of every state transition

Non-responsibilities:
- No automatic reconnection, ever. A dropped connection stays down until a
  caller asks for ensure_connected() again, so audio is never silently
  resubmitted across two different upstream connections.
- No knowledge of client connections (see ConnectionRegistry)
"""

from __future__ import annotations

import asyncio
from typing import Callable

from adapters.realtime.base import RealtimeBackend
from audio.frames import PCMFrame
from observability.logger import log_event
from observability.metrics import timed
from session.errors import ConnectFailure, ConnectTimeout, NotConnectedError
from session.upstream_state import UpstreamState
from spec import UPSTREAM_CONNECT_TIMEOUT_S


StateListener = Callable[[UpstreamState], None]


class UpstreamSession:
    """
    Lifecycle wrapper around one RealtimeBackend.

    Concurrent ensure_connected() callers share one in-flight connect
    attempt; exactly one backend.connect() runs per DISCONNECTED period.
    """

    def __init__(
        self,
        *,
        backend: RealtimeBackend,
        session_id: str,
        connect_timeout_s: float = UPSTREAM_CONNECT_TIMEOUT_S,
    ) -> None:
        if connect_timeout_s <= 0:
            raise ValueError("connect_timeout_s must be > 0")

        self._backend = backend
        self._session_id = session_id
        self._connect_timeout_s = connect_timeout_s

        self._state = UpstreamState.DISCONNECTED
        self._connect_task: asyncio.Task[None] | None = None
        self._listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> UpstreamState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is UpstreamState.CONNECTED

    def add_state_listener(self, listener: StateListener) -> None:
        """Register a callback invoked synchronously on every transition."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_connected(self) -> None:
        """
        Make sure the upstream is CONNECTED.

        - CONNECTED: returns immediately
        - CONNECTING: awaits the attempt already in flight
        - DISCONNECTED: starts a new attempt and awaits it

        Raises:
            ConnectFailure (or ConnectTimeout) if the attempt fails. The
            state is back to DISCONNECTED and nothing is retried.
        """
        if self._state is UpstreamState.CONNECTED:
            return

        if self._connect_task is None:
            self._set_state(UpstreamState.CONNECTING)
            self._connect_task = asyncio.create_task(self._connect())

        # Shielded so one cancelled caller does not abort the attempt the
        # other callers are waiting on.
        await asyncio.shield(self._connect_task)

    async def disconnect(self) -> None:
        """
        Tear the upstream down. Safe to call in any state.

        An in-flight connect is allowed to finish first (its failure is
        not re-raised here), then the connection is closed.
        """
        task = self._connect_task
        if task is not None:
            try:
                await asyncio.shield(task)
            except ConnectFailure:
                pass

        if self._state is UpstreamState.DISCONNECTED:
            return

        self._set_state(UpstreamState.DISCONNECTED)
        try:
            await self._backend.disconnect()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "UPSTREAM_CLOSE_ERROR",
                "session_id": self._session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    # ------------------------------------------------------------------
    # Upstream operations
    # ------------------------------------------------------------------

    async def send_frame(self, frame: PCMFrame) -> None:
        """
        Forward one frame to the backend.

        Raises:
            NotConnectedError if not CONNECTED, or if the backend send fails
            (the connection is then considered lost).
        """
        self._require_connected("send_frame")
        try:
            await self._backend.send_audio(frame.pcm_bytes)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._handle_send_failure("send_frame", exc)
            raise NotConnectedError(f"send_frame failed: {exc!r}") from exc

    async def request_response(self) -> None:
        """
        Ask the backend to synthesize a reply from the buffered input.

        Raises:
            NotConnectedError under the same rules as send_frame().
        """
        self._require_connected("request_response")
        try:
            await self._backend.create_response()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._handle_send_failure("request_response", exc)
            raise NotConnectedError(f"request_response failed: {exc!r}") from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _connect(self) -> None:
        try:
            with timed("upstream_connect", session_id=self._session_id) as details:
                try:
                    await asyncio.wait_for(
                        self._backend.connect(on_closed=self._on_backend_closed),
                        timeout=self._connect_timeout_s,
                    )
                except asyncio.TimeoutError as exc:
                    details["outcome"] = "timeout"
                    raise ConnectTimeout(
                        f"connect exceeded {self._connect_timeout_s}s"
                    ) from exc
                except ConnectFailure:
                    details["outcome"] = "failed"
                    raise
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    details["outcome"] = "failed"
                    raise ConnectFailure(f"connect failed: {exc!r}") from exc
                details["outcome"] = "connected"
        except ConnectFailure as exc:
            log_event({
                "event_type": "UPSTREAM_CONNECT_FAILED",
                "session_id": self._session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            self._set_state(UpstreamState.DISCONNECTED)
            raise
        else:
            self._set_state(UpstreamState.CONNECTED)
        finally:
            self._connect_task = None

    def _require_connected(self, operation: str) -> None:
        if self._state is not UpstreamState.CONNECTED:
            raise NotConnectedError(
                f"{operation} while upstream is {self._state.value}"
            )

    async def _handle_send_failure(self, operation: str, exc: Exception) -> None:
        log_event({
            "event_type": "UPSTREAM_SEND_FAILED",
            "session_id": self._session_id,
            "operation": operation,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
        await self.disconnect()

    def _on_backend_closed(self, reason: str | None) -> None:
        """Backend receive loop ended without a local disconnect()."""
        log_event({
            "event_type": "UPSTREAM_CLOSED_BY_REMOTE",
            "session_id": self._session_id,
            "reason": reason,
            "state": self._state.value,
        })
        if self._state is UpstreamState.CONNECTED:
            self._set_state(UpstreamState.DISCONNECTED)

    def _set_state(self, new_state: UpstreamState) -> None:
        prev = self._state
        if prev is new_state:
            return
        self._state = new_state

        log_event({
            "event_type": "UPSTREAM_STATE_CHANGED",
            "session_id": self._session_id,
            "from": prev.value,
            "to": new_state.value,
        })

        for listener in list(self._listeners):
            listener(new_state)
