"""
Connection registry.

Tracks which client connections are attached to the relay session and
drives the upstream lifecycle from membership alone:

- first attach  -> UpstreamSession.ensure_connected()
- last detach   -> UpstreamSession.disconnect()

No individual connection owns the upstream session. The upstream is
Connected iff the registry is non-empty, modulo the async connect and
disconnect windows.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from observability.logger import log_event
from session.upstream import UpstreamSession


@runtime_checkable
class ClientConnection(Protocol):
    """One attached consumer of the relay (membership only, no buffering)."""

    connection_id: str

    async def send_json(self, message: dict[str, Any]) -> None: ...


class ConnectionRegistry:
    """Ordered set of attached connections, keyed by connection_id."""

    def __init__(self, *, upstream: UpstreamSession, session_id: str) -> None:
        self._upstream = upstream
        self._session_id = session_id
        # dict preserves attach order, which is the broadcast order
        self._connections: dict[str, ClientConnection] = {}

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def attach(self, connection: ClientConnection) -> None:
        """
        Add a connection.

        Connects the upstream when this is the first attachment (or when a
        previous connect attempt left it down). A ConnectFailure propagates
        to the caller; the connection stays attached so a later stream start
        can retry the connect.
        """
        if connection.connection_id in self._connections:
            return

        first = not self._connections
        self._connections[connection.connection_id] = connection

        log_event({
            "event_type": "CONNECTION_ATTACHED",
            "session_id": self._session_id,
            "connection_id": connection.connection_id,
            "active_connections": len(self._connections),
        })

        if first or not self._upstream.is_connected:
            await self._upstream.ensure_connected()

    async def detach(self, connection: ClientConnection) -> None:
        """
        Remove a connection. Unknown connections are ignored.

        Disconnects the upstream when the registry becomes empty.
        """
        if self._connections.pop(connection.connection_id, None) is None:
            return

        log_event({
            "event_type": "CONNECTION_DETACHED",
            "session_id": self._session_id,
            "connection_id": connection.connection_id,
            "active_connections": len(self._connections),
        })

        if not self._connections:
            await self._upstream.disconnect()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, connection_id: str) -> ClientConnection | None:
        return self._connections.get(connection_id)

    def connections(self) -> tuple[ClientConnection, ...]:
        """Snapshot of attached connections in attach order."""
        return tuple(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections
