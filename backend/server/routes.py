"""
Route registration for the voice relay API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire one SessionGateway to each WebSocket's lifecycle
- Pull the shared relay session from app.state
"""

from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect, FastAPI

from observability.logger import log_event
from session.gateway import SessionGateway, GatewayResult
from session.relay_session import RelaySession


class WebSocketConnection:
    """A client connection backed by a Starlette WebSocket."""

    def __init__(self, ws: WebSocket, connection_id: str | None = None) -> None:
        self.connection_id = connection_id or f"ws_{uuid4().hex[:12]}"
        self._ws = ws

    async def send_json(self, message: dict[str, Any]) -> None:
        await self._ws.send_text(json.dumps(message))


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        relay: RelaySession = app.state.relay
        return {"status": "ok", **relay.log_context()}

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        relay: RelaySession = app.state.relay
        connection = WebSocketConnection(ws)
        gateway = SessionGateway(relay=relay, connection=connection)

        try:
            result = gateway.on_ws_connect()
            await _flush_gateway_result(ws, result)

            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(code=msg.get("code", 1000))

                if msg.get("text") is not None:
                    result = gateway.on_json_message(msg["text"])
                elif msg.get("bytes") is not None:
                    result = gateway.on_binary_message(msg["bytes"])
                else:
                    continue

                await _flush_gateway_result(ws, result)
                if result.close:
                    await ws.close()
                    break

        except WebSocketDisconnect:
            gateway.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "session_id": relay.session_id,
                "connection_id": connection.connection_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            gateway.on_ws_disconnect(reason="server_error")


async def _flush_gateway_result(
    ws: WebSocket,
    result: GatewayResult,
) -> None:
    for msg in result.outbound_json:
        await ws.send_text(json.dumps(msg))
