"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Own the process-wide RelaySession (and the optional local audio bridge)
- Register routes
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.realtime.openai_realtime import OpenAIRealtimeAdapter
from config import AppConfig
from observability.logger import log_event
from orchestrator.events import Event
from session.local_audio import LocalAudioBridge
from session.relay_session import RelaySession

from server.routes import register_routes


def create_app(config: AppConfig | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The relay session is built in the lifespan handler so that its event
    loop task lives on the server's running loop.

    Raises:
        RuntimeError if OPENAI_API_KEY is not configured.
    """
    config = config or AppConfig.load_from_env()

    if not config.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable not set")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        relay = RelaySession(backend_factory=build_backend_factory(config))
        await relay.start()
        app.state.relay = relay

        bridge: LocalAudioBridge | None = None
        if config.local_audio:
            bridge = LocalAudioBridge(relay=relay)
            if not await bridge.start():
                bridge = None
        app.state.local_audio = bridge

        log_event({
            "event_type": "SERVER_STARTED",
            "env": config.env,
            "model": config.realtime_model,
            "local_audio": bridge is not None,
            **relay.log_context(),
        })
        try:
            yield
        finally:
            if bridge is not None:
                await bridge.stop()
                await relay.runtime.join()
            await relay.shutdown()
            log_event({"event_type": "SERVER_STOPPED", "session_id": relay.session_id})

    app = FastAPI(title="Voice Relay API", lifespan=lifespan)

    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app


def build_backend_factory(
    config: AppConfig,
) -> Callable[[Callable[[Event], None], str], OpenAIRealtimeAdapter]:
    """Bind the configured realtime settings into a RelaySession backend factory."""
    api_key = config.openai_api_key or ""

    def factory(emit_event: Callable[[Event], None], session_id: str) -> OpenAIRealtimeAdapter:
        return OpenAIRealtimeAdapter(
            emit_event=emit_event,
            api_key=api_key,
            model=config.realtime_model,
            voice=config.realtime_voice,
            instructions=config.realtime_instructions,
            session_id=session_id,
        )

    return factory
