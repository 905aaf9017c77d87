"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No relay logic
- No protocol constants (see spec.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import REALTIME_DEFAULT_MODEL, REALTIME_DEFAULT_VOICE

DEFAULT_INSTRUCTIONS = (
    "You are a friendly voice assistant. "
    "Answer briefly and speak naturally."
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the relay session and server bootstrap code.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Realtime backend
    # ------------------------------------------------------------------

    openai_api_key: str | None
    realtime_model: str
    realtime_voice: str
    realtime_instructions: str

    # ------------------------------------------------------------------
    # Local audio devices
    # ------------------------------------------------------------------

    local_audio: bool

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    host: str
    port: int

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if PORT is not an integer.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            realtime_model=os.environ.get("REALTIME_MODEL", REALTIME_DEFAULT_MODEL),
            realtime_voice=os.environ.get("REALTIME_VOICE", REALTIME_DEFAULT_VOICE),
            realtime_instructions=os.environ.get(
                "REALTIME_INSTRUCTIONS", DEFAULT_INSTRUCTIONS
            ),

            local_audio=os.environ.get("LOCAL_AUDIO", "0") == "1",

            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "3000")),
        )
