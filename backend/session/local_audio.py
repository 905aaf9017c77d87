"""
Local audio bridge: the host's microphone and speaker as one relay client.

The bridge attaches a LocalAudioConnection to the relay like any WebSocket
client. Microphone blocks become AudioAppended events for that connection,
the silence detector turns a pause after speech into SilenceDetected, and
every audioResponse the broadcaster delivers is queued for the speaker.

Device failures are logged as DeviceError and leave the relay running. A
failed upstream connect at start is reported once; the bridge then stays
stopped.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, TYPE_CHECKING

from audio.devices import Microphone, Speaker
from audio.pcm import samples_to_pcm16le
from audio.silence import SilenceDetector
from observability.logger import log_event, now_ms
from orchestrator.events import (
    AudioAppended,
    ConnectionAttached,
    ConnectionDetached,
    EventType,
    SilenceDetected,
)
from protocol.messages import ServerMessageType
from session.errors import ConnectFailure, DeviceError
from spec import LOCAL_AUDIO_CONNECTION_ID

if TYPE_CHECKING:
    from session.relay_session import RelaySession


MicrophoneFactory = Callable[[Callable[[bytes], None]], Microphone]


def _default_microphone(on_audio: Callable[[bytes], None]) -> Microphone:
    return Microphone(on_audio=on_audio)


class LocalAudioConnection:
    """
    Client connection whose output is the host speaker.

    send_json never waits for playback: audio is queued and played by a
    background task, one buffer after another.
    """

    def __init__(
        self,
        *,
        speaker: Speaker,
        connection_id: str = LOCAL_AUDIO_CONNECTION_ID,
    ) -> None:
        self.connection_id = connection_id
        self._speaker = speaker
        self._playback: asyncio.Queue[bytes] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._play_loop())

    async def stop(self) -> None:
        worker = self._worker
        self._worker = None
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

    async def send_json(self, message: dict[str, Any]) -> None:
        if message.get("type") == ServerMessageType.AUDIO_RESPONSE.value:
            self._playback.put_nowait(samples_to_pcm16le(message["samples"]))
            return
        log_event({
            "event_type": "LOCAL_AUDIO_MESSAGE",
            "connection_id": self.connection_id,
            "message": message,
        })

    async def _play_loop(self) -> None:
        while True:
            pcm = await self._playback.get()
            try:
                await asyncio.to_thread(self._speaker.play, pcm)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "SPEAKER_ERROR",
                    "connection_id": self.connection_id,
                    "exception": type(exc).__name__,
                    "error": str(exc),
                })
            else:
                log_event({
                    "event_type": "SPEAKER_PLAYED",
                    "connection_id": self.connection_id,
                    "bytes": len(pcm),
                })


class LocalAudioBridge:
    """Wire the host mic and speaker into a relay session."""

    def __init__(
        self,
        *,
        relay: RelaySession,
        speaker: Speaker | None = None,
        microphone_factory: MicrophoneFactory = _default_microphone,
        detector: SilenceDetector | None = None,
    ) -> None:
        self._relay = relay
        self._connection = LocalAudioConnection(speaker=speaker or Speaker())
        self._microphone_factory = microphone_factory
        self._detector = detector or SilenceDetector()
        self._microphone: Microphone | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._attached = False

    @property
    def connection(self) -> LocalAudioConnection:
        return self._connection

    async def start(self) -> bool:
        """
        Connect the upstream, attach the local connection, start capturing.

        The connect is awaited here, before anything is submitted, so a
        failed connect is reported once and never retried by a later event.

        Returns:
            False if the upstream could not be connected or the microphone
            could not be started (the bridge is then fully stopped again),
            True otherwise.
        """
        self._loop = asyncio.get_running_loop()

        try:
            await self._relay.upstream.ensure_connected()
        except ConnectFailure as e:
            log_event({
                "event_type": "LOCAL_AUDIO_CONNECT_FAILED",
                "session_id": self._relay.session_id,
                "exception": type(e).__name__,
                "error": str(e),
            })
            return False

        await self._connection.start()
        self._attached = True
        self._relay.runtime.submit(ConnectionAttached(
            event_type=EventType.CONNECTION_ATTACHED, ts_ms=now_ms(),
            connection=self._connection,
        ))

        microphone = self._microphone_factory(self._on_audio_threadsafe)
        try:
            microphone.start()
        except DeviceError as e:
            log_event({
                "event_type": "MICROPHONE_ERROR",
                "session_id": self._relay.session_id,
                "error": str(e),
            })
            await self.stop()
            return False

        self._microphone = microphone
        return True

    async def stop(self) -> None:
        microphone = self._microphone
        self._microphone = None
        if microphone is not None:
            try:
                microphone.stop()
            except DeviceError as e:
                log_event({
                    "event_type": "MICROPHONE_ERROR",
                    "session_id": self._relay.session_id,
                    "error": str(e),
                })

        self._detector.reset()
        if self._attached:
            self._attached = False
            self._relay.runtime.submit(ConnectionDetached(
                event_type=EventType.CONNECTION_DETACHED, ts_ms=now_ms(),
                connection=self._connection, reason="local_audio_stopped",
            ))
        await self._connection.stop()

    # ------------------------------------------------------------------
    # Microphone input
    # ------------------------------------------------------------------

    def _on_audio_threadsafe(self, pcm_bytes: bytes) -> None:
        """PortAudio thread entry point."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.on_microphone_block, pcm_bytes)

    def on_microphone_block(self, pcm_bytes: bytes) -> None:
        """Handle one captured block on the event loop thread."""
        runtime = self._relay.runtime
        source = self._connection.connection_id

        runtime.submit(AudioAppended(
            event_type=EventType.AUDIO_APPENDED, ts_ms=now_ms(), source=source,
            pcm_bytes=pcm_bytes,
        ))
        if self._detector.observe(pcm_bytes):
            log_event({
                "event_type": "SILENCE_DETECTED",
                "session_id": self._relay.session_id,
                "source": source,
            })
            runtime.submit(SilenceDetected(
                event_type=EventType.SILENCE_DETECTED, ts_ms=now_ms(), source=source,
            ))
