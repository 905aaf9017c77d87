"""
Host microphone and speaker.

Thin wrappers over sounddevice raw int16 streams at the relay's format.
PortAudio problems (library missing, no device, stream errors) surface as
DeviceError; nothing here retries.

sounddevice is imported on first use, because importing it fails outright
on hosts without PortAudio and the relay server must run there too.
"""

from __future__ import annotations

from typing import Any, Callable

from observability.logger import log_event
from session.errors import DeviceError
from spec import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ, AUDIO_SAMPLES_PER_FRAME

_DTYPE = "int16"


def _load_sounddevice() -> Any:
    try:
        import sounddevice as sd  # pylint: disable=import-outside-toplevel
    except (ImportError, OSError) as e:
        raise DeviceError(f"sounddevice unavailable: {e}") from e
    return sd


class Microphone:
    """
    Capture raw PCM16 blocks from an input device.

    on_audio is called from the PortAudio thread with one block of bytes;
    it must hand the data off without blocking (call_soon_threadsafe).
    """

    def __init__(
        self,
        *,
        on_audio: Callable[[bytes], None],
        sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
        channels: int = AUDIO_CHANNELS,
        block_samples: int = AUDIO_SAMPLES_PER_FRAME,
        device: int | str | None = None,
    ) -> None:
        self._on_audio = on_audio
        self._sample_rate_hz = sample_rate_hz
        self._channels = channels
        self._block_samples = block_samples
        self._device = device
        self._stream: Any = None

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream is not None:
            return
        sd = _load_sounddevice()
        try:
            stream = sd.RawInputStream(
                samplerate=self._sample_rate_hz,
                channels=self._channels,
                dtype=_DTYPE,
                blocksize=self._block_samples,
                device=self._device,
                callback=self._callback,
            )
        except sd.PortAudioError as e:
            raise DeviceError(f"microphone open failed: {e}") from e
        try:
            stream.start()
        except sd.PortAudioError as e:
            stream.close()
            raise DeviceError(f"microphone start failed: {e}") from e
        self._stream = stream
        log_event({
            "event_type": "MICROPHONE_STARTED",
            "sample_rate_hz": self._sample_rate_hz,
            "channels": self._channels,
            "block_samples": self._block_samples,
        })

    def stop(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        sd = _load_sounddevice()
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            raise DeviceError(f"microphone stop failed: {e}") from e
        log_event({"event_type": "MICROPHONE_STOPPED"})

    def _callback(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        if status:
            log_event({"event_type": "MICROPHONE_STATUS", "status": str(status)})
        self._on_audio(bytes(indata))


class Speaker:
    """
    Play PCM16 buffers on an output device.

    Each play() opens a fresh output stream, writes the buffer, and closes
    the stream once it has drained, so the next buffer always starts on a
    clean stream. play() blocks; run it off the event loop.
    """

    def __init__(
        self,
        *,
        sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
        channels: int = AUDIO_CHANNELS,
        device: int | str | None = None,
    ) -> None:
        self._sample_rate_hz = sample_rate_hz
        self._channels = channels
        self._device = device

    def play(self, pcm_bytes: bytes) -> None:
        if not pcm_bytes:
            return
        sd = _load_sounddevice()
        try:
            with sd.RawOutputStream(
                samplerate=self._sample_rate_hz,
                channels=self._channels,
                dtype=_DTYPE,
                device=self._device,
            ) as stream:
                stream.write(pcm_bytes)
        except sd.PortAudioError as e:
            raise DeviceError(f"speaker playback failed: {e}") from e
