# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import threading
from typing import Any, Callable

import pytest

import session.local_audio as local_audio_mod
from adapters.realtime.base import ClosedCallback, RealtimeBackend
from audio.pcm import samples_to_pcm16le
from audio.silence import SilenceDetector
from orchestrator.events import (
    AudioAppended,
    ConnectionAttached,
    ConnectionDetached,
    Event,
    SilenceDetected,
)
from session.errors import ConnectFailure, DeviceError
from session.local_audio import LocalAudioBridge, LocalAudioConnection
from session.relay_session import RelaySession
from session.upstream_state import UpstreamState
from spec import LOCAL_AUDIO_CONNECTION_ID


SPEECH = samples_to_pcm16le([8000, -8000] * 50)
QUIET = samples_to_pcm16le([0] * 100)


class RecordingRuntime:
    def __init__(self) -> None:
        self.events: list[Event] = []

    def submit(self, event: Event) -> None:
        self.events.append(event)


class FakeUpstream:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.connect_calls = 0

    async def ensure_connected(self) -> None:
        self.connect_calls += 1
        if self.fail:
            raise ConnectFailure("refused")


class FakeRelay:
    def __init__(self, *, fail_connect: bool = False) -> None:
        self.session_id = "test"
        self.runtime = RecordingRuntime()
        self.upstream = FakeUpstream(fail=fail_connect)


class FailingBackend(RealtimeBackend):
    def __init__(self) -> None:
        self.connect_calls = 0

    async def connect(self, *, on_closed: ClosedCallback | None = None) -> None:
        self.connect_calls += 1
        raise OSError("refused")

    async def send_audio(self, pcm_bytes: bytes) -> None:
        pass

    async def create_response(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass


class FakeSpeaker:
    def __init__(self, *, errors: list[Exception] | None = None) -> None:
        self.errors = list(errors or [])
        self.played: list[bytes] = []
        self.calls = 0
        self.done = threading.Event()

    def play(self, pcm_bytes: bytes) -> None:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        self.played.append(pcm_bytes)
        self.done.set()


class FakeMicrophone:
    def __init__(self, on_audio: Callable[[bytes], None], *, fail: bool = False) -> None:
        self.on_audio = on_audio
        self.fail = fail
        self.started = False
        self.stopped = False

    def start(self) -> None:
        if self.fail:
            raise DeviceError("no input device")
        self.started = True

    def stop(self) -> None:
        self.stopped = True


@pytest.fixture
def emitted(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(local_audio_mod, "log_event", events.append)
    return events


async def wait_until(predicate: Callable[[], bool]) -> None:
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0.01)


def recording_mic_factory(mics: list[FakeMicrophone]) -> Callable[[Callable[[bytes], None]], FakeMicrophone]:
    def factory(on_audio: Callable[[bytes], None]) -> FakeMicrophone:
        mics.append(FakeMicrophone(on_audio))
        return mics[-1]
    return factory


# ---------------------------------------------------------------------
# LocalAudioConnection
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_audio_responses_are_played(emitted: list[dict[str, Any]]):
    speaker = FakeSpeaker()
    conn = LocalAudioConnection(speaker=speaker)  # type: ignore[arg-type]
    await conn.start()

    await conn.send_json({"type": "audioResponse", "item_id": "i1", "samples": [1, -1]})
    await wait_until(speaker.done.is_set)

    assert speaker.played == [b"\x01\x00\xff\xff"]
    await conn.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [DeviceError("no output device"), RuntimeError("driver crashed")])
async def test_playback_survives_speaker_errors(emitted: list[dict[str, Any]], error: Exception):
    speaker = FakeSpeaker(errors=[error])
    conn = LocalAudioConnection(speaker=speaker)  # type: ignore[arg-type]
    await conn.start()

    await conn.send_json({"type": "audioResponse", "item_id": "i1", "samples": [1]})
    await conn.send_json({"type": "audioResponse", "item_id": "i2", "samples": [2]})
    await wait_until(speaker.done.is_set)

    assert speaker.calls == 2
    assert speaker.played == [b"\x02\x00"]
    failures = [e for e in emitted if e["event_type"] == "SPEAKER_ERROR"]
    assert len(failures) == 1
    assert failures[0]["exception"] == type(error).__name__
    await conn.stop()


@pytest.mark.asyncio
async def test_other_messages_are_logged(emitted: list[dict[str, Any]]):
    conn = LocalAudioConnection(speaker=FakeSpeaker())  # type: ignore[arg-type]

    await conn.send_json({"type": "error", "message": "nope"})

    assert emitted[-1]["event_type"] == "LOCAL_AUDIO_MESSAGE"
    assert conn.connection_id == LOCAL_AUDIO_CONNECTION_ID


# ---------------------------------------------------------------------
# LocalAudioBridge
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_bridge_attaches_and_streams(emitted: list[dict[str, Any]]):
    relay = FakeRelay()
    mics: list[FakeMicrophone] = []

    bridge = LocalAudioBridge(
        relay=relay,  # type: ignore[arg-type]
        speaker=FakeSpeaker(),  # type: ignore[arg-type]
        microphone_factory=recording_mic_factory(mics),  # type: ignore[arg-type]
        detector=SilenceDetector(threshold=0.01, blocks_required=2),
    )

    assert await bridge.start() is True
    assert relay.upstream.connect_calls == 1
    assert mics[0].started
    assert [type(e) for e in relay.runtime.events] == [ConnectionAttached]

    for block in [SPEECH, QUIET, QUIET]:
        bridge.on_microphone_block(block)

    kinds = [type(e) for e in relay.runtime.events[1:]]
    assert kinds == [AudioAppended, AudioAppended, AudioAppended, SilenceDetected]
    assert all(
        getattr(e, "source") == LOCAL_AUDIO_CONNECTION_ID for e in relay.runtime.events[1:]
    )

    await bridge.stop()
    assert mics[0].stopped
    assert isinstance(relay.runtime.events[-1], ConnectionDetached)


@pytest.mark.asyncio
async def test_mic_thread_hands_off_to_loop(emitted: list[dict[str, Any]]):
    relay = FakeRelay()
    mics: list[FakeMicrophone] = []

    bridge = LocalAudioBridge(
        relay=relay,  # type: ignore[arg-type]
        speaker=FakeSpeaker(),  # type: ignore[arg-type]
        microphone_factory=recording_mic_factory(mics),  # type: ignore[arg-type]
    )
    await bridge.start()

    thread = threading.Thread(target=mics[0].on_audio, args=(QUIET,))
    thread.start()
    thread.join()
    await asyncio.sleep(0.01)

    assert isinstance(relay.runtime.events[-1], AudioAppended)
    await bridge.stop()


@pytest.mark.asyncio
async def test_mic_failure_stops_bridge(emitted: list[dict[str, Any]]):
    relay = FakeRelay()

    bridge = LocalAudioBridge(
        relay=relay,  # type: ignore[arg-type]
        speaker=FakeSpeaker(),  # type: ignore[arg-type]
        microphone_factory=lambda on_audio: FakeMicrophone(on_audio, fail=True),  # type: ignore[arg-type,return-value]
    )

    assert await bridge.start() is False
    assert any(e["event_type"] == "MICROPHONE_ERROR" for e in emitted)
    assert isinstance(relay.runtime.events[-1], ConnectionDetached)


@pytest.mark.asyncio
async def test_connect_failure_is_not_retried_and_mic_stays_closed(emitted: list[dict[str, Any]]):
    backend = FailingBackend()
    relay = RelaySession(backend_factory=lambda emit, session_id: backend)
    await relay.start()
    mics: list[FakeMicrophone] = []

    bridge = LocalAudioBridge(
        relay=relay,
        speaker=FakeSpeaker(),  # type: ignore[arg-type]
        microphone_factory=recording_mic_factory(mics),  # type: ignore[arg-type]
    )

    assert await bridge.start() is False
    await relay.runtime.join()

    assert backend.connect_calls == 1
    assert mics == []
    assert len(relay.registry) == 0
    assert relay.upstream.state is UpstreamState.DISCONNECTED
    assert emitted[-1]["event_type"] == "LOCAL_AUDIO_CONNECT_FAILED"

    # stop() after a failed start submits nothing
    await bridge.stop()
    await relay.runtime.join()
    assert backend.connect_calls == 1
    await relay.shutdown()
