# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any

import pytest

import session.broadcaster as broadcaster_mod
from adapters.realtime.base import ClosedCallback, RealtimeBackend
from audio.pcm import samples_to_pcm16le
from orchestrator.events import EventType, ResponseReceived
from session.broadcaster import SessionBroadcaster, validate_audio_payload
from session.errors import InvalidAudioPayload
from session.registry import ConnectionRegistry
from session.upstream import UpstreamSession
from spec import ERR_INVALID_AUDIO


class NullBackend(RealtimeBackend):
    async def connect(self, *, on_closed: ClosedCallback | None = None) -> None:
        pass

    async def send_audio(self, pcm_bytes: bytes) -> None:
        pass

    async def create_response(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass


class FakeConnection:
    def __init__(self, connection_id: str, *, fail: bool = False) -> None:
        self.connection_id = connection_id
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.sent.append(message)


@pytest.fixture
def emitted(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(broadcaster_mod, "log_event", events.append)
    return events


async def make_broadcaster(*connections: FakeConnection) -> SessionBroadcaster:
    upstream = UpstreamSession(backend=NullBackend(), session_id="s")
    registry = ConnectionRegistry(upstream=upstream, session_id="s")
    for conn in connections:
        await registry.attach(conn)
    return SessionBroadcaster(registry=registry, session_id="s")


def make_response(
    *,
    pcm: bytes = samples_to_pcm16le([100, -100, 7]),
    role: str = "assistant",
    completed: bool = True,
) -> ResponseReceived:
    return ResponseReceived(
        event_type=EventType.RESPONSE_RECEIVED,
        ts_ms=0,
        item_id="item_1",
        role=role,
        completed=completed,
        pcm_bytes=pcm,
    )


@pytest.mark.asyncio
async def test_one_failing_connection_does_not_block_others(emitted: list[dict[str, Any]]):
    a, b, c = FakeConnection("A"), FakeConnection("B", fail=True), FakeConnection("C")
    broadcaster = await make_broadcaster(a, b, c)

    report = await broadcaster.broadcast_response(make_response())

    expected = {"type": "audioResponse", "item_id": "item_1", "samples": [100, -100, 7]}
    assert a.sent == [expected]
    assert c.sent == [expected]
    assert report.delivered == ("A", "C")
    assert [cid for cid, _ in report.failed] == ["B"]
    assert report.rejected is None

    failures = [e for e in emitted if e["event_type"] == "BROADCAST_DELIVERY_FAILED"]
    assert len(failures) == 1
    assert failures[0]["connection_id"] == "B"


@pytest.mark.asyncio
async def test_empty_registry_is_a_noop(emitted: list[dict[str, Any]]):
    broadcaster = await make_broadcaster()

    report = await broadcaster.broadcast_response(make_response())

    assert report.delivered == ()
    assert report.failed == ()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        make_response(pcm=b""),
        make_response(pcm=b"\x01\x02\x03"),
        make_response(completed=False),
    ],
)
async def test_invalid_payload_becomes_error_for_everyone(
    emitted: list[dict[str, Any]],
    response: ResponseReceived,
):
    a, b = FakeConnection("A"), FakeConnection("B")
    broadcaster = await make_broadcaster(a, b)

    report = await broadcaster.broadcast_response(response)

    error = {"type": "error", "message": ERR_INVALID_AUDIO}
    assert a.sent == [error]
    assert b.sent == [error]
    assert report.rejected is not None
    assert any(e["event_type"] == "AUDIO_PAYLOAD_INVALID" for e in emitted)


@pytest.mark.asyncio
async def test_non_assistant_items_are_ignored(emitted: list[dict[str, Any]]):
    a = FakeConnection("A")
    broadcaster = await make_broadcaster(a)

    report = await broadcaster.broadcast_response(make_response(role="user"))

    assert a.sent == []
    assert report.rejected is not None
    assert emitted[-1]["event_type"] == "RESPONSE_IGNORED"


def test_validate_audio_payload():
    pcm = samples_to_pcm16le([1, 2])
    assert validate_audio_payload(make_response(pcm=pcm)) == pcm

    with pytest.raises(InvalidAudioPayload):
        validate_audio_payload(make_response(pcm=b"\x00"))
