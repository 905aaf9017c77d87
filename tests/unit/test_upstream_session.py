# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest

import session.upstream as upstream_mod
from adapters.realtime.base import ClosedCallback, RealtimeBackend
from audio.frames import PCMFrame
from session.errors import ConnectFailure, ConnectTimeout, NotConnectedError
from session.upstream import UpstreamSession
from session.upstream_state import UpstreamState


class FakeBackend(RealtimeBackend):
    def __init__(self) -> None:
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.sent: list[bytes] = []
        self.responses = 0
        self.connect_gate: asyncio.Event | None = None
        self.connect_error: Exception | None = None
        self.send_error: Exception | None = None
        self.on_closed: ClosedCallback | None = None

    async def connect(self, *, on_closed: ClosedCallback | None = None) -> None:
        self.connect_calls += 1
        self.on_closed = on_closed
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error

    async def send_audio(self, pcm_bytes: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(pcm_bytes)

    async def create_response(self) -> None:
        self.responses += 1

    async def disconnect(self) -> None:
        self.disconnect_calls += 1


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(upstream_mod, "log_event", emitted.append)
    return emitted


def make_frame(seq: int = 1) -> PCMFrame:
    return PCMFrame(source="a", sequence_num=seq, pcm_bytes=b"\x00\x00" * 4)


# ---------------------------------------------------------------------
# ensure_connected
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ensure_connected_is_idempotent():
    backend = FakeBackend()
    upstream = UpstreamSession(backend=backend, session_id="s")

    await upstream.ensure_connected()
    await upstream.ensure_connected()

    assert upstream.state is UpstreamState.CONNECTED
    assert backend.connect_calls == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_attempt():
    backend = FakeBackend()
    backend.connect_gate = asyncio.Event()
    upstream = UpstreamSession(backend=backend, session_id="s")

    waiters = [asyncio.create_task(upstream.ensure_connected()) for _ in range(3)]
    await asyncio.sleep(0)
    assert upstream.state is UpstreamState.CONNECTING

    backend.connect_gate.set()
    await asyncio.gather(*waiters)

    assert backend.connect_calls == 1
    assert upstream.is_connected


@pytest.mark.asyncio
async def test_connect_failure_returns_to_disconnected():
    backend = FakeBackend()
    backend.connect_error = OSError("refused")
    upstream = UpstreamSession(backend=backend, session_id="s")

    with pytest.raises(ConnectFailure):
        await upstream.ensure_connected()

    assert upstream.state is UpstreamState.DISCONNECTED

    # Next call makes a fresh attempt; nothing was retried in between
    backend.connect_error = None
    await upstream.ensure_connected()
    assert backend.connect_calls == 2


@pytest.mark.asyncio
async def test_connect_timeout():
    backend = FakeBackend()
    backend.connect_gate = asyncio.Event()  # never set
    upstream = UpstreamSession(backend=backend, session_id="s", connect_timeout_s=0.01)

    with pytest.raises(ConnectTimeout):
        await upstream.ensure_connected()

    assert upstream.state is UpstreamState.DISCONNECTED


@pytest.mark.asyncio
async def test_state_listeners_see_every_transition():
    backend = FakeBackend()
    upstream = UpstreamSession(backend=backend, session_id="s")
    seen: list[UpstreamState] = []
    upstream.add_state_listener(seen.append)

    await upstream.ensure_connected()
    await upstream.disconnect()

    assert seen == [
        UpstreamState.CONNECTING,
        UpstreamState.CONNECTED,
        UpstreamState.DISCONNECTED,
    ]


# ---------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_operations_require_connected():
    backend = FakeBackend()
    upstream = UpstreamSession(backend=backend, session_id="s")

    with pytest.raises(NotConnectedError):
        await upstream.send_frame(make_frame())
    with pytest.raises(NotConnectedError):
        await upstream.request_response()

    # Never auto-connects
    assert backend.connect_calls == 0


@pytest.mark.asyncio
async def test_send_frame_forwards_bytes_in_order():
    backend = FakeBackend()
    upstream = UpstreamSession(backend=backend, session_id="s")
    await upstream.ensure_connected()

    await upstream.send_frame(PCMFrame(source="a", sequence_num=1, pcm_bytes=b"\x01\x00"))
    await upstream.send_frame(PCMFrame(source="a", sequence_num=2, pcm_bytes=b"\x02\x00"))
    await upstream.request_response()

    assert backend.sent == [b"\x01\x00", b"\x02\x00"]
    assert backend.responses == 1


@pytest.mark.asyncio
async def test_send_failure_marks_connection_lost():
    backend = FakeBackend()
    upstream = UpstreamSession(backend=backend, session_id="s")
    await upstream.ensure_connected()

    backend.send_error = ConnectionError("socket gone")
    with pytest.raises(NotConnectedError):
        await upstream.send_frame(make_frame())

    assert upstream.state is UpstreamState.DISCONNECTED
    assert backend.disconnect_calls == 1
    assert backend.connect_calls == 1


# ---------------------------------------------------------------------
# disconnect / remote close
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_disconnect_is_idempotent():
    backend = FakeBackend()
    upstream = UpstreamSession(backend=backend, session_id="s")

    await upstream.disconnect()
    await upstream.ensure_connected()
    await upstream.disconnect()
    await upstream.disconnect()

    assert upstream.state is UpstreamState.DISCONNECTED
    assert backend.disconnect_calls == 1


@pytest.mark.asyncio
async def test_remote_close_does_not_reconnect(quiet_logs: list[dict[str, Any]]):
    backend = FakeBackend()
    upstream = UpstreamSession(backend=backend, session_id="s")
    await upstream.ensure_connected()

    assert backend.on_closed is not None
    backend.on_closed("closed: 1011")

    assert upstream.state is UpstreamState.DISCONNECTED
    assert backend.connect_calls == 1
    assert any(e["event_type"] == "UPSTREAM_CLOSED_BY_REMOTE" for e in quiet_logs)


def test_rejects_non_positive_timeout():
    with pytest.raises(ValueError):
        UpstreamSession(backend=FakeBackend(), session_id="s", connect_timeout_s=0)
