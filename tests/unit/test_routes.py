# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sse_starlette.sse import AppStatus

from bridge.subscribers import WebSocketAdapter
from bridge.upstream import UpstreamConnectionError
from config import AppConfig
from server.app import create_app
from server.routes import resolve_asset_path


CONNECTED = '{"cmd":"STATUS","status":"connected"}'
DISCONNECTED = '{"cmd":"STATUS","status":"disconnected"}'


class FakeUpstream:
    def __init__(self, *, on_data, on_error, on_close, fail: bool) -> None:
        self.on_data = on_data
        self.on_error = on_error
        self.on_close = on_close
        self.fail = fail
        self.opened = False
        self.written: list[bytes] = []

    @property
    def is_open(self) -> bool:
        return self.opened

    async def open(self) -> None:
        if self.fail:
            raise UpstreamConnectionError("connect localhost:12345 failed: refused")
        self.opened = True

    async def write(self, data: bytes) -> None:
        self.written.append(data)

    def destroy(self) -> None:
        self.opened = False


class FakeFactory:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.links: list[FakeUpstream] = []

    def __call__(self, *, on_data, on_error, on_close) -> FakeUpstream:
        link = FakeUpstream(on_data=on_data, on_error=on_error, on_close=on_close, fail=self.fail)
        self.links.append(link)
        return link


def make_client(tmp_path: Path, factory: FakeFactory, **overrides) -> TestClient:
    config = AppConfig(music_dir=str(tmp_path), **overrides)
    return TestClient(create_app(config=config, upstream_factory=factory))


@pytest.fixture(autouse=True)
def fresh_sse_exit_event(monkeypatch: pytest.MonkeyPatch) -> None:
    # sse-starlette keeps a module-level exit event bound to the first loop
    monkeypatch.setattr(AppStatus, "should_exit_event", None, raising=False)


class EventStreamCall:
    """One GET /api/events driven straight through the ASGI app."""

    def __init__(self, app: FastAPI) -> None:
        self.app = app
        self.messages: list[dict[str, Any]] = []
        self._request_sent = False
        self._disconnect = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.3"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/api/events",
            "raw_path": b"/api/events",
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"testserver"), (b"accept", b"text/event-stream")],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
            "state": {},
        }
        self._task = asyncio.create_task(self.app(scope, self._receive, self._send))

    async def _receive(self) -> dict[str, Any]:
        if not self._request_sent:
            self._request_sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await self._disconnect.wait()
        return {"type": "http.disconnect"}

    async def _send(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def body(self) -> str:
        chunks = [m.get("body", b"") for m in self.messages if m["type"] == "http.response.body"]
        return b"".join(chunks).decode("utf-8")

    async def wait_for_body(self, text: str) -> None:
        async def poll() -> None:
            while text not in self.body:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(poll(), timeout=2.0)

    async def abort(self) -> None:
        assert self._task is not None
        self._disconnect.set()
        await asyncio.wait_for(self._task, timeout=2.0)


async def wait_for_subscribers(app: FastAPI, count: int) -> None:
    async def poll() -> None:
        while len(app.state.bridge.registry) != count:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=2.0)


# ---------------------------------------------------------------------
# Health / diagnostics
# ---------------------------------------------------------------------

def test_health(tmp_path: Path):
    with make_client(tmp_path, FakeFactory()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_lifespan_opens_shared_upstream_and_reports_it(tmp_path: Path):
    factory = FakeFactory()

    with make_client(tmp_path, factory) as client:
        snapshot = client.get("/api/diagnostics").json()

    assert len(factory.links) == 1
    assert snapshot["mode"] == "shared"
    assert snapshot["subscriber_count"] == 0
    assert snapshot["channels"][0]["upstream_open"] is True


# ---------------------------------------------------------------------
# Asset file server
# ---------------------------------------------------------------------

def test_audio_file_is_served_as_mpeg(tmp_path: Path):
    (tmp_path / "song.mp3").write_bytes(b"ID3fake")

    with make_client(tmp_path, FakeFactory()) as client:
        response = client.get("/api/audio/song.mp3")

    assert response.status_code == 200
    assert response.content == b"ID3fake"
    assert response.headers["content-type"] == "audio/mpeg"


def test_missing_audio_file_is_404(tmp_path: Path):
    with make_client(tmp_path, FakeFactory()) as client:
        response = client.get("/api/audio/nope.mp3")

    assert response.status_code == 404
    assert response.text == "File not found"


def test_asset_path_cannot_escape_music_dir(tmp_path: Path):
    music = tmp_path / "music"
    music.mkdir()
    (music / "ok.mp3").write_bytes(b"x")
    (tmp_path / "secret.txt").write_bytes(b"x")

    assert resolve_asset_path(str(music), "ok.mp3") == (music / "ok.mp3").resolve()
    assert resolve_asset_path(str(music), "../secret.txt") is None
    assert resolve_asset_path(str(music), ".") is None
    assert resolve_asset_path(str(music), "missing.mp3") is None


# ---------------------------------------------------------------------
# Push stream
# ---------------------------------------------------------------------

def test_event_stream_reports_unavailable_upstream_and_ends(tmp_path: Path):
    factory = FakeFactory(fail=True)

    with make_client(tmp_path, factory) as client:
        response = client.get("/api/events")
        snapshot = client.get("/api/diagnostics").json()

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    body = response.text
    assert 'data: {"cmd":"ERROR","error":"connect localhost:12345 failed: refused"}\n\n' in body
    assert body.rstrip("\n").endswith(f"data: {DISCONNECTED}")
    assert snapshot["subscriber_count"] == 0


@pytest.mark.asyncio
async def test_event_stream_delivers_upstream_frames(tmp_path: Path):
    factory = FakeFactory()
    app = create_app(config=AppConfig(music_dir=str(tmp_path)), upstream_factory=factory)

    async with app.router.lifespan_context(app):
        call = EventStreamCall(app)
        call.start()
        await wait_for_subscribers(app, 1)

        factory.links[0].on_data(b'{"cmd":"PLAY","filename":"a.mp3","startTime":1}\n{"cmd":"ST')
        factory.links[0].on_data(b'OP"}\n')
        await call.wait_for_body('data: {"cmd":"STOP"}\n\n')

        await call.abort()

    assert call.messages[0]["type"] == "http.response.start"
    assert call.messages[0]["status"] == 200
    assert call.body == (
        'data: {"cmd":"PLAY","filename":"a.mp3","startTime":1}\n\n'
        'data: {"cmd":"STOP"}\n\n'
    )


@pytest.mark.asyncio
async def test_two_event_streams_receive_same_frames_in_order(tmp_path: Path):
    factory = FakeFactory()
    app = create_app(config=AppConfig(music_dir=str(tmp_path)), upstream_factory=factory)

    async with app.router.lifespan_context(app):
        first, second = EventStreamCall(app), EventStreamCall(app)
        first.start()
        second.start()
        await wait_for_subscribers(app, 2)

        for i in range(5):
            factory.links[0].on_data(f'{{"cmd":"NOOP","n":{i}}}\n'.encode())
        await first.wait_for_body('"n":4}')
        await second.wait_for_body('"n":4}')

        await first.abort()
        await second.abort()

    expected = "".join(f'data: {{"cmd":"NOOP","n":{i}}}\n\n' for i in range(5))
    assert first.body == expected
    assert second.body == expected
    assert len(factory.links) == 1


@pytest.mark.asyncio
async def test_event_stream_abort_unsubscribes(tmp_path: Path, events: list[dict[str, Any]]):
    factory = FakeFactory()
    app = create_app(config=AppConfig(music_dir=str(tmp_path)), upstream_factory=factory)

    async with app.router.lifespan_context(app):
        call = EventStreamCall(app)
        call.start()
        await wait_for_subscribers(app, 1)

        await call.abort()

        assert app.state.bridge.snapshot()["subscriber_count"] == 0
        # The shared upstream outlives its subscribers
        assert factory.links[0].is_open

        # Frames after the abort reach nobody and raise nothing
        factory.links[0].on_data(b'{"cmd":"STOP"}\n')

    removed = [e for e in events if e["event_type"] == "SUBSCRIBER_REMOVED"]
    assert removed[0]["reason"] == "client_disconnect"
    assert removed[0]["transport"] == "sse"


# ---------------------------------------------------------------------
# Bidirectional stream
# ---------------------------------------------------------------------

def test_websocket_receives_frames_and_forwards_text(tmp_path: Path):
    factory = FakeFactory()

    with make_client(tmp_path, factory, upstream_mode="per_subscriber") as client:
        with client.websocket_connect("/api/socket") as ws:
            assert ws.receive_text() == CONNECTED

            link = factory.links[0]
            client.portal.call(link.on_data, b'{"cmd":"STOP"}\n{"cmd":"PLAY","filename":"a","startTime":1}\n')

            assert ws.receive_text() == '{"cmd":"STOP"}'
            assert ws.receive_text() == '{"cmd":"PLAY","filename":"a","startTime":1}'

            ws.send_text('{"cmd":"HELLO"}')
            snapshot = client.get("/api/diagnostics").json()
            assert snapshot["subscriber_count"] == 1

        assert link.written == [b'{"cmd":"HELLO"}\n']
        assert client.get("/api/diagnostics").json()["subscriber_count"] == 0


def test_websocket_closed_when_upstream_closes(tmp_path: Path):
    factory = FakeFactory()

    with make_client(tmp_path, factory, upstream_mode="per_subscriber") as client:
        with client.websocket_connect("/api/socket") as ws:
            assert ws.receive_text() == CONNECTED

            client.portal.call(factory.links[0].on_close)

            assert ws.receive_text() == DISCONNECTED
            message = ws.receive()
            assert message["type"] == "websocket.close"


def test_websocket_writer_failure_is_collected(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    events: list[dict[str, Any]],
):
    async def broken_pump(self: WebSocketAdapter) -> None:
        raise RuntimeError("writer broke")

    monkeypatch.setattr(WebSocketAdapter, "pump", broken_pump)

    with make_client(tmp_path, FakeFactory()) as client:
        with client.websocket_connect("/api/socket"):
            pass
        snapshot = client.get("/api/diagnostics").json()

    failed = [e for e in events if e["event_type"] == "WS_PUMP_FAILED"]
    assert len(failed) == 1
    assert failed[0]["exception"] == "RuntimeError"
    assert failed[0]["message"] == "writer broke"
    assert snapshot["subscriber_count"] == 0


@pytest.mark.parametrize("mode", ["shared", "per_subscriber"])
def test_websocket_disconnect_unsubscribes(tmp_path: Path, mode: str):
    factory = FakeFactory()

    with make_client(tmp_path, factory, upstream_mode=mode) as client:
        with client.websocket_connect("/api/socket"):
            pass
        snapshot = client.get("/api/diagnostics").json()

    assert snapshot["subscriber_count"] == 0
