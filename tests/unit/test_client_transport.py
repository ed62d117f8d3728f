# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import httpx
import pytest

from playback.transport import SseClientTransport, SseEventParser, WebSocketClientTransport


# ---------------------------------------------------------------------
# SSE parsing
# ---------------------------------------------------------------------

def test_parser_emits_data_on_blank_line():
    parser = SseEventParser()

    assert parser.feed_line('data: {"cmd":"STOP"}') is None
    assert parser.feed_line("") == '{"cmd":"STOP"}'


def test_parser_ignores_comments_and_other_fields():
    parser = SseEventParser()

    assert parser.feed_line(": ping - 2024-01-01") is None
    assert parser.feed_line("") is None
    assert parser.feed_line("event: message") is None
    assert parser.feed_line("data:x") is None
    assert parser.feed_line("id: 7") is None
    assert parser.feed_line("") == "x"


def test_parser_joins_multiline_data():
    parser = SseEventParser()
    parser.feed_line("data: a")
    parser.feed_line("data: b")

    assert parser.feed_line("") == "a\nb"


# ---------------------------------------------------------------------
# SSE transport
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sse_transport_delivers_frames_then_reconnects():
    body = (
        'data: {"cmd":"STATUS","status":"connected"}\n\n'
        ": ping\n\n"
        'data: {"cmd":"STOP"}\n\n'
    )
    requests: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

    frames: list[str] = []
    lifecycle: list[str] = []
    transport: SseClientTransport

    def on_lost() -> None:
        lifecycle.append("lost")
        if len(requests) >= 2:
            transport.stop()

    transport = SseClientTransport(
        "http://bridge:8000",
        on_frame=frames.append,
        on_open=lambda: lifecycle.append("open"),
        on_lost=on_lost,
        reconnect_delay_s=0.01,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    await asyncio.wait_for(transport.run(), timeout=2.0)

    assert requests == ["http://bridge:8000/api/events"] * 2
    assert frames == ['{"cmd":"STATUS","status":"connected"}', '{"cmd":"STOP"}'] * 2
    assert lifecycle == ["open", "lost", "open", "lost"]


@pytest.mark.asyncio
async def test_sse_transport_reports_loss_on_http_error():
    lost = asyncio.Event()
    opened: list[bool] = []

    transport = SseClientTransport(
        "http://bridge:8000",
        on_frame=lambda frame: None,
        on_open=lambda: opened.append(True),
        on_lost=lost.set,
        reconnect_delay_s=0.01,
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503))),
    )

    task = asyncio.create_task(transport.run())
    await asyncio.wait_for(lost.wait(), timeout=2.0)
    transport.stop()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert opened == []


def test_websocket_url_is_derived_from_http_url():
    def noop() -> None:
        return None

    plain = WebSocketClientTransport("http://host:8000/", on_frame=print, on_open=noop, on_lost=noop)
    secure = WebSocketClientTransport("https://host", on_frame=print, on_open=noop, on_lost=noop)

    assert plain.url == "ws://host:8000/api/socket"
    assert secure.url == "wss://host/api/socket"
