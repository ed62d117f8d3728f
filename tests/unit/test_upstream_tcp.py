# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import socket

import pytest

from bridge.upstream import TcpUpstream, UpstreamConnectionError


class Recorder:
    def __init__(self) -> None:
        self.data = bytearray()
        self.errors: list[Exception] = []
        self.closed = asyncio.Event()

    def on_data(self, data: bytes) -> None:
        self.data += data

    def on_error(self, exc: Exception) -> None:
        self.errors.append(exc)

    def on_close(self) -> None:
        self.closed.set()


def make_upstream(port: int, rec: Recorder) -> TcpUpstream:
    return TcpUpstream(
        host="127.0.0.1",
        port=port,
        on_data=rec.on_data,
        on_error=rec.on_error,
        on_close=rec.on_close,
        connect_timeout_s=2.0,
    )


def unused_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.mark.asyncio
async def test_reads_until_peer_closes():
    async def handler(_reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writer.write(b'{"cmd":"STOP"}\n{"cmd":')
        await writer.drain()
        writer.write(b'"STOP"}\n')
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    async with server:
        rec = Recorder()
        upstream = make_upstream(port, rec)
        await upstream.open()
        assert upstream.is_open

        await asyncio.wait_for(rec.closed.wait(), timeout=2.0)

    assert bytes(rec.data) == b'{"cmd":"STOP"}\n{"cmd":"STOP"}\n'
    assert rec.errors == []
    assert not upstream.is_open


@pytest.mark.asyncio
async def test_connect_failure_raises():
    rec = Recorder()
    upstream = make_upstream(unused_port(), rec)

    with pytest.raises(UpstreamConnectionError) as info:
        await upstream.open()

    assert "127.0.0.1" in str(info.value)
    assert not rec.closed.is_set()


@pytest.mark.asyncio
async def test_write_reaches_peer_and_destroy_is_silent():
    received: asyncio.Queue[bytes] = asyncio.Queue()
    release = asyncio.Event()

    async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await received.put(await reader.readline())
        await release.wait()
        writer.close()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    async with server:
        rec = Recorder()
        upstream = make_upstream(port, rec)
        await upstream.open()

        await upstream.write(b"hello\n")
        assert await asyncio.wait_for(received.get(), timeout=2.0) == b"hello\n"

        upstream.destroy()
        upstream.destroy()
        await asyncio.sleep(0.05)
        release.set()

    assert not upstream.is_open
    assert not rec.closed.is_set()
    with pytest.raises(UpstreamConnectionError):
        await upstream.write(b"late\n")
