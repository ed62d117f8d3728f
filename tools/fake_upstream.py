"""
Stand-in upstream command source for local runs.

Listens on UPSTREAM_PORT and, for every connected bridge, reads lines
from stdin:

    play <filename> [lead_s]   PLAY with startTime = now + lead_s (default 0)
    stop                       STOP
    raw <text>                 send text verbatim (malformed-frame testing)

Requires the project installed (pip install -e .):
    python tools/fake_upstream.py --port 12345
"""

import argparse
import asyncio
import sys
import time

from constants import UPSTREAM_PORT_DEFAULT, seconds_to_ns
from protocol.commands import play_frame, stop_frame


_writers: set[asyncio.StreamWriter] = set()


async def _on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    peer = writer.get_extra_info("peername")
    print(f"bridge connected: {peer}")
    _writers.add(writer)
    try:
        while True:
            line = await reader.readline()
            if not line:
                break
            print(f"from bridge: {line.decode('utf-8', errors='replace').rstrip()}")
    finally:
        _writers.discard(writer)
        writer.close()
        print(f"bridge disconnected: {peer}")


def _frame_for(line: str) -> str | None:
    parts = line.split()
    if not parts:
        return None
    if parts[0] == "play" and len(parts) >= 2:
        lead_s = float(parts[2]) if len(parts) > 2 else 0.0
        return play_frame(asset_id=parts[1], start_time_ns=time.time_ns() + seconds_to_ns(lead_s))
    if parts[0] == "stop":
        return stop_frame()
    if parts[0] == "raw":
        return line.partition(" ")[2]
    print(f"unknown input: {line!r}")
    return None


async def _broadcast_stdin() -> None:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        frame = _frame_for(line.strip())
        if frame is None:
            continue
        for writer in list(_writers):
            writer.write(frame.encode("utf-8") + b"\n")
        print(f"sent to {len(_writers)} bridge(s): {frame}")


async def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=UPSTREAM_PORT_DEFAULT)
    args = ap.parse_args()

    server = await asyncio.start_server(_on_connect, args.host, args.port)
    print(f"fake upstream listening on {args.host}:{args.port}")
    async with server:
        await _broadcast_stdin()


if __name__ == "__main__":
    asyncio.run(main())
