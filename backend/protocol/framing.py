# backend/protocol/framing.py
"""
Newline framing for the upstream command stream.

The upstream source writes JSON objects separated by a single b"\\n"
and nothing else: no length prefix, no alignment between TCP reads and
messages. FrameDecoder restores message boundaries.

Usage example:

    decoder = FrameDecoder()
    for frame in decoder.feed(chunk):
        fan_out(frame)

Guarantees:
- Frames come out in byte-arrival order
- A frame is never split across two feed() results
- Two upstream messages are never merged into one frame
- Whitespace-only frames (including a bare newline) are suppressed
"""

from __future__ import annotations

from constants import FRAME_DELIMITER, FRAME_TEXT_ENCODING


class FrameDecoder:
    """
    Stateful accumulator: bytes in, text frames out.

    Bytes after the last delimiter stay buffered until a later feed()
    completes them. The buffer is unbounded; an upstream that never
    sends a delimiter grows it without limit.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[str]:
        """
        Append a chunk and return every frame it completes.

        Text decoding happens per frame, after splitting, so a multi-byte
        character straddling two chunks is decoded intact.
        """
        self._buffer += data
        frames: list[str] = []

        while True:
            idx = self._buffer.find(FRAME_DELIMITER)
            if idx < 0:
                break

            raw = bytes(self._buffer[:idx])
            del self._buffer[: idx + len(FRAME_DELIMITER)]

            text = raw.decode(FRAME_TEXT_ENCODING, errors="replace").strip()
            if text:
                frames.append(text)

        return frames

    @property
    def pending_bytes(self) -> int:
        """Bytes buffered after the last delimiter."""
        return len(self._buffer)

    def reset(self) -> None:
        """Drop any partial frame (used on channel teardown)."""
        self._buffer.clear()
