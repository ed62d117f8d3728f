# backend/protocol/commands.py
"""
Command codec for the text frames carried by the command stream.

Wire shapes (one JSON object per frame):

    {"cmd":"PLAY","filename":"<asset id>","startTime":<int ns since epoch>}
    {"cmd":"STOP"}
    {"cmd":"STATUS","status":"connected"|"disconnected"}
    {"cmd":"ERROR","error":"<message>"}

The bridge forwards upstream frames verbatim and only uses this module
to synthesize STATUS/ERROR frames. The playback client parses every
frame it receives with parse_command().
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from constants import (
    CMD_ERROR,
    CMD_PLAY,
    CMD_STATUS,
    CMD_STOP,
    JSON_SEPARATORS,
    STATUS_CONNECTED,
    STATUS_DISCONNECTED,
)


# -------------------------
# Exceptions
# -------------------------

class FrameDecodeError(Exception):
    """
    Raised when a frame is not a well-formed command.

    The frame is skipped; the connection it arrived on stays up.
    """

    def __init__(self, message: str, *, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


# -------------------------
# Command records
# -------------------------

class CommandKind(str, Enum):
    """Discriminator carried in the "cmd" field."""

    PLAY = CMD_PLAY
    STOP = CMD_STOP
    STATUS = CMD_STATUS
    ERROR = CMD_ERROR
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class PlayCommand:
    """Start asset_id at start_time_ns (before sync delay and calibration)."""
    asset_id: str
    start_time_ns: int
    kind: CommandKind = CommandKind.PLAY


@dataclass(frozen=True)
class StopCommand:
    """Halt the active playback, or cancel a pending one."""
    kind: CommandKind = CommandKind.STOP


@dataclass(frozen=True)
class StatusCommand:
    """Upstream connectivity as seen by the bridge."""
    connected: bool
    kind: CommandKind = CommandKind.STATUS


@dataclass(frozen=True)
class ErrorCommand:
    """Human-readable error synthesized by the bridge."""
    message: str
    kind: CommandKind = CommandKind.ERROR


@dataclass(frozen=True)
class UnknownCommand:
    """
    Well-formed JSON with an unrecognised "cmd".

    Kept (not rejected) so it still lands in the audit log.
    """
    name: str
    kind: CommandKind = CommandKind.UNKNOWN


Command = Union[PlayCommand, StopCommand, StatusCommand, ErrorCommand, UnknownCommand]


# -------------------------
# Decoding
# -------------------------

def _require_str(data: dict[str, Any], key: str, raw: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise FrameDecodeError(f"{key!r} must be a non-empty string", raw=raw)
    return value


def _require_int(data: dict[str, Any], key: str, raw: str) -> int:
    value = data.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FrameDecodeError(f"{key!r} must be a number", raw=raw)
    if isinstance(value, float) and not value.is_integer():
        raise FrameDecodeError(f"{key!r} must be an integer", raw=raw)
    return int(value)


def parse_command(raw: str) -> Command:
    """
    Parse one frame into a Command.

    Raises:
        FrameDecodeError if the frame is not a JSON object with a string
        "cmd", or a known command lacks its required fields.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"invalid JSON: {e}", raw=raw) from e

    if not isinstance(data, dict):
        raise FrameDecodeError("frame is not a JSON object", raw=raw)

    cmd = data.get("cmd")
    if not isinstance(cmd, str):
        raise FrameDecodeError("missing 'cmd' field", raw=raw)

    if cmd == CMD_PLAY:
        return PlayCommand(
            asset_id=_require_str(data, "filename", raw),
            start_time_ns=_require_int(data, "startTime", raw),
        )

    if cmd == CMD_STOP:
        return StopCommand()

    if cmd == CMD_STATUS:
        status = data.get("status")
        if status == STATUS_CONNECTED:
            return StatusCommand(connected=True)
        if status == STATUS_DISCONNECTED:
            return StatusCommand(connected=False)
        raise FrameDecodeError(f"unknown status: {status!r}", raw=raw)

    if cmd == CMD_ERROR:
        return ErrorCommand(message=str(data.get("error", "")))

    return UnknownCommand(name=cmd)


# -------------------------
# Encoding (synthetic frames)
# -------------------------

def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=JSON_SEPARATORS)


def status_frame(*, connected: bool) -> str:
    """Render a STATUS frame."""
    return _dumps({
        "cmd": CMD_STATUS,
        "status": STATUS_CONNECTED if connected else STATUS_DISCONNECTED,
    })


def error_frame(message: str) -> str:
    """
    Render an ERROR frame.

    The message goes through the JSON encoder, so quotes and newlines in
    exception text cannot corrupt the frame.
    """
    return _dumps({"cmd": CMD_ERROR, "error": message})


def play_frame(*, asset_id: str, start_time_ns: int) -> str:
    """Render a PLAY frame (used by tools and tests acting as upstream)."""
    return _dumps({"cmd": CMD_PLAY, "filename": asset_id, "startTime": start_time_ns})


def stop_frame() -> str:
    """Render a STOP frame."""
    return _dumps({"cmd": CMD_STOP})
