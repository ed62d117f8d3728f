# pylint: disable=missing-module-docstring,missing-function-docstring

import json

import pytest

from protocol.commands import (
    CommandKind,
    ErrorCommand,
    FrameDecodeError,
    PlayCommand,
    StatusCommand,
    StopCommand,
    UnknownCommand,
    error_frame,
    parse_command,
    play_frame,
    status_frame,
    stop_frame,
)


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------

def test_parse_play():
    cmd = parse_command('{"cmd":"PLAY","filename":"song.mp3","startTime":1700000000000000000}')

    assert cmd == PlayCommand(asset_id="song.mp3", start_time_ns=1700000000000000000)
    assert cmd.kind == CommandKind.PLAY


def test_parse_play_accepts_integral_float():
    cmd = parse_command('{"cmd":"PLAY","filename":"a","startTime":5.0}')

    assert isinstance(cmd, PlayCommand)
    assert cmd.start_time_ns == 5


def test_parse_stop_ignores_extra_fields():
    assert parse_command('{"cmd":"STOP","extra":1}') == StopCommand()


@pytest.mark.parametrize("status,connected", [("connected", True), ("disconnected", False)])
def test_parse_status(status: str, connected: bool):
    cmd = parse_command(json.dumps({"cmd": "STATUS", "status": status}))

    assert cmd == StatusCommand(connected=connected)


def test_parse_error():
    assert parse_command('{"cmd":"ERROR","error":"boom"}') == ErrorCommand(message="boom")


def test_unknown_cmd_is_kept():
    cmd = parse_command('{"cmd":"PAUSE"}')

    assert cmd == UnknownCommand(name="PAUSE")
    assert cmd.kind == CommandKind.UNKNOWN


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1,2,3]",
        '{"filename":"a"}',
        '{"cmd":7}',
        '{"cmd":"PLAY","startTime":1}',
        '{"cmd":"PLAY","filename":"","startTime":1}',
        '{"cmd":"PLAY","filename":"a"}',
        '{"cmd":"PLAY","filename":"a","startTime":"1"}',
        '{"cmd":"PLAY","filename":"a","startTime":true}',
        '{"cmd":"PLAY","filename":"a","startTime":1.5}',
        '{"cmd":"STATUS","status":"maybe"}',
    ],
)
def test_malformed_frames_raise(raw: str):
    with pytest.raises(FrameDecodeError) as info:
        parse_command(raw)

    assert info.value.raw == raw


# ---------------------------------------------------------------------
# Synthetic frames
# ---------------------------------------------------------------------

def test_status_frames_are_compact_json():
    assert status_frame(connected=True) == '{"cmd":"STATUS","status":"connected"}'
    assert status_frame(connected=False) == '{"cmd":"STATUS","status":"disconnected"}'


def test_error_frame_escapes_message():
    message = 'line one\nsaid "hi"'

    frame = error_frame(message)

    assert "\n" not in frame
    assert parse_command(frame) == ErrorCommand(message=message)


def test_play_and_stop_frames_parse_back():
    assert parse_command(play_frame(asset_id="x.mp3", start_time_ns=42)) == PlayCommand("x.mp3", 42)
    assert parse_command(stop_frame()) == StopCommand()
