"""Tests for command validation shared by the socket, REST and plaintext adapters."""

import base64
import math

import pytest

from agentgate.commands import CommandInterpreter
from agentgate.commands.types import Despawn, Face, ListAvatars, Move, Ping, Speak, UploadAvatar, Who
from agentgate.errors import AvatarError, ErrorCode, GatewayError


@pytest.fixture
def interpreter():
    return CommandInterpreter()


def error_code(fn, *args) -> ErrorCode:
    with pytest.raises(GatewayError) as exc:
        fn(*args)
    return exc.value.code


# ---- JSON messages ---------------------------------------------------------------


def test_speak_is_trimmed(interpreter):
    assert interpreter.from_message({"type": "speak", "text": "  hello  "}) == Speak(text="hello")


def test_say_is_an_alias_for_speak(interpreter):
    assert interpreter.from_message({"type": "say", "text": "hi"}) == Speak(text="hi")


def test_speak_argument_errors(interpreter):
    assert error_code(interpreter.from_message, {"type": "speak"}) == ErrorCode.MISSING_ARGUMENT
    assert error_code(interpreter.from_message, {"type": "speak", "text": "   "}) == ErrorCode.MISSING_ARGUMENT
    assert error_code(interpreter.from_message, {"type": "speak", "text": 42}) == ErrorCode.INVALID_PARAMS
    assert error_code(interpreter.from_message, {"type": "speak", "text": "x" * 501}) == ErrorCode.INVALID_PARAMS


def test_speak_length_limit_applies_after_trim(interpreter):
    command = interpreter.from_message({"type": "speak", "text": " " + "x" * 500 + " "})
    assert len(command.text) == 500


def test_speak_that_looks_like_a_command_still_speaks_with_warning(interpreter):
    command = interpreter.from_message({"type": "speak", "text": '{"type": "move"}'})
    assert isinstance(command, Speak)
    assert command.warning


def test_move_duration_bounds(interpreter):
    """Zero and over-limit durations are rejected, never silently defaulted."""
    assert interpreter.build("move", {"direction": "forward"}) == Move("forward", 1000)
    assert interpreter.build("move", {"direction": "forward", "duration": 10000}) == Move("forward", 10000)
    assert error_code(interpreter.build, "move", {"direction": "forward", "duration": 0}) == ErrorCode.INVALID_PARAMS
    assert error_code(interpreter.build, "move", {"direction": "forward", "duration": -5}) == ErrorCode.INVALID_PARAMS
    assert error_code(interpreter.build, "move", {"direction": "forward", "duration": 10001}) == ErrorCode.INVALID_PARAMS


def test_move_duration_must_be_whole_milliseconds(interpreter):
    assert interpreter.build("move", {"direction": "left", "durationMs": 250.0}) == Move("left", 250)
    assert error_code(interpreter.build, "move", {"direction": "left", "duration": 2.5}) == ErrorCode.INVALID_PARAMS
    assert error_code(interpreter.build, "move", {"direction": "left", "duration": True}) == ErrorCode.INVALID_PARAMS
    assert error_code(interpreter.build, "move", {"direction": "left", "duration": "soon"}) == ErrorCode.INVALID_PARAMS


def test_move_direction_errors(interpreter):
    assert interpreter.build("move", {"direction": "JUMP"}) == Move("jump", 1000)
    assert error_code(interpreter.build, "move", {}) == ErrorCode.MISSING_ARGUMENT
    assert error_code(interpreter.build, "move", {"direction": "up"}) == ErrorCode.INVALID_PARAMS


def test_face_forms(interpreter):
    assert interpreter.build("face", {"direction": "left"}) == Face(direction="left")
    assert interpreter.build("face", {"direction": None}).is_auto
    assert interpreter.build("face", {"direction": "auto"}).is_auto
    assert interpreter.build("look", {"yaw": 1.5}) == Face(yaw=1.5)
    assert error_code(interpreter.build, "face", {}) == ErrorCode.MISSING_ARGUMENT
    assert error_code(interpreter.build, "face", {"direction": "up"}) == ErrorCode.INVALID_PARAMS


def test_face_yaw_is_normalised(interpreter):
    assert interpreter.build("face", {"yaw": -math.pi / 2}).yaw == pytest.approx(3 * math.pi / 2)
    assert interpreter.build("face", {"yaw": 5 * math.pi}).yaw == pytest.approx(math.pi)
    assert error_code(interpreter.build, "face", {"yaw": "north"}) == ErrorCode.INVALID_PARAMS
    assert error_code(interpreter.build, "face", {"yaw": float("inf")}) == ErrorCode.INVALID_PARAMS


def test_simple_verbs(interpreter):
    assert interpreter.from_message({"type": "who"}) == Who()
    assert interpreter.from_message({"type": "ping"}) == Ping()
    assert interpreter.from_message({"type": "despawn"}) == Despawn()
    assert interpreter.from_message({"type": "listAvatars"}) == ListAvatars()


def test_message_shape_errors(interpreter):
    assert error_code(interpreter.from_message, ["speak"]) == ErrorCode.INVALID_JSON
    assert error_code(interpreter.from_message, {"text": "hi"}) == ErrorCode.MISSING_ARGUMENT
    assert error_code(interpreter.from_message, {"type": "dance"}) == ErrorCode.UNKNOWN_COMMAND
    assert interpreter.canonical_verb("uploadAvatar") == "upload_avatar"
    assert interpreter.canonical_verb("dance") is None


def test_upload_avatar_decodes_base64(interpreter, vrm):
    payload = vrm()
    command = interpreter.from_message({
        "type": "upload_avatar",
        "data": base64.b64encode(payload).decode(),
        "filename": "../../robot.VRM",
    })
    assert isinstance(command, UploadAvatar)
    assert command.data == payload
    assert command.filename == "robot.VRM"


def test_upload_avatar_errors(vrm):
    interpreter = CommandInterpreter(max_upload_bytes=32)
    encoded = base64.b64encode(vrm(size=64)).decode()

    assert error_code(interpreter.build, "upload_avatar", {"filename": "a.vrm"}) == ErrorCode.MISSING_ARGUMENT
    assert error_code(interpreter.build, "upload_avatar", {"data": "AAAA", "filename": "a.glb"}) == ErrorCode.INVALID_PARAMS
    assert error_code(interpreter.build, "upload_avatar", {"data": "***", "filename": "a.vrm"}) == ErrorCode.INVALID_PARAMS
    with pytest.raises(AvatarError) as exc:
        interpreter.build("upload_avatar", {"data": encoded, "filename": "a.vrm"})
    assert exc.value.reason == AvatarError.TOO_LARGE


# ---- plaintext lines -----------------------------------------------------------


def test_parse_text_handles_each_line_independently(interpreter):
    results = interpreter.parse_text("say hi\nmove forward 2000\nface left\n")

    assert [r.line for r in results] == ["say hi", "move forward 2000", "face left"]
    assert [r.command for r in results] == [Speak(text="hi"), Move("forward", 2000), Face(direction="left")]
    assert all(r.error is None for r in results)


def test_parse_text_skips_blank_lines_and_keeps_errors(interpreter):
    results = interpreter.parse_text("\n  \ndance\nmove forward 0\nwho\n")

    assert len(results) == 3
    assert results[0].error.code == ErrorCode.UNKNOWN_COMMAND
    assert results[1].error.code == ErrorCode.INVALID_PARAMS
    assert results[2].command == Who()


def test_parse_line_face_variants(interpreter):
    assert interpreter.parse_line("face auto").is_auto
    assert interpreter.parse_line("look 3.14159").yaw == pytest.approx(3.14159)
    assert interpreter.parse_line("face -1.5708").yaw == pytest.approx(2 * math.pi - 1.5708)
    assert error_code(interpreter.parse_line, "face") == ErrorCode.MISSING_ARGUMENT
    assert error_code(interpreter.parse_line, "face inf") == ErrorCode.INVALID_PARAMS


def test_parse_line_move_and_say(interpreter):
    assert interpreter.parse_line("MOVE jump") == Move("jump", 1000)
    assert interpreter.parse_line("say   spaced   out  ") == Speak(text="spaced   out")
    assert error_code(interpreter.parse_line, "say") == ErrorCode.MISSING_ARGUMENT
    assert error_code(interpreter.parse_line, "move forward 100 200") == ErrorCode.INVALID_PARAMS
    assert interpreter.parse_line("   ") is None
