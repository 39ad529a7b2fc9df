"""
命令解释器模块 (commands/interpreter.py)

模块职责：
    将三种协议的原始输入统一解析、校验为规范命令（Command）：
    - from_message()：socket / REST 的 JSON 对象，如 {"type": "move", "direction": "left"}
    - parse_line() / parse_text()：纯文本协议的命令行，如 "move left 500"

    三种入口共用同一套字段校验函数（_speak / _move / _face / _upload），
    保证同一个参数在任何协议上得到相同的校验结果和错误码。

错误码约定（严格区分，绝不混用）：
    - UNKNOWN_COMMAND：动词不认识
    - MISSING_ARGUMENT：动词认识，但必需参数缺失或为空
    - INVALID_PARAMS：动词认识，参数存在但不合法（类型错、越界、格式错）

设计模式对比（Java 视角）：
    类似于 javax.validation + 工厂方法：每个动词一个经过校验的"构造器"，
    校验失败直接抛出带错误码的异常（GatewayError）。
"""

import base64
import binascii
import math
import os
import re
from dataclasses import dataclass
from typing import Any

from agentgate.commands.types import (
    FACE_DIRECTIONS,
    MOVE_DIRECTIONS,
    Command,
    Despawn,
    Face,
    ListAvatars,
    Move,
    Ping,
    Speak,
    UploadAvatar,
    Who,
)
from agentgate.config.schema import LimitsConfig
from agentgate.errors import AvatarError, ErrorCode, GatewayError

TWO_PI = 2 * math.pi

# 纯文本协议的命令用法说明（随每个纯文本响应一起返回）
TEXT_COMMANDS = [
    "say <text>",
    "move forward|backward|left|right|jump [ms]",
    "face <direction|yaw|auto>",
    "look <direction|yaw|auto>",
    "who",
    "ping",
    "avatars",
    "despawn",
]

# 疑似把命令当作发言文本发出的模式，如 '{"type": "move"' 或 'type: move'
_COMMAND_LIKE = (
    re.compile(r'^\s*\{?\s*"?type"?\s*[:=]', re.IGNORECASE),
    re.compile(r"^\s*type\s*:\s*\w+", re.IGNORECASE),
)

_AUTO_WORDS = ("auto", "null", "none")


def looks_like_command(text: str) -> bool:
    """判断发言文本是否像一条误发的结构化命令。"""
    return any(p.search(text) for p in _COMMAND_LIKE)


def normalize_yaw(yaw: float) -> float:
    """将弧度角归一化到 [0, 2π)。"""
    return yaw % TWO_PI


def _missing(message: str) -> GatewayError:
    return GatewayError(ErrorCode.MISSING_ARGUMENT, message)


def _invalid(message: str) -> GatewayError:
    return GatewayError(ErrorCode.INVALID_PARAMS, message)


@dataclass
class ParsedLine:
    """纯文本协议中一行命令的解析结果（command 与 error 二者恰有一个非空）。"""

    line: str
    command: Command | None = None
    error: GatewayError | None = None


class CommandInterpreter:
    """
    命令解释器 - 原始输入 → 规范命令。

    属性:
        limits: 校验上限（聊天长度、移动时长等）
        max_upload_bytes: 头像上传的大小上限（字节）
    """

    # JSON 协议的动词别名 → 规范动词
    _JSON_VERBS = {
        "speak": "speak",
        "say": "speak",
        "move": "move",
        "face": "face",
        "look": "face",
        "who": "who",
        "ping": "ping",
        "despawn": "despawn",
        "list_avatars": "list_avatars",
        "listAvatars": "list_avatars",
        "avatars": "list_avatars",
        "upload_avatar": "upload_avatar",
        "uploadAvatar": "upload_avatar",
    }

    # 纯文本协议支持的动词（不含二进制上传）
    _TEXT_VERBS = {
        "say": "speak",
        "speak": "speak",
        "move": "move",
        "face": "face",
        "look": "face",
        "who": "who",
        "ping": "ping",
        "despawn": "despawn",
        "avatars": "list_avatars",
    }

    def __init__(self, limits: LimitsConfig | None = None, max_upload_bytes: int = 25 * 1024 * 1024):
        self.limits = limits or LimitsConfig()
        self.max_upload_bytes = max_upload_bytes

    # ---- JSON 入口（socket / REST）----------------------------------------------

    def canonical_verb(self, verb: Any) -> str | None:
        """JSON 动词（含别名）→ 规范动词；不认识时返回 None。"""
        if not isinstance(verb, str):
            return None
        return self._JSON_VERBS.get(verb)

    def from_message(self, msg: Any) -> Command:
        """
        解析一条 JSON 命令消息，如 {"type": "speak", "text": "hi"}。

        异常:
            GatewayError: 消息不是对象、动词未知或参数不合法
        """
        if not isinstance(msg, dict):
            raise GatewayError(ErrorCode.INVALID_JSON, "Command must be a JSON object")
        verb = msg.get("type")
        if not verb or not isinstance(verb, str):
            raise _missing("Command requires a string 'type' field")
        return self.build(verb, msg)

    def build(self, verb: str, args: dict[str, Any]) -> Command:
        """
        按动词和参数字典构造规范命令（REST 路由直接调用，动词来自 URL）。

        异常:
            GatewayError: UNKNOWN_COMMAND / MISSING_ARGUMENT / INVALID_PARAMS
        """
        canonical = self._JSON_VERBS.get(verb)
        if canonical is None:
            raise GatewayError(ErrorCode.UNKNOWN_COMMAND, f"Unknown command: {verb}")

        if canonical == "speak":
            return self._speak(args.get("text"))
        if canonical == "move":
            duration = args.get("duration", args.get("durationMs"))
            return self._move(args.get("direction"), duration)
        if canonical == "face":
            if args.get("yaw") is not None:
                return self._face_yaw(args["yaw"])
            if "direction" in args:
                return self._face_direction(args["direction"])
            raise _missing("face requires { direction: string } or { yaw: number } or { direction: null }")
        if canonical == "upload_avatar":
            return self._upload(args.get("data"), args.get("filename"))
        return self._simple(canonical)

    # ---- 纯文本入口 --------------------------------------------------------------

    def parse_line(self, line: str) -> Command | None:
        """
        解析一行纯文本命令。空行返回 None（调用方跳过）。

        异常:
            GatewayError: UNKNOWN_COMMAND / MISSING_ARGUMENT / INVALID_PARAMS
        """
        stripped = line.strip()
        if not stripped:
            return None

        parts = stripped.split(None, 1)
        word = parts[0]
        rest = parts[1].strip() if len(parts) > 1 else ""
        canonical = self._TEXT_VERBS.get(word.lower())
        if canonical is None:
            raise GatewayError(ErrorCode.UNKNOWN_COMMAND, f"Unknown command: {stripped}")

        if canonical == "speak":
            return self._speak(rest)
        if canonical == "move":
            tokens = rest.split()
            if len(tokens) > 2:
                raise _invalid("move takes a direction and an optional duration in ms")
            direction = tokens[0] if tokens else None
            duration = tokens[1] if len(tokens) == 2 else None
            return self._move(direction, duration)
        if canonical == "face":
            if not rest:
                raise _missing("face requires a direction, yaw, or auto")
            if rest.lower() in _AUTO_WORDS:
                return Face()
            try:
                yaw = float(rest)
            except ValueError:
                return self._face_direction(rest)
            return self._face_yaw(yaw)
        return self._simple(canonical)

    def parse_text(self, body: str) -> list[ParsedLine]:
        """
        将多行文本拆分为逐行解析结果，保持输入顺序，跳过空行。

        每一行独立解析：某一行出错不影响其他行。
        """
        results: list[ParsedLine] = []
        for line in body.splitlines():
            try:
                command = self.parse_line(line)
            except GatewayError as e:
                results.append(ParsedLine(line=line.strip(), error=e))
                continue
            if command is not None:
                results.append(ParsedLine(line=line.strip(), command=command))
        return results

    # ---- 各动词的校验构造器 -------------------------------------------------------

    @staticmethod
    def _simple(canonical: str) -> Command:
        return {
            "who": Who,
            "ping": Ping,
            "despawn": Despawn,
            "list_avatars": ListAvatars,
        }[canonical]()

    def _speak(self, text: Any) -> Speak:
        if text is None:
            raise _missing("speak requires { text: string }")
        if not isinstance(text, str):
            raise _invalid("text must be a string")
        text = text.strip()
        if not text:
            raise _missing("speak requires non-empty text")
        limit = self.limits.max_chat_length
        if len(text) > limit:
            raise _invalid(f"Message too long (max {limit} characters)")
        warning = None
        if looks_like_command(text):
            warning = ("Text looks like a malformed command. "
                       "Send commands as proper JSON messages, not as speak text.")
        return Speak(text=text, warning=warning)

    def _move(self, direction: Any, duration: Any) -> Move:
        if direction is None or (isinstance(direction, str) and not direction.strip()):
            raise _missing("move requires a direction (forward, backward, left, right, jump)")
        if not isinstance(direction, str):
            raise _invalid("direction must be a string")
        direction = direction.strip().lower()
        if direction not in MOVE_DIRECTIONS:
            raise _invalid(f"Invalid direction: {direction} (expected one of {', '.join(MOVE_DIRECTIONS)})")
        return Move(direction=direction, duration_ms=self._duration(duration))

    def _duration(self, value: Any) -> int:
        """
        校验移动时长。未提供时取默认值；提供了就必须是 [1, max] 内的整数。

        0 和负数一律拒绝，不会被悄悄替换成默认值。
        """
        if value is None:
            return self.limits.default_move_duration_ms

        limit = self.limits.max_move_duration_ms
        ms: int | None = None
        if isinstance(value, bool):
            ms = None
        elif isinstance(value, int):
            ms = value
        elif isinstance(value, float):
            ms = int(value) if math.isfinite(value) and value.is_integer() else None
        elif isinstance(value, str):
            try:
                ms = int(value.strip())
            except ValueError:
                ms = None
        if ms is None:
            raise _invalid("Duration must be a whole number in milliseconds")
        if ms <= 0:
            raise _invalid(f"Duration must be positive (1-{limit}ms)")
        if ms > limit:
            raise _invalid(f"Duration cannot exceed {limit}ms")
        return ms

    @staticmethod
    def _face_direction(direction: Any) -> Face:
        if direction is None:
            return Face()
        if not isinstance(direction, str):
            raise _invalid("direction must be a string or null")
        value = direction.strip().lower()
        if not value:
            raise _missing("face requires a direction, yaw, or auto")
        if value in _AUTO_WORDS:
            return Face()
        if value not in FACE_DIRECTIONS:
            raise _invalid(f"Invalid direction: {value} (expected one of {', '.join(FACE_DIRECTIONS)}, auto)")
        return Face(direction=value)

    @staticmethod
    def _face_yaw(yaw: Any) -> Face:
        if isinstance(yaw, bool) or not isinstance(yaw, (int, float)):
            raise _invalid("yaw must be a number (radians)")
        if not math.isfinite(yaw):
            raise _invalid("yaw must be a finite number")
        return Face(yaw=normalize_yaw(float(yaw)))

    def _upload(self, data: Any, filename: Any) -> UploadAvatar:
        if not data:
            raise _missing("upload_avatar requires { data: string (base64), filename: string }")
        if not isinstance(data, str):
            raise _invalid("data must be a base64 string")
        if not filename:
            raise _missing("upload_avatar requires a filename")
        if not isinstance(filename, str) or not filename.lower().endswith(".vrm"):
            raise _invalid("filename must be a .vrm file")

        limit = self.max_upload_bytes
        # base64 每 4 个字符解码为 3 字节，先粗略估算，避免解码超大载荷
        if len(data) * 3 // 4 > limit + 3:
            raise AvatarError(AvatarError.TOO_LARGE, f"VRM file exceeds max size of {limit // (1024 * 1024)}MB")
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            raise _invalid("data must be valid base64")
        if len(raw) > limit:
            raise AvatarError(AvatarError.TOO_LARGE, f"VRM file exceeds max size of {limit // (1024 * 1024)}MB")
        return UploadAvatar(data=raw, filename=os.path.basename(filename))
