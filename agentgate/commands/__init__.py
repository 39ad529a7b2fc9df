"""
命令模块 - 所有协议共用的规范命令及其解释器。

- types.py：封闭的命令类型集合（Speak、Move、Face、Who、Ping、Despawn、ListAvatars、UploadAvatar）
- interpreter.py：CommandInterpreter，把 JSON 消息或纯文本行校验并转换为命令
"""

from agentgate.commands.interpreter import TEXT_COMMANDS, CommandInterpreter, ParsedLine
from agentgate.commands.types import (
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

__all__ = [
    "Command",
    "CommandInterpreter",
    "Despawn",
    "Face",
    "ListAvatars",
    "Move",
    "ParsedLine",
    "Ping",
    "Speak",
    "TEXT_COMMANDS",
    "UploadAvatar",
    "Who",
]
