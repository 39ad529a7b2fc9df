"""
规范命令类型定义 (commands/types.py)

模块职责：
    定义所有协议共用的规范命令（Command）。三种协议适配器的原始输入
    （socket JSON 消息、REST 请求体、纯文本行）经 CommandInterpreter 校验后，
    统一转换为这里的某个命令类型，之后的处理流程与协议无关。

命令集合是封闭的：
    Speak / Move / Face / Who / Ping / Despawn / ListAvatars / UploadAvatar
    每个类型的字段都已经过校验，拿到实例即可直接执行。

设计模式对比（Java 视角）：
    相当于 Java 17 的 sealed interface Command permits Speak, Move, ...
    配合 record 实现的不可变值对象。
"""

from dataclasses import dataclass
from typing import ClassVar, Literal

MoveDirection = Literal["forward", "backward", "left", "right", "jump"]
FaceDirection = Literal["forward", "backward", "left", "right"]

MOVE_DIRECTIONS: tuple[str, ...] = ("forward", "backward", "left", "right", "jump")
FACE_DIRECTIONS: tuple[str, ...] = ("forward", "backward", "left", "right")


@dataclass(frozen=True)
class Command:
    """
    规范命令基类。

    类属性:
        verb: 命令的规范动词（对外协议中的 type）
        world_bound: 是否需要转发给上游世界连接
    """

    verb: ClassVar[str] = ""
    world_bound: ClassVar[bool] = False


@dataclass(frozen=True)
class Speak(Command):
    """发言。text 已去除首尾空白，长度在 [1, max_chat_length] 内。"""

    verb: ClassVar[str] = "speak"
    world_bound: ClassVar[bool] = True

    text: str
    warning: str | None = None  # 文本疑似误发的命令时附带的提示（仍会发言）


@dataclass(frozen=True)
class Move(Command):
    """按方向移动一段时间。duration_ms 在 [1, max_move_duration_ms] 内。"""

    verb: ClassVar[str] = "move"
    world_bound: ClassVar[bool] = True

    direction: str
    duration_ms: int


@dataclass(frozen=True)
class Face(Command):
    """
    设置朝向。

    三种形式互斥：
    - direction 非空：朝向某个方向
    - yaw 非空：朝向某个角度（弧度，已归一化到 [0, 2π)）
    - 两者都为空：清除显式朝向，恢复为跟随移动方向（auto）
    """

    verb: ClassVar[str] = "face"
    world_bound: ClassVar[bool] = True

    direction: str | None = None
    yaw: float | None = None

    @property
    def is_auto(self) -> bool:
        return self.direction is None and self.yaw is None


@dataclass(frozen=True)
class Who(Command):
    verb: ClassVar[str] = "who"


@dataclass(frozen=True)
class Ping(Command):
    verb: ClassVar[str] = "ping"


@dataclass(frozen=True)
class Despawn(Command):
    verb: ClassVar[str] = "despawn"


@dataclass(frozen=True)
class ListAvatars(Command):
    verb: ClassVar[str] = "list_avatars"


@dataclass(frozen=True)
class UploadAvatar(Command):
    """上传 VRM 头像。data 已完成 base64 解码且未超过大小上限。"""

    verb: ClassVar[str] = "upload_avatar"

    data: bytes
    filename: str

    def __repr__(self) -> str:
        return f"UploadAvatar(filename={self.filename!r}, size={len(self.data)})"
