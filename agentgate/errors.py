"""
错误类型定义模块 - 网关对外暴露的统一错误码与异常。

本模块定义了 agentgate 中跨模块传递的唯一异常类型 GatewayError，
以及所有出现在协议边界上的稳定错误码（ErrorCode）。

错误分类（与三种协议适配器的渲染方式无关）：
- 校验错误：INVALID_PARAMS / MISSING_ARGUMENT / UNKNOWN_COMMAND / INVALID_JSON
- 鉴权错误：UNAUTHORIZED / FORBIDDEN
- 状态错误：SPAWN_REQUIRED / ALREADY_SPAWNED / NOT_CONNECTED
- 上游错误：SPAWN_FAILED / UPLOAD_FAILED
- 兜底错误：NOT_FOUND / INTERNAL_ERROR

【Java 开发者类比】
- ErrorCode 相当于 Java 的 enum 错误码
- GatewayError 相当于带 errorCode 字段的自定义 RuntimeException，
  由 Spring 的 @ExceptionHandler（这里是 FastAPI 的 exception_handler）统一转换为响应
"""

from enum import Enum


class ErrorCode(str, Enum):
    """协议边界上的稳定错误码。继承 str 使其可以直接序列化为 JSON 字符串。"""

    SPAWN_REQUIRED = "SPAWN_REQUIRED"
    ALREADY_SPAWNED = "ALREADY_SPAWNED"
    SPAWN_FAILED = "SPAWN_FAILED"
    NOT_CONNECTED = "NOT_CONNECTED"
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
    MISSING_ARGUMENT = "MISSING_ARGUMENT"
    INVALID_PARAMS = "INVALID_PARAMS"
    INVALID_JSON = "INVALID_JSON"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# 错误码 → HTTP 状态码映射（REST 与纯文本适配器使用）
HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.SPAWN_REQUIRED: 409,
    ErrorCode.ALREADY_SPAWNED: 409,
    ErrorCode.SPAWN_FAILED: 502,
    ErrorCode.NOT_CONNECTED: 409,
    ErrorCode.UNKNOWN_COMMAND: 400,
    ErrorCode.MISSING_ARGUMENT: 400,
    ErrorCode.INVALID_PARAMS: 400,
    ErrorCode.INVALID_JSON: 400,
    ErrorCode.UPLOAD_FAILED: 502,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INTERNAL_ERROR: 500,
}


class GatewayError(Exception):
    """
    网关错误 - 携带稳定错误码和人类可读消息的异常。

    属性:
        code: 错误码（ErrorCode 枚举值）
        message: 面向调用方的错误描述
    """

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def http_status(self) -> int:
        """该错误对应的 HTTP 状态码。"""
        return HTTP_STATUS.get(self.code, 500)

    def to_dict(self) -> dict[str, str]:
        """序列化为 {code, message}，供 socket 的 error 事件使用。"""
        return {"code": self.code.value, "message": self.message}

    def __repr__(self) -> str:
        return f"GatewayError({self.code.value}, {self.message!r})"


class AvatarError(GatewayError):
    """
    头像处理错误 - 在 GatewayError 基础上附加具体的失败原因。

    reason 取值：
    - too_large：文件超过大小上限
    - too_small：文件不足 12 字节，无法包含 glTF 头
    - bad_magic：缺少 glTF 魔数
    - bad_version：glTF 版本不是 2
    - download_failed：从外部主机下载失败
    - upload_failed：上传到世界资源服务器失败
    """

    TOO_LARGE = "too_large"
    TOO_SMALL = "too_small"
    BAD_MAGIC = "bad_magic"
    BAD_VERSION = "bad_version"
    DOWNLOAD_FAILED = "download_failed"
    UPLOAD_FAILED = "upload_failed"

    # 校验类失败是确定性的，可以缓存；下载/上传失败可能是暂时的，不缓存
    VALIDATION_REASONS = frozenset({TOO_LARGE, TOO_SMALL, BAD_MAGIC, BAD_VERSION})

    def __init__(self, reason: str, message: str, code: ErrorCode = ErrorCode.INVALID_PARAMS):
        super().__init__(code, message)
        self.reason = reason

    @property
    def is_validation_failure(self) -> bool:
        return self.reason in self.VALIDATION_REASONS
