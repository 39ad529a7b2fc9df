"""
工具函数集合 - agentgate 项目全局通用的辅助函数。

本模块提供路径管理、令牌生成、时间戳等基础工具函数，
被项目中的多个模块引用。

函数分类：
- 路径管理：ensure_dir, get_data_path
- 标识生成：new_token, new_public_id, random_suffix
- 时间工具：to_iso, parse_since, MonotonicClock
- 字符串工具：truncate_string
"""

import secrets
import string
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

# nanoid 风格的 URL 安全字母表
_ALPHABET = string.ascii_letters + string.digits + "_-"
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 agentgate 数据目录（~/.agentgate）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".agentgate")


def _random_string(size: int, alphabet: str = _ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(size))


def new_token() -> str:
    """生成 32 位的会话令牌（不透明的能力凭证，持有即有权操作该会话）。"""
    return _random_string(32)


def new_public_id() -> str:
    """生成 12 位的公开 ID（对其他 Agent 和 REST 路由可见）。"""
    return _random_string(12)


def random_suffix(size: int = 3) -> str:
    """生成显示名消歧用的短随机后缀（小写字母 + 数字）。"""
    return _random_string(size, _SUFFIX_ALPHABET)


def to_iso(ms: int) -> str:
    """将毫秒级 Unix 时间戳转换为 ISO 8601 字符串（UTC，毫秒精度，Z 结尾）。"""
    dt = datetime.fromtimestamp(ms // 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms % 1000:03d}Z"


def parse_since(value: str | None) -> int:
    """
    解析轮询接口的 since 参数为毫秒时间戳。

    支持两种格式：
    - 数字（毫秒级 Unix 时间戳），如 "1718000000000"
    - 日期字符串（ISO 8601），如 "2024-06-10T06:13:20.000Z"

    参数缺失或无法解析时返回 0，即返回整个缓冲区。
    """
    if not value:
        return 0
    value = value.strip()
    try:
        return max(0, int(float(value)))
    except ValueError:
        pass
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0, round(dt.timestamp() * 1000))


class MonotonicClock:
    """
    单调递增的毫秒时钟。

    以墙上时间为基准，但保证每次 next() 的返回值严格大于上一次，
    即使两次调用落在同一毫秒内，或系统时间被回拨。
    这样事件时间戳可以安全地作为下一次 drain 的 cutoff。
    """

    def __init__(self, now_ms=None):
        self._now_ms = now_ms or (lambda: int(time.time() * 1000))
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._last = max(self._now_ms(), self._last + 1)
            return self._last

    @property
    def last(self) -> int:
        return self._last


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串到指定最大长度，超出时添加后缀（用于日志输出）。

    参数:
        s: 原始字符串
        max_len: 最大长度（包含后缀），默认 100
        suffix: 截断后缀，默认 "..."
    """
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix
