"""
工具函数模块 - 提供 agentgate 项目全局通用的辅助函数。

本模块包含：
- ensure_dir / get_data_path：路径管理
- new_token / new_public_id / random_suffix：会话标识生成
- MonotonicClock / parse_since / to_iso：事件时间戳相关
"""

from agentgate.utils.helpers import (
    MonotonicClock,
    ensure_dir,
    get_data_path,
    new_public_id,
    new_token,
    parse_since,
    random_suffix,
    to_iso,
)

__all__ = [
    "MonotonicClock",
    "ensure_dir",
    "get_data_path",
    "new_public_id",
    "new_token",
    "parse_since",
    "random_suffix",
    "to_iso",
]
