"""
配置加载工具模块 (config/loader.py)
=================================
配置文件默认位于 ~/.agentgate/config.json。

文件中的键名使用 camelCase（与 JS 客户端、世界服务的配置习惯一致），
Python 内部统一使用 snake_case：
- 读取时 camelCase → snake_case，再交给 Pydantic 校验
- 写出时 snake_case → camelCase

优先级（从高到低）：配置文件中的字段 > AGENTGATE_ 环境变量 > 模型默认值。
配置文件缺失或损坏时不会中断启动，只记录警告并回退到默认配置。

对于 Java 开发者：
- 类似于 Spring Boot 加载 application.json 并绑定到 @ConfigurationProperties
- 键名转换类似于 Jackson 的 PropertyNamingStrategies.LOWER_CAMEL_CASE
"""

import json
import re
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from agentgate.config.schema import Config
from agentgate.utils.helpers import ensure_dir, get_data_path

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def get_config_path() -> Path:
    """默认配置文件路径: ~/.agentgate/config.json"""
    return get_data_path() / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    读取配置文件并构造 Config。

    参数:
        config_path: 配置文件路径，默认 ~/.agentgate/config.json

    返回:
        Config 实例；文件不存在或无法解析时为默认配置
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        # 走构造函数而不是 model_validate：文件里没写的字段仍可由环境变量提供
        return Config(**convert_keys(data))
    except (json.JSONDecodeError, ValueError, TypeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        logger.warning("Using default configuration.")
        return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """将配置以 camelCase 键名写入 JSON 文件（自动创建父目录）。"""
    path = config_path or get_config_path()
    ensure_dir(path.parent)
    path.write_text(json.dumps(convert_to_camel(config.model_dump()), indent=2), encoding="utf-8")


def _rename_keys(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, dict):
        return {rename(k): _rename_keys(v, rename) for k, v in data.items()}
    if isinstance(data, list):
        return [_rename_keys(item, rename) for item in data]
    return data


def convert_keys(data: Any) -> Any:
    """递归转换键名 camelCase → snake_case，例: {"maxChatLength": 500} → {"max_chat_length": 500}"""
    return _rename_keys(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """递归转换键名 snake_case → camelCase。"""
    return _rename_keys(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    """"wsUrl" → "ws_url"，"inactivityTimeoutS" → "inactivity_timeout_s" """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    """"ws_url" → "wsUrl" """
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
