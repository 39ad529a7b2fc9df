"""
配置模块 (config)

- schema.py：Pydantic 配置模型（网关监听、上游世界、头像、校验上限、会话生命周期、协议适配器）
- loader.py：~/.agentgate/config.json 的读写与 camelCase ↔ snake_case 转换
"""

from agentgate.config.loader import get_config_path, load_config, save_config
from agentgate.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
