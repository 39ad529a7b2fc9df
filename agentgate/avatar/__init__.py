"""头像模块 - 内置头像库与外部头像的 CORS 代理。"""

from agentgate.avatar.library import AvatarEntry, AvatarLibrary
from agentgate.avatar.proxy import AvatarProxy, validate_vrm

__all__ = ["AvatarEntry", "AvatarLibrary", "AvatarProxy", "validate_vrm"]
