"""
内置头像库 (avatar/library.py)

spawn 时客户端可以用三种方式指定头像：
- 完整 URL："https://..." 或 "http://..."，原样使用
- 资源协议："asset://..."，由世界服务内部解析，原样使用
- 头像库引用："library:<id>" 或直接 "<id>"，从下表查找

无法识别的引用返回 None，由调用方降级为默认头像并给出警告。
"""

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class AvatarEntry:
    """头像库条目。"""

    id: str
    name: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


# 外部头像全部托管在 arweave.net（CORS 宽松，无需代理）
_EXTERNAL_AVATARS = [
    AvatarEntry("devil", "Devil", "https://arweave.net/gfVzs1oH_aPaHVxpQK86HT_rqzyrFPOUKUrDJ30yprs"),
    AvatarEntry("polydancer", "Polydancer", "https://arweave.net/jPOg-G0MPH55ZQmamFhT9f8cHn-hjeAQ0mRO5gWeKMQ"),
    AvatarEntry("rose", "Rose", "https://arweave.net/Ea1KXujzJatQgCFSMzGOzp_UtHqB1pyia--U3AtkMAY"),
    AvatarEntry("rabbit", "Rabbit", "https://arweave.net/RymRtrmhHx_f9ZDvtvIQb1noTHvILdjoTg5G7L2DR-8"),
    AvatarEntry("eggplant", "Eggplant", "https://arweave.net/64v_-jGcqFc4q_1ao0sjcXnhqkrtnjSSBotZoN2DDmc"),
]

LIBRARY_PREFIX = "library:"


class AvatarLibrary:
    """
    头像库 - 固定的内置头像列表及引用解析。

    default 头像位于世界服务自己的资源目录下，地址由 assets_base_url 决定。
    """

    def __init__(self, assets_base_url: str = "http://localhost:4000/assets"):
        base = assets_base_url.rstrip("/")
        self.entries: list[AvatarEntry] = [
            AvatarEntry("default", "Default Avatar", f"{base}/avatar.vrm"),
            *_EXTERNAL_AVATARS,
        ]

    @property
    def default_url(self) -> str:
        return self.entries[0].url

    def get(self, avatar_id: str) -> AvatarEntry | None:
        for entry in self.entries:
            if entry.id == avatar_id:
                return entry
        return None

    def resolve_ref(self, ref: str | None) -> str | None:
        """
        将头像引用解析为 URL。

        返回:
            解析后的 URL；ref 为空或无法识别时返回 None
        """
        if not ref or not isinstance(ref, str):
            return None
        if ref.startswith(("http://", "https://", "asset://")):
            return ref

        avatar_id = ref[len(LIBRARY_PREFIX):] if ref.startswith(LIBRARY_PREFIX) else ref
        entry = self.get(avatar_id)
        return entry.url if entry else None

    def to_list(self) -> list[dict[str, str]]:
        """序列化为 avatar_library 事件的 avatars 字段。"""
        return [e.to_dict() for e in self.entries]
