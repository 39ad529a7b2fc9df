"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 agentgate 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── gateway   - HTTP/WebSocket 服务监听配置（主机、端口、对外地址）
├── world     - 上游世界服务配置（WebSocket 地址、API 地址、超时、重试策略）
├── avatars   - 头像解析与代理配置（资源地址、大小上限、CORS 白名单、重试策略）
├── limits    - 输入校验上限（名字长度、聊天长度、移动时长、请求体大小、事件缓冲容量）
├── sessions  - 会话生命周期配置（闲置超时、巡检间隔、退役会话保留时长）
└── channels  - 协议适配器配置（socket / http / plaintext 三种渠道）

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
- Field(default_factory=...) 类似于 Java 中用工厂方法创建可变默认值，避免共享引用问题
"""

from urllib.parse import urlparse

from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings


# ==============================================================================
# 重试策略配置（上游依赖共用的指数退避参数）
# ==============================================================================


class RetryConfig(BaseModel):
    """指数退避重试参数。仅用于上游的暂时性错误（连接失败、5xx 等）。"""
    initial_delay_ms: int = 500  # 首次重试前的等待时间（毫秒）
    max_delay_ms: int = 10000  # 单次等待的上限（毫秒，指数退避封顶）
    multiplier: float = 2.0  # 每次重试的延迟倍数
    max_attempts: int = 3  # 最大尝试次数（包含第一次调用）


# ==============================================================================
# 服务与上游配置
# ==============================================================================


class GatewayConfig(BaseModel):
    """HTTP + WebSocket 网关服务配置。"""
    host: str = "0.0.0.0"  # 监听地址（0.0.0.0 表示监听所有网卡）
    port: int = 5000  # 监听端口
    public_url: str = ""  # 对外访问地址，用于生成 spawn 响应中的 session URL（为空时取请求的 base_url）


class WorldConfig(BaseModel):
    """上游世界服务配置。每个会话会建立一条独立的 WebSocket 连接到 ws_url。"""
    ws_url: str = "ws://localhost:4000/ws"  # 世界服务的 WebSocket 地址
    api_url: str = "http://localhost:4000"  # 世界服务的 HTTP API 地址（头像上传等）
    connect_timeout_s: float = 15.0  # 建立连接的超时时间（秒）
    spawn_timeout_s: float = 10.0  # 等待世界确认 spawn 的超时时间（秒）
    retry: RetryConfig = Field(default_factory=RetryConfig)  # 连接/重连的退避策略


class AvatarConfig(BaseModel):
    """头像库与代理缓存配置。"""
    assets_base_url: str = "http://localhost:4000/assets"  # 内置头像（default）所在的资源地址
    max_upload_mb: int = 25  # VRM 文件大小上限（MB）
    cors_safe_hosts: list[str] = Field(
        default_factory=lambda: ["arweave.net", "localhost", "127.0.0.1", "0.0.0.0"]
    )  # 已知提供宽松 CORS 头的主机，这些主机上的头像无需代理
    download_timeout_s: float = 30.0  # 下载外部头像的超时时间（秒）
    retry: RetryConfig = Field(default_factory=RetryConfig)  # 下载外部头像的退避策略

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def max_upload_message_bytes(self) -> int:
        """承载 base64 头像的单条消息上限：编码后 4/3 倍，再留 64KB 给 JSON 其余字段。"""
        return self.max_upload_bytes * 4 // 3 + 64 * 1024


class LimitsConfig(BaseModel):
    """输入校验上限。三种协议适配器共用同一套上限。"""
    max_name_length: int = 32  # Agent 名字最大字符数
    max_chat_length: int = 500  # 单条发言最大字符数（去除首尾空白后）
    default_move_duration_ms: int = 1000  # move 未指定时长时的默认值（毫秒）
    max_move_duration_ms: int = 10000  # move 时长上限（毫秒）
    max_body_bytes: int = 1024 * 1024  # HTTP 请求体上限（字节）
    event_buffer_size: int = 500  # 每个会话的事件缓冲容量（超出时丢弃最旧事件）


class SessionsConfig(BaseModel):
    """会话生命周期配置。"""
    inactivity_timeout_s: int = 300  # 闲置超时（秒），任何被接受的命令或轮询都会重置计时
    sweep_interval_s: int = 15  # 看门狗巡检间隔（秒）
    retired_ttl_s: int = 300  # 已终止会话的"墓碑"保留时长（秒），便于轮询方取走终止事件


# ==============================================================================
# 协议适配器（渠道）配置
# ==============================================================================


class SocketChannelConfig(BaseModel):
    """全双工 WebSocket 协议配置。"""
    enabled: bool = True
    path: str = "/"  # WebSocket 升级路径


class HttpChannelConfig(BaseModel):
    """REST 协议配置。"""
    enabled: bool = True
    allow_origins: list[str] = Field(default_factory=lambda: ["*"])  # CORS 允许的来源


class PlaintextChannelConfig(BaseModel):
    """URL 内嵌令牌的纯文本协议配置。"""
    enabled: bool = True
    path_prefix: str = "/s"  # 会话地址前缀，完整地址为 {path_prefix}/{token}


class ChannelsConfig(BaseModel):
    """所有协议适配器的聚合配置。默认全部启用。"""
    socket: SocketChannelConfig = Field(default_factory=SocketChannelConfig)
    http: HttpChannelConfig = Field(default_factory=HttpChannelConfig)
    plaintext: PlaintextChannelConfig = Field(default_factory=PlaintextChannelConfig)


# ==============================================================================
# 根配置类：整个 agentgate 的配置入口
# ==============================================================================


class Config(BaseSettings):
    """
    agentgate 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: AGENTGATE_
    - 嵌套分隔符: __ (双下划线)
    - 示例: AGENTGATE_WORLD__WS_URL=ws://world:4000/ws 可覆盖 world.ws_url
    """
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)  # 网关监听配置
    world: WorldConfig = Field(default_factory=WorldConfig)  # 上游世界配置
    avatars: AvatarConfig = Field(default_factory=AvatarConfig)  # 头像配置
    limits: LimitsConfig = Field(default_factory=LimitsConfig)  # 校验上限
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)  # 会话生命周期
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)  # 协议适配器

    @property
    def world_host(self) -> str | None:
        """世界服务 API 的主机名。世界服务自身的资源总是 CORS 安全的。"""
        return urlparse(self.world.api_url).hostname

    # Pydantic Settings 配置：支持 AGENTGATE_ 前缀的环境变量，嵌套用 __ 分隔
    model_config = ConfigDict(
        env_prefix="AGENTGATE_",  # 环境变量前缀
        env_nested_delimiter="__"  # 嵌套配置的分隔符
    )
