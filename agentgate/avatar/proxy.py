"""
头像代理模块 (avatar/proxy.py)

模块职责：
    浏览器端的世界观察者从外部主机加载 VRM 头像时会受到 CORS 限制。
    对于不在 CORS 白名单中的头像 URL，网关在服务端下载、校验文件格式，
    再上传到世界服务自己的资源服务器，用返回的本地 URL 代替原始 URL。

核心保证：
    - 单飞（single-flight）：同一个外部 URL 无论多少会话同时请求，
      只会下载 + 上传一次，所有并发请求者等待同一个结果
    - 缓存：成功结果和校验失败（确定性错误）在进程生命周期内缓存；
      下载/上传失败可能是暂时的，不缓存，下次请求会重试
    - 任何一个等待者被取消（例如会话在 spawn 中途断开）不会取消共享的下载任务

VRM 校验（VRM 本质是 GLB 容器）：
    - 大小不超过上限
    - 至少 12 字节（GLB 文件头）
    - 偏移 0 处的小端 uint32 为 glTF 魔数 0x46546C67
    - 偏移 4 处的小端 uint32（版本号）为 2

设计模式对比（Java 视角）：
    _inflight 相当于 ConcurrentHashMap<String, CompletableFuture<String>>，
    computeIfAbsent 保证同一个 key 只有一个 future 在执行。
"""

import asyncio
import struct
from typing import Any
from urllib.parse import urlparse

import httpx
from loguru import logger

from agentgate.avatar.library import AvatarLibrary
from agentgate.config.schema import AvatarConfig
from agentgate.errors import AvatarError, ErrorCode, GatewayError
from agentgate.utils.backoff import BackoffPolicy

GLTF_MAGIC = 0x46546C67  # 'glTF'
GLTF_VERSION = 2


def validate_vrm(data: bytes, max_bytes: int) -> None:
    """
    校验 VRM 二进制数据。

    异常:
        AvatarError: reason 为 too_large / too_small / bad_magic / bad_version
    """
    if len(data) > max_bytes:
        raise AvatarError(AvatarError.TOO_LARGE, f"VRM exceeds max size of {max_bytes // (1024 * 1024)}MB")
    if len(data) < 12:
        raise AvatarError(AvatarError.TOO_SMALL, "File too small to be a valid VRM")
    magic, version = struct.unpack_from("<II", data, 0)
    if magic != GLTF_MAGIC:
        raise AvatarError(AvatarError.BAD_MAGIC, "Invalid VRM file: missing glTF magic bytes")
    if version != GLTF_VERSION:
        raise AvatarError(AvatarError.BAD_VERSION, "Invalid VRM file: must be glTF version 2")


def _is_transient(e: Exception) -> bool:
    """连接错误、超时和 5xx 响应值得重试；4xx 和校验错误不重试。"""
    if isinstance(e, httpx.HTTPStatusError):
        return e.response.status_code >= 500
    return isinstance(e, httpx.TransportError)


class AvatarProxy:
    """
    头像解析与代理服务（进程内单例，所有会话共享）。

    属性:
        config: 头像配置
        api_url: 世界服务 HTTP API 地址（上传接口所在）
        library: 内置头像库
        safe_hosts: CORS 安全的主机集合（含世界服务自身的主机）
    """

    def __init__(
        self,
        config: AvatarConfig,
        api_url: str,
        library: AvatarLibrary | None = None,
        client: httpx.AsyncClient | None = None,
        backoff: BackoffPolicy | None = None,
    ):
        self.config = config
        self.api_url = api_url.rstrip("/")
        self.library = library or AvatarLibrary(config.assets_base_url)
        self.safe_hosts: set[str] = set(config.cors_safe_hosts)
        world_host = urlparse(api_url).hostname
        if world_host:
            self.safe_hosts.add(world_host)

        self._client = client or httpx.AsyncClient(timeout=config.download_timeout_s)
        self._owns_client = client is None
        self._backoff = backoff or BackoffPolicy.from_config(config.retry)

        self._lock = asyncio.Lock()
        self._cache: dict[str, str | AvatarError] = {}  # 外部 URL → 本地 URL 或校验错误
        self._inflight: dict[str, asyncio.Task] = {}

    @property
    def max_bytes(self) -> int:
        return self.config.max_upload_bytes

    def is_cors_safe(self, url: str) -> bool:
        """浏览器能否直接加载该 URL。asset:// 和无法解析的 URL 一律视为安全（原样透传）。"""
        if not url or url.startswith("asset://"):
            return True
        try:
            host = urlparse(url).hostname
        except ValueError:
            return True
        if host is None:
            return True
        return host in self.safe_hosts

    async def resolve(self, ref: Any) -> tuple[str | None, str | None]:
        """
        将 spawn 请求中的头像引用解析为最终 URL。

        头像问题永远不会导致 spawn 失败：无法识别或无法加载的头像
        解析为 None（世界服务使用其默认头像），并返回一条警告。

        返回:
            (avatar_url, warning)，未指定头像时为 (None, None)

        异常:
            GatewayError(INVALID_PARAMS): ref 既不是字符串也不是 None
        """
        if ref is None or ref == "":
            return None, None
        if not isinstance(ref, str):
            raise GatewayError(ErrorCode.INVALID_PARAMS, "avatar must be a string")

        url = self.library.resolve_ref(ref)
        if url is None:
            logger.info(f"Unknown avatar reference {ref!r}, using default")
            return None, f"Unknown avatar reference: {ref}. Using default avatar."

        if self.is_cors_safe(url):
            return url, None

        try:
            return await self.proxy(url), None
        except AvatarError as e:
            logger.warning(f"Avatar proxy failed for {url}: {e.message}")
            return None, f"Avatar failed to load: {e.message}. Using default avatar."

    async def proxy(self, url: str) -> str:
        """
        下载外部 VRM 并转存到世界资源服务器，返回本地 URL（单飞 + 缓存）。

        异常:
            AvatarError: 下载、校验或上传失败
        """
        async with self._lock:
            cached = self._cache.get(url)
            if isinstance(cached, AvatarError):
                raise AvatarError(cached.reason, cached.message, cached.code)
            if cached is not None:
                return cached

            task = self._inflight.get(url)
            if task is None:
                task = asyncio.create_task(self._proxy_uncached(url))
                self._inflight[url] = task
                task.add_done_callback(lambda t, u=url: self._on_proxy_done(u, t))

        # shield：某个等待者被取消时，共享任务继续运行，其他等待者不受影响
        return await asyncio.shield(task)

    def _on_proxy_done(self, url: str, task: asyncio.Task) -> None:
        self._inflight.pop(url, None)
        if not task.cancelled():
            # 所有等待者都已离开时，避免 "exception was never retrieved" 警告
            task.exception()

    async def _proxy_uncached(self, url: str) -> str:
        try:
            data = await self.download(url)
            validate_vrm(data, self.max_bytes)
            local_url, _ = await self.upload(data, "avatar.vrm")
        except AvatarError as e:
            if e.is_validation_failure:
                self._cache[url] = e
            raise
        self._cache[url] = local_url
        logger.info(f"Avatar proxied: {url} -> {local_url}")
        return local_url

    async def download(self, url: str) -> bytes:
        """
        流式下载外部文件，超过大小上限立即中止。暂时性错误按退避策略重试。

        异常:
            AvatarError: download_failed 或 too_large
        """
        try:
            return await self._backoff.run(
                lambda: self._download_once(url),
                is_transient=_is_transient,
                label=f"Avatar download {url}",
            )
        except httpx.HTTPStatusError as e:
            raise AvatarError(
                AvatarError.DOWNLOAD_FAILED, f"Failed to download VRM: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise AvatarError(AvatarError.DOWNLOAD_FAILED, f"Failed to download VRM: {e}") from e

    async def _download_once(self, url: str) -> bytes:
        limit = self.max_bytes
        too_large = AvatarError(AvatarError.TOO_LARGE, f"VRM exceeds max size of {limit // (1024 * 1024)}MB")

        async with self._client.stream("GET", url, follow_redirects=True) as response:
            response.raise_for_status()
            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > limit:
                raise too_large

            chunks: list[bytes] = []
            total = 0
            async for chunk in response.aiter_bytes():
                total += len(chunk)
                if total > limit:
                    raise too_large
                chunks.append(chunk)
        return b"".join(chunks)

    async def upload(self, data: bytes, filename: str = "avatar.vrm") -> tuple[str, str | None]:
        """
        校验并上传 VRM 到世界资源服务器（multipart/form-data，字段名 file）。

        返回:
            (url, hash)

        异常:
            AvatarError: 校验失败（INVALID_PARAMS）或上传失败（UPLOAD_FAILED）
        """
        validate_vrm(data, self.max_bytes)

        def failed(message: str) -> AvatarError:
            return AvatarError(AvatarError.UPLOAD_FAILED, message, code=ErrorCode.UPLOAD_FAILED)

        try:
            response = await self._client.post(
                f"{self.api_url}/api/avatar/upload",
                files={"file": (filename, data, "application/octet-stream")},
            )
        except httpx.HTTPError as e:
            raise failed(f"Upload failed: {e}") from e

        if not response.is_success:
            raise failed(f"Upload failed: {response.status_code} {response.text[:200]}")
        try:
            result = response.json()
        except ValueError as e:
            raise failed("Upload failed: invalid response from asset server") from e
        if not isinstance(result, dict) or not result.get("url"):
            raise failed("Upload failed: asset server returned no url")

        logger.info(f"Uploaded avatar {filename} ({len(data)} bytes) -> {result['url']}")
        return result["url"], result.get("hash")

    async def close(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        if self._owns_client:
            await self._client.aclose()
