"""
CLI 命令模块 - agentgate 的所有命令行命令定义。

本模块使用 Typer 框架定义 agentgate 的 CLI 命令：
- onboard：生成默认配置文件
- gateway：启动网关服务（socket + REST + 纯文本三种协议）
- status：查看配置与已启用的协议
- avatars：列出内置头像库

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格、颜色）
- uvicorn：ASGI 服务器，运行 FastAPI 应用
"""

import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from agentgate import __logo__, __version__

# 创建 Typer 应用实例（CLI 根命令）
app = typer.Typer(
    name="agentgate",
    help=f"{__logo__} agentgate - Agent Session Gateway for shared 3D worlds",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    """版本号回调：当用户传入 --version 参数时，打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} agentgate v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
):
    """agentgate CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """在 ~/.agentgate/ 下生成默认配置文件 config.json。"""
    from agentgate.config.loader import get_config_path, save_config
    from agentgate.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} agentgate is ready!")
    console.print("\nNext steps:")
    console.print("  1. Point [cyan]world.wsUrl[/cyan] and [cyan]world.apiUrl[/cyan] at your world server")
    console.print("  2. Start: [cyan]agentgate gateway[/cyan]")


# ============================================================================
# Gateway / Server
# ============================================================================


@app.command()
def gateway(
    port: int = typer.Option(None, "--port", "-p", help="Gateway port (default from config)"),
    host: str = typer.Option(None, "--host", help="Bind address (default from config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动网关服务。

    执行流程：
    1. 加载配置（~/.agentgate/config.json + AGENTGATE_ 环境变量）
    2. 创建 FastAPI 应用（GatewayService + 已启用的协议适配器）
    3. 交给 uvicorn 运行，Ctrl+C 时优雅退出（释放全部会话）
    """
    import uvicorn

    from agentgate.config.loader import load_config
    from agentgate.gateway.app import create_app

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")

    config = load_config()
    if port is not None:
        config.gateway.port = port
    if host is not None:
        config.gateway.host = host

    console.print(f"{__logo__} Starting agentgate on {config.gateway.host}:{config.gateway.port}...")
    console.print(f"[green]✓[/green] World: {config.world.ws_url}")

    application = create_app(config)
    enabled = application.state.channels.enabled_channels
    if enabled:
        console.print(f"[green]✓[/green] Channels enabled: {', '.join(enabled)}")
    else:
        console.print("[yellow]Warning: No channels enabled[/yellow]")

    uvicorn.run(
        application,
        host=config.gateway.host,
        port=config.gateway.port,
        log_level="debug" if verbose else "info",
        ws_max_size=config.avatars.max_upload_message_bytes,
    )


# ============================================================================
# Status / Avatars
# ============================================================================


@app.command()
def status():
    """显示配置文件、上游世界地址和各协议的启用状态。"""
    from agentgate.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} agentgate Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Listen: {config.gateway.host}:{config.gateway.port}")
    console.print(f"World WebSocket: {config.world.ws_url}")
    console.print(f"World API: {config.world.api_url}")

    table = Table(title="Channels")
    table.add_column("Channel", style="cyan")
    table.add_column("Enabled")
    table.add_column("Path")
    channels = config.channels
    for name, enabled, path in (
        ("socket", channels.socket.enabled, channels.socket.path),
        ("http", channels.http.enabled, "/api"),
        ("plaintext", channels.plaintext.enabled, f"{channels.plaintext.path_prefix}/{{token}}"),
    ):
        table.add_row(name, "[green]✓[/green]" if enabled else "[dim]no[/dim]", path)
    console.print(table)


@app.command()
def avatars():
    """列出内置头像库。spawn 时可用 "library:<id>" 或直接 "<id>" 引用。"""
    from agentgate.avatar.library import AvatarLibrary
    from agentgate.config.loader import load_config

    config = load_config()
    library = AvatarLibrary(config.avatars.assets_base_url)

    table = Table(title="Avatar Library")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("URL", style="dim")
    for entry in library.entries:
        table.add_row(entry.id, entry.name, entry.url)
    console.print(table)


if __name__ == "__main__":
    app()
