"""
CLI 命令模块 - gembot 的所有命令行命令定义。

本模块使用 Typer 框架定义 gembot 的 CLI 命令体系：
- onboard：初始化配置文件与角色文件
- gateway：启动 HTTP 网关（Gemini REST 接口 + LINE Webhook + 管理接口）
- agent：在终端里以某个角色直接与 Gemini 对话（单条消息或交互式）
- roles：角色与身份映射管理（list / show / set-default / assign / unassign）
- status：查看配置与运行状态

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（Markdown 渲染、表格）
- prompt_toolkit：交互式输入（历史记录、行编辑）
"""

import asyncio

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from gembot import __logo__, __version__

app = typer.Typer(
    name="gembot",
    help=f"{__logo__} gembot - Gemini + LINE bot gateway",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} gembot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """gembot CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


def _role_service(config=None):
    from gembot.config.loader import load_config
    from gembot.roles.service import RoleService

    config = config or load_config()
    return RoleService(config.roles.file_path)


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 gembot 配置。

    1. 在 ~/.gembot/ 下创建默认配置文件 config.json
    2. 创建只含默认客服角色的 roles.json（已存在则保留）
    3. 打印后续操作指引
    """
    from gembot.config.loader import get_config_path, save_config
    from gembot.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    roles = _role_service(config)
    if roles.ensure_config():
        console.print(f"[green]✓[/green] Created role config at {roles.config_path}")
    else:
        console.print(f"[dim]Role config kept at {roles.config_path}[/dim]")

    console.print(f"\n{__logo__} gembot is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your Gemini API key to [cyan]~/.gembot/config.json[/cyan]")
    console.print("     Get one at: https://aistudio.google.com/apikey")
    console.print("  2. Add your LINE channel secret / access token under [cyan]channels.line.bots[/cyan]")
    console.print("  3. Chat: [cyan]gembot agent -m \"你好\"[/cyan]")
    console.print("  4. Serve: [cyan]gembot gateway[/cyan]")


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    host: str = typer.Option(None, "--host", help="Bind address (overrides config)"),
    port: int = typer.Option(None, "--port", "-p", help="Gateway port (overrides config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 gembot 网关服务。

    装配会话存储、角色服务、Gemini 提供者、对话服务与 LINE 渠道，
    由 uvicorn 托管 FastAPI 应用；会话清扫任务随应用生命周期启停。
    """
    import uvicorn

    from gembot.api.app import create_app
    from gembot.config.loader import load_config
    from gembot.utils.log import setup_logging

    config = load_config()
    if host:
        config.gateway.host = host
    if port:
        config.gateway.port = port

    log_dir = setup_logging(config.logging, verbose=verbose)

    console.print(f"{__logo__} Starting gembot gateway on {config.gateway.host}:{config.gateway.port}...")
    if log_dir:
        console.print(f"[green]✓[/green] Logs: {log_dir}")

    application = create_app(config)
    channels = application.state.channels.enabled_channels
    if channels:
        console.print(f"[green]✓[/green] LINE bots: {', '.join(channels)}")
    else:
        console.print("[yellow]Warning: No LINE bots configured[/yellow]")
    console.print(f"[green]✓[/green] Sessions: expire after {config.sessions.timeout_s}s idle")

    uvicorn.run(
        application,
        host=config.gateway.host,
        port=config.gateway.port,
        log_level="debug" if verbose else config.logging.level.lower(),
    )


# ============================================================================
# Agent Commands
# ============================================================================


def _print_agent_response(response: str, render_markdown: bool) -> None:
    content = response or ""
    body = Markdown(content) if render_markdown else Text(content)
    console.print()
    console.print(f"[cyan]{__logo__} gembot[/cyan]")
    console.print(body)
    console.print()


@app.command()
def agent(
    message: str = typer.Option(None, "--message", "-m", help="Message to send"),
    role: str = typer.Option(None, "--role", "-r", help="Role ID to talk to (default role if omitted)"),
    markdown: bool = typer.Option(True, "--markdown/--no-markdown", help="Render replies as Markdown"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs during chat"),
):
    """
    在终端里直接与某个角色对话。

    - 单条消息模式：gembot agent -m "你好" --role sales
    - 交互模式：gembot agent（输入 exit 或 Ctrl+C 退出）
    """
    from loguru import logger

    from gembot.agent.conversation import ConversationService
    from gembot.api.app import build_provider
    from gembot.config.loader import load_config
    from gembot.session.manager import SessionStore

    config = load_config()

    if logs:
        logger.enable("gembot")
    else:
        logger.disable("gembot")

    roles = _role_service(config)
    if role and not roles.role_exists(role):
        console.print(f"[red]Role {role} not found[/red]")
        raise typer.Exit(1)

    defaults = config.agents.defaults
    conversation = ConversationService(
        SessionStore(session_timeout=config.sessions.timeout_s),
        roles,
        build_provider(config),
        default_model=defaults.model,
        max_tokens=defaults.max_tokens,
        temperature=defaults.temperature,
    )

    def _thinking_ctx():
        if logs:
            from contextlib import nullcontext
            return nullcontext()
        return console.status("[dim]gembot is thinking...[/dim]", spinner="dots")

    if message:
        async def run_once():
            with _thinking_ctx():
                response = await conversation.process_direct(message, role_id=role)
            _print_agent_response(response, render_markdown=markdown)

        asyncio.run(run_once())
        return

    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import HTML
    from prompt_toolkit.history import FileHistory
    from prompt_toolkit.patch_stdout import patch_stdout

    from gembot.utils.helpers import ensure_dir, get_data_path

    history_file = ensure_dir(get_data_path() / "history") / "cli_history"
    session = PromptSession(history=FileHistory(str(history_file)), multiline=False)
    console.print(f"{__logo__} Interactive mode (type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)\n")

    async def run_interactive():
        while True:
            try:
                with patch_stdout():
                    user_input = await session.prompt_async(HTML("<b fg='ansiblue'>You:</b> "))
            except (KeyboardInterrupt, EOFError):
                console.print("\nGoodbye!")
                break

            command = user_input.strip()
            if not command:
                continue
            if command.lower() in EXIT_COMMANDS:
                console.print("\nGoodbye!")
                break

            with _thinking_ctx():
                response = await conversation.process_direct(command, role_id=role)
            _print_agent_response(response, render_markdown=markdown)

    asyncio.run(run_interactive())


# ============================================================================
# Role Commands
# ============================================================================


roles_app = typer.Typer(help="Manage roles and identity mappings")
app.add_typer(roles_app, name="roles")

_MAPPING_KINDS = ("user", "group", "bot")


@roles_app.command("list")
def roles_list():
    """以表格形式列出所有角色。"""
    roles = _role_service()
    default_role = roles.get_default_role()

    table = Table(title="Roles")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Model")
    table.add_column("Default")

    for profile in roles.list_roles():
        is_default = "[green]✓[/green]" if profile.role_id == default_role else ""
        table.add_row(profile.role_id, profile.name, profile.gemini_model, is_default)

    console.print(table)


@roles_app.command("show")
def roles_show(role_id: str = typer.Argument(..., help="Role ID")):
    """显示角色详情及指向它的所有映射。"""
    roles = _role_service()
    if not roles.role_exists(role_id):
        console.print(f"[red]Role {role_id} not found[/red]")
        raise typer.Exit(1)

    profile = roles.get_role(role_id)
    console.print(f"[bold cyan]{profile.role_id}[/bold cyan] - {profile.name}")
    if profile.description:
        console.print(f"[dim]{profile.description}[/dim]")
    console.print(f"Model: {profile.gemini_model}")
    console.print(f"Seed (user): {profile.system_prompt.user}")
    console.print(f"Seed (model): {profile.system_prompt.model}")
    console.print(f"Sticker reply: {profile.sticker_reply_text}")

    mappings = {
        "user": roles.get_user_role_mappings(),
        "group": roles.get_group_role_mappings(),
        "bot": roles.get_bot_role_mappings(),
    }
    for kind, table in mappings.items():
        keys = [key for key, mapped in table.items() if mapped == role_id]
        if keys:
            console.print(f"{kind.title()}s: {', '.join(keys)}")


@roles_app.command("set-default")
def roles_set_default(role_id: str = typer.Argument(..., help="Role ID")):
    """设置默认角色。"""
    from gembot.roles.errors import RoleConfigUnavailable, RoleNotFound

    try:
        _role_service().set_default_role(role_id)
    except (RoleNotFound, RoleConfigUnavailable) as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Default role set to {role_id}")


@roles_app.command("assign")
def roles_assign(
    kind: str = typer.Argument(..., help="Mapping kind: user, group or bot"),
    key: str = typer.Argument(..., help="LINE user / group / bot ID"),
    role_id: str = typer.Argument(..., help="Role ID"),
):
    """为用户 / 群组 / bot 指定角色。"""
    from gembot.roles.errors import RoleConfigUnavailable, RoleNotFound

    if kind not in _MAPPING_KINDS:
        console.print(f"[red]Unknown mapping kind {kind} (expected user, group or bot)[/red]")
        raise typer.Exit(1)

    roles = _role_service()
    setter = {"user": roles.set_user_role, "group": roles.set_group_role, "bot": roles.set_bot_role}[kind]
    try:
        setter(key, role_id)
    except (RoleNotFound, RoleConfigUnavailable) as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {kind} {key} → {role_id}")


@roles_app.command("unassign")
def roles_unassign(
    kind: str = typer.Argument(..., help="Mapping kind: user, group or bot"),
    key: str = typer.Argument(..., help="LINE user / group / bot ID"),
):
    """移除用户 / 群组 / bot 的角色指定。"""
    from gembot.roles.errors import RoleConfigUnavailable

    if kind not in _MAPPING_KINDS:
        console.print(f"[red]Unknown mapping kind {kind} (expected user, group or bot)[/red]")
        raise typer.Exit(1)

    roles = _role_service()
    remover = {"user": roles.remove_user_role, "group": roles.remove_group_role, "bot": roles.remove_bot_role}[kind]
    try:
        removed = remover(key)
    except RoleConfigUnavailable as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    if removed:
        console.print(f"[green]✓[/green] Removed {kind} mapping for {key}")
    else:
        console.print(f"[yellow]No {kind} mapping for {key}[/yellow]")


# ============================================================================
# Status Commands
# ============================================================================


@app.command()
def status():
    """
    显示 gembot 状态。

    展示内容：配置文件、角色文件、日志目录、默认模型、Gemini Key 与 LINE bot 配置情况。
    """
    from gembot.config.loader import get_config_path, load_config
    from gembot.providers.registry import MODELS

    config_path = get_config_path()
    config = load_config()
    roles_path = config.roles.file_path

    console.print(f"{__logo__} gembot Status\n")

    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Roles: {roles_path} {'[green]✓[/green]' if roles_path.exists() else '[red]✗[/red]'}")
    console.print(f"Environment: {config.gateway.environment}")
    console.print(f"API auth: {'[green]enabled[/green]' if config.auth_enabled else '[yellow]disabled[/yellow]'}")
    console.print(f"Model: {config.agents.defaults.model}")
    console.print(f"Gemini: {'[green]✓[/green]' if config.providers.gemini.api_key else '[dim]not set[/dim]'}")

    bots = config.channels.line.bots
    ready = [b for b in bots if b.channel_secret and b.channel_access_token]
    console.print(f"LINE bots: {len(ready)}/{len(bots)} configured")
    console.print(f"Known models: {', '.join(spec.name for spec in MODELS)}")


if __name__ == "__main__":
    app()
