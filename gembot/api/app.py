"""
FastAPI 应用装配。

create_app() 负责把所有服务实例装配好并挂到 app.state 上：
    config / sessions / roles / provider / conversation / channels / sweeper

lifespan 只负责后台部分的启停（会话清扫任务、LINE 渠道的 HTTP 连接池）。
测试中不进入 lifespan 也能直接调用所有接口。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from gembot import __version__
from gembot.agent.conversation import ConversationService
from gembot.api.errors import register_exception_handlers
from gembot.api.routes import admin, gemini, line
from gembot.channels.manager import ChannelManager
from gembot.config.schema import Config
from gembot.providers.base import LLMProvider
from gembot.providers.litellm_provider import LiteLLMProvider
from gembot.roles.service import RoleService
from gembot.session.manager import SessionStore
from gembot.session.sweeper import SessionSweeper
from gembot.utils.helpers import timestamp


def build_provider(config: Config) -> LiteLLMProvider:
    gemini_cfg = config.providers.gemini
    defaults = config.agents.defaults
    return LiteLLMProvider(
        api_key=gemini_cfg.api_key or None,
        api_base=gemini_cfg.api_base,
        default_model=defaults.model,
        extra_headers=gemini_cfg.extra_headers,
        top_p=defaults.top_p,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config: Config = app.state.config
    logger.info("Starting gembot gateway...")

    if not config.auth_enabled:
        logger.warning("API authentication disabled in development mode (no valid apiSecretKey set)")

    await app.state.sweeper.start()
    await app.state.channels.start_all()
    logger.info(f"Gateway ready on {config.gateway.host}:{config.gateway.port}")

    yield

    logger.info("Shutting down gembot gateway...")
    app.state.sweeper.stop()
    await app.state.channels.stop_all()


def create_app(
    config: Config | None = None,
    provider: LLMProvider | None = None,
    sessions: SessionStore | None = None,
    roles: RoleService | None = None,
) -> FastAPI:
    """
    创建 FastAPI 应用。

    参数:
        config: 全局配置（为空时使用默认配置）
        provider / sessions / roles: 可注入的服务实例（测试用），为空时按配置创建
    """
    if config is None:
        config = Config()
    if provider is None:
        provider = build_provider(config)
    if sessions is None:
        sessions = SessionStore(session_timeout=config.sessions.timeout_s)
    if roles is None:
        roles = RoleService(config.roles.file_path)

    defaults = config.agents.defaults
    conversation = ConversationService(
        sessions,
        roles,
        provider,
        default_model=defaults.model,
        max_tokens=defaults.max_tokens,
        temperature=defaults.temperature,
    )

    app = FastAPI(
        title="gembot API",
        description="Gemini + LINE bot gateway with role-aware conversation sessions",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.sessions = sessions
    app.state.roles = roles
    app.state.provider = provider
    app.state.conversation = conversation
    app.state.channels = ChannelManager(config, conversation.handle_inbound)
    app.state.sweeper = SessionSweeper(
        sessions,
        interval_s=config.sessions.sweep_interval_s,
        enabled=config.sessions.sweep_enabled,
        prune=conversation.prune,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.gateway.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "x-api-key"],
    )

    register_exception_handlers(app, production=config.is_production)

    app.include_router(gemini.router, prefix="/api/gemini", tags=["Gemini"])
    app.include_router(line.router, prefix="/line", tags=["LINE"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": "gembot",
            "version": __version__,
            "status": "running",
            "environment": config.gateway.environment,
        }

    @app.get("/health", tags=["Health"])
    async def health():
        return {
            "status": "healthy",
            "timestamp": timestamp(),
            "sessions": sessions.stats().to_dict(),
            "sweeper": "running" if app.state.sweeper.is_running else "stopped",
            "channels": app.state.channels.enabled_channels,
        }

    return app
