"""
FastAPI 依赖项 - API Key 认证与共享服务的获取。

所有服务实例都在 create_app() 中创建并挂在 app.state 上，
路由通过这里的 get_* 函数取用，测试时可以直接替换 app.state 上的对象。
"""

import hmac

from fastapi import Header, HTTPException, Query, Request

from gembot.agent.conversation import ConversationService
from gembot.channels.manager import ChannelManager
from gembot.config.schema import Config
from gembot.providers.base import LLMProvider
from gembot.roles.service import RoleService
from gembot.session.manager import SessionStore


def get_config(request: Request) -> Config:
    return request.app.state.config


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_roles(request: Request) -> RoleService:
    return request.app.state.roles


def get_provider(request: Request) -> LLMProvider:
    return request.app.state.provider


def get_conversation(request: Request) -> ConversationService:
    return request.app.state.conversation


def get_channels(request: Request) -> ChannelManager:
    return request.app.state.channels


async def require_api_key(
    request: Request,
    x_api_key: str | None = Header(None),
    api_key: str | None = Query(None, alias="apiKey"),
) -> None:
    """
    校验 x-api-key 请求头（或 apiKey 查询参数）。

    开发环境且未配置有效密钥时跳过（启动时已记录警告）。
    """
    config = get_config(request)
    if not config.auth_enabled:
        return

    key = x_api_key or api_key
    if not key:
        raise HTTPException(status_code=401, detail="API key is required")
    if not hmac.compare_digest(key.encode("utf-8"), config.gateway.api_secret_key.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid API key")
