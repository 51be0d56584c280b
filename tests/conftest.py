"""
Shared fixtures: a controllable clock, a scripted Gemini provider,
a role service backed by a temp file and a fully wired FastAPI app.
"""

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from fastapi.testclient import TestClient

from gembot.api.app import create_app
from gembot.config.schema import (
    Config,
    GatewayConfig,
    LineBotConfig,
    LineConfig,
    ChannelsConfig,
    LoggingConfig,
    RolesConfig,
    SessionsConfig,
)
from gembot.providers.base import EmbeddingResult, LLMProvider, LLMResponse, ProviderError
from gembot.roles.service import RoleService
from gembot.session.manager import SessionStore

LINE_SECRET = "test-channel-secret"
LINE_TOKEN = "test-access-token"
API_KEY = "test-api-key"


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(LLMProvider):
    """
    Scripted provider that records every call.

    on_chat runs inside chat() after the call is recorded; gate, when set,
    holds every chat() until the event fires.
    """

    def __init__(self, reply: str = "AI reply", fail: bool = False):
        super().__init__()
        self.reply = reply
        self.fail = fail
        self.on_chat: Callable[[], Any] | None = None
        self.gate: asyncio.Event | None = None
        self.calls: list[dict[str, Any]] = []
        self.tool_calls = []
        self.chunks = ["Hel", "lo"]

    async def chat(self, messages, tools=None, model=None, max_tokens=8192, temperature=0.7):
        self.calls.append({
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "model": model,
        })
        if self.gate is not None:
            await self.gate.wait()
        if self.on_chat is not None:
            self.on_chat()
        if self.fail:
            return LLMResponse(content="Error calling Gemini: boom", finish_reason="error", model=model)
        return LLMResponse(
            content=self.reply,
            tool_calls=list(self.tool_calls),
            usage={"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
            model=model,
        )

    async def stream(self, prompt: str, model: str | None = None) -> AsyncIterator[str]:
        if self.fail:
            raise ProviderError("Gemini streaming failed: boom", model)
        for chunk in self.chunks:
            yield chunk

    async def embed(self, texts: list[str], model: str | None = None) -> EmbeddingResult:
        if self.fail:
            raise ProviderError("Gemini embeddings generation failed: boom", model)
        return EmbeddingResult(embeddings=[[0.1, 0.2, 0.3] for _ in texts], model=model)

    def get_default_model(self) -> str:
        return "gemini-2.0-flash-exp"


ROLE_DOCUMENT = {
    "roles": {
        "customer-service": {
            "name": "客服助理",
            "description": "預設客服助理",
            "systemPrompt": {"user": "你是一個專業的客服助理。", "model": "好的，我會協助客戶。"},
            "geminiModel": "gemini-2.0-flash-exp",
            "stickerReplyText": "謝謝您！",
        },
        "sales": {
            "name": "業務",
            "description": "銷售顧問",
            "systemPrompt": {"user": "你是銷售顧問。", "model": "了解，我來介紹產品。"},
            "geminiModel": "gemini-1.5-pro",
            "stickerReplyText": "感謝支持！",
        },
        "tech": {
            "name": "技術支援",
            "systemPrompt": {"user": "你是技術支援。", "model": "好的。"},
            "geminiModel": "gemini-1.5-flash",
        },
    },
    "userRoleMapping": {"U-sales-user": "sales"},
    "groupRoleMapping": {"C-tech-group": "tech"},
    "botRoleMapping": {},
    "defaultRole": "customer-service",
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(session_timeout=1800, clock=clock)


@pytest.fixture
def roles_path(tmp_path):
    path = tmp_path / "roles.json"
    path.write_text(json.dumps(ROLE_DOCUMENT, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def role_service(roles_path):
    return RoleService(roles_path)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def config(tmp_path, roles_path):
    return Config(
        gateway=GatewayConfig(environment="development", api_secret_key=""),
        sessions=SessionsConfig(sweep_enabled=False),
        roles=RolesConfig(path=str(roles_path)),
        channels=ChannelsConfig(line=LineConfig(bots=[
            LineBotConfig(name="main", channel_secret=LINE_SECRET, channel_access_token=LINE_TOKEN),
        ])),
        logging=LoggingConfig(dir=str(tmp_path / "logs"), file_enabled=False),
    )


@pytest.fixture
def app(config, provider, store, role_service):
    return create_app(config, provider=provider, sessions=store, roles=role_service)


@pytest.fixture
def client(app):
    return TestClient(app)
