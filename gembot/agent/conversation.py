"""
对话服务 - 把"一条消息进来"变成"一条回复出去"。

ConversationService 串起三个协作方：
- RoleService：身份 → 角色（人设种子对话、Gemini 模型、贴图回复）
- SessionStore：会话 ID → 对话历史
- LLMProvider：对话历史 → Gemini 回复

它自己维护第三张表：身份键（InboundMessage.session_key）→ 当前会话 ID。
会话存储不知道"谁"在用某个会话，对话服务不关心会话怎么过期。

【一条 LINE 消息的处理流程】
1. 解析角色（bot > 用户 > 群组 > 默认）
2. 按身份键找当前会话；会话已过期、不存在，或角色已变更 → 新建会话（旧会话删除）
3. 新会话先写入人设种子对话（user / assistant 各一条）
4. 贴图消息直接回复角色的 sticker_reply_text，不调用 Gemini
5. 追加用户消息 → 带完整历史调用 Gemini → 追加回复 → 写回会话
6. Gemini 失败：撤回本轮用户消息，回复固定的致歉文本

【Java 开发者类比】
- ConversationService 相当于 Spring 的 @Service，编排多个 Repository 与外部 Client
- _identities 相当于一个 Map<String, String> 形式的二级索引，由 prune() 随会话清扫一起清理
- _locks 相当于按 key 分段的 ReentrantLock 表，最后一个使用者释放后移除
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from gembot.bus.events import InboundMessage, OutboundMessage
from gembot.providers.base import LLMProvider, ProviderError
from gembot.roles.schema import RoleProfile
from gembot.roles.service import RoleService
from gembot.session.manager import SessionNotFound, SessionStore
from gembot.utils.helpers import truncate_string

# Gemini 调用失败时回复给用户的固定文本
APOLOGY_TEXT = "抱歉，系統暫時無法回應，請稍後再試。"

# 重新开始对话的文本指令
RESET_COMMANDS = ("重新開始", "/reset")
RESET_REPLY = "好的，我們重新開始吧！"

# REST 接口沿用 Gemini 的 "model" 角色名，存入会话前统一为 "assistant"
_ROLE_ALIASES = {"model": "assistant"}


@dataclass
class ChatResult:
    """
    REST 对话接口的结果。

    属性:
        reply: Gemini 的回复文本
        history: 写回会话的完整历史（含种子对话与本轮回复）
        session_id: 会话 ID（新建会话时为新 ID）
        model: 实际使用的模型
        role_id: 会话所属角色
    """
    reply: str
    history: list[dict[str, str]] = field(default_factory=list)
    session_id: str = ""
    model: str | None = None
    role_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reply": self.reply,
            "conversationHistory": self.history,
            "sessionId": self.session_id,
            "model": self.model,
            "roleId": self.role_id,
        }


@dataclass
class _IdentityLock:
    """身份锁，以及正在持有或等待它的协程数。"""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def normalize_messages(messages: list[dict[str, Any]]) -> list[dict[str, str]]:
    """只保留 role / content，并把 "model" 角色改写为 "assistant"。"""
    return [
        {"role": _ROLE_ALIASES.get(m["role"], m["role"]), "content": m["content"]}
        for m in messages
    ]


class ConversationService:
    """
    对话服务。

    属性:
        sessions: 会话存储
        roles: 角色服务
        provider: Gemini 提供者
        default_model: 没有角色时使用的模型
        max_tokens / temperature: 调用参数
    """

    def __init__(
        self,
        sessions: SessionStore,
        roles: RoleService,
        provider: LLMProvider,
        default_model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.7,
    ):
        self.sessions = sessions
        self.roles = roles
        self.provider = provider
        self.default_model = default_model or provider.get_default_model()
        self.max_tokens = max_tokens
        self.temperature = temperature

        self._identities: dict[str, str] = {}
        self._locks: dict[str, _IdentityLock] = {}

    # ------------------------------------------------------------------
    # 身份 → 会话
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _identity_lock(self, key: str) -> AsyncIterator[None]:
        """串行化同一身份的消息处理。最后一个使用者退出时丢弃这把锁。"""
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _IdentityLock()

        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(key, None)

    def _session_for(self, key: str, role: RoleProfile) -> str:
        """
        取身份当前的会话；需要时新建并写入种子对话。

        会话不存在 / 已过期，或者会话角色与当前解析出的角色不同，都会新建会话。
        """
        session_id = self._identities.get(key)
        session = self.sessions.get_session(session_id) if session_id else None

        if session is not None and session.role_id != role.role_id:
            logger.info(f"Role changed for {key}: {session.role_id} -> {role.role_id}, starting new session")
            self.sessions.delete_session(session.id)
            session = None

        if session is None:
            session_id = self.sessions.create_session(role_id=role.role_id)
            self._identities[key] = session_id
            logger.debug(f"New session {session_id} for {key} (role {role.role_id})")
        else:
            session_id = session.id

        if not self.sessions.get_messages(session_id):
            self.sessions.update_session(session_id, role.seed_messages())

        return session_id

    def reset(self, session_key: str) -> bool:
        """忘记一个身份的会话。返回是否真的有会话被清除。"""
        session_id = self._identities.pop(session_key, None)
        if session_id is None:
            return False
        self.sessions.delete_session(session_id)
        logger.info(f"Session reset for {session_key}")
        return True

    def get_session_id(self, session_key: str) -> str | None:
        return self._identities.get(session_key)

    def prune(self) -> int:
        """
        丢弃会话已不存在（过期、被删除或被清空）的身份条目。

        由 SessionSweeper 在每次清扫后调用。

        返回:
            丢弃的条目数
        """
        stale = [
            key for key, session_id in self._identities.items()
            if not self.sessions.has_session(session_id)
        ]
        for key in stale:
            del self._identities[key]
        if stale:
            logger.debug(f"Pruned {len(stale)} identities without a live session")
        return len(stale)

    def _write_back(self, key: str, session_id: str, messages: list[dict[str, str]]) -> None:
        """写回会话历史。会话在 AI 调用期间被删掉时只记录警告，回复照常发送。"""
        try:
            self.sessions.update_session(session_id, messages)
        except SessionNotFound:
            logger.warning(f"Session {session_id} for {key} was removed during the AI call, history not stored")

    # ------------------------------------------------------------------
    # 渠道消息
    # ------------------------------------------------------------------

    async def handle_inbound(
        self,
        msg: InboundMessage,
        role: RoleProfile | None = None,
    ) -> OutboundMessage | None:
        """
        处理一条渠道消息并给出回复。

        参数:
            msg: 入站消息
            role: 指定角色（CLI 调试用）；为空时按身份解析

        返回:
            要发送的回复；空文本消息返回 None
        """
        if not msg.is_sticker and not msg.content.strip():
            return None

        key = msg.session_key
        if msg.content.strip() in RESET_COMMANDS:
            self.reset(key)
            return self._reply(msg, RESET_REPLY)

        if role is None:
            role = self.roles.resolve_role(msg.sender_id, msg.group_id, msg.bot_id)

        async with self._identity_lock(key):
            session_id = self._session_for(key, role)

            if msg.is_sticker:
                logger.info(f"Sticker from {key}, replying with role {role.role_id} canned text")
                return self._reply(msg, role.sticker_reply_text)

            preview = truncate_string(msg.content, 80)
            logger.info(f"Processing message from {msg.channel}:{msg.sender_id} (role {role.role_id}): {preview}")

            history = self.sessions.get_messages(session_id) or []
            transcript = self.sessions.add_message(session_id, "user", msg.content).messages
            transcript = [dict(m) for m in transcript]

            response = await self.provider.chat(
                transcript,
                model=role.gemini_model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )

            if response.is_error or not response.content:
                logger.error(f"AI reply failed for {key}: {response.content}")
                self._write_back(key, session_id, history)
                return self._reply(msg, APOLOGY_TEXT)

            transcript.append({"role": "assistant", "content": response.content})
            self._write_back(key, session_id, transcript)
            return self._reply(msg, response.content)

    @staticmethod
    def _reply(msg: InboundMessage, content: str) -> OutboundMessage:
        return OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=content,
            bot_id=msg.bot_id,
            reply_token=msg.reply_token,
        )

    async def process_direct(
        self,
        content: str,
        role_id: str | None = None,
        session_key: str = "cli:direct",
    ) -> str:
        """
        直接处理一条文本（CLI `gembot agent` 使用），返回回复文本。

        参数:
            content: 消息文本
            role_id: 指定角色；为空时使用默认角色
            session_key: 用于拆分 channel 与 chat_id 的会话键
        """
        channel, chat_id = session_key.split(":", 1) if ":" in session_key else ("cli", session_key)
        msg = InboundMessage(channel=channel, sender_id="user", chat_id=chat_id, content=content)
        role = self.roles.get_role(role_id) if role_id else None
        reply = await self.handle_inbound(msg, role=role)
        return reply.content if reply else ""

    # ------------------------------------------------------------------
    # REST 对话
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        session_id: str | None = None,
        role_id: str | None = None,
    ) -> ChatResult:
        """
        REST 多轮对话。

        参数:
            messages: 本轮新增消息（role 为 user / model / assistant）
            model: 指定模型；为空时用角色的模型，再为空时用默认模型
            session_id: 续接的会话；不存在或已过期时新建
            role_id: 会话使用的角色（决定种子对话和模型）。与已有会话的角色不同时，
                开一个新会话，旧会话在本轮成功后删除

        异常:
            ProviderError: Gemini 调用失败
        """
        role = self.roles.get_role(role_id) if role_id else None

        session = self.sessions.get_session(session_id) if session_id else None
        superseded = None
        if session is not None and role is not None and session.role_id != role.role_id:
            logger.info(f"Session {session.id} belongs to role {session.role_id}, starting new session for {role.role_id}")
            superseded, session = session.id, None
        elif session is None and session_id:
            logger.info(f"Session {session_id} not found or expired, creating new session")

        created = session is None
        if created:
            session_role = role.role_id if role else None
            session_id = self.sessions.create_session(role_id=session_role)
            prior = role.seed_messages() if role else []
        else:
            session_role = session.role_id
            session_id = session.id
            prior = [dict(m) for m in session.messages]

        model = model or (role.gemini_model if role else self.default_model)
        transcript = prior + normalize_messages(messages)

        response = await self.provider.chat(
            transcript,
            model=model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if response.is_error or response.content is None:
            if created:
                self.sessions.delete_session(session_id)
            raise ProviderError(f"Gemini chat failed: {response.content}", model)

        transcript.append({"role": "assistant", "content": response.content})
        try:
            self.sessions.update_session(session_id, transcript)
        except SessionNotFound:
            logger.warning(f"Session {session_id} was removed during the AI call, storing reply in a new session")
            session_id = self.sessions.create_session(role_id=session_role)
            self.sessions.update_session(session_id, transcript)

        if superseded:
            self.sessions.delete_session(superseded)

        return ChatResult(
            reply=response.content,
            history=transcript,
            session_id=session_id,
            model=response.model or model,
            role_id=session_role,
        )
