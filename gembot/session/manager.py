"""
会话存储实现模块 - 对话历史的内存存储、过期与清扫。

本模块包含三个核心类：
- Session：单个对话会话，维护消息列表、角色 ID 与时间戳
- SessionStats：会话统计快照（总数 / 仍在有效期内的数量）
- SessionStore：会话存储，负责会话的 CRUD、滑动窗口过期和批量清扫

【过期语义】
会话只在 now - last_accessed_at < session_timeout 时有效。
过期的会话即使还在字典里，也被视为"不存在"：
- get_session() 发现过期会顺手删除并返回 None
- sweep_expired() 由后台定时任务调用，清理长时间没人访问的会话
- stats() 中 total 是物理条目数，active 是逻辑有效数

每次成功读取或写入都会刷新 last_accessed_at（滑动窗口，而不是从创建时起算的固定 TTL）。

【错误语义】
"从未存在"和"已过期"统一为 SessionNotFound，调用方一律按"新建会话"处理。

【Java 开发者类比】
- SessionStore 类似于一个带 TTL 的 ConcurrentHashMap（或 Guava Cache 的 expireAfterAccess）
- sweep_expired() 类似于 Guava Cache 的 cleanUp()
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

# 会话中允许出现的消息角色
MESSAGE_ROLES = ("user", "assistant")

# 默认会话闲置过期时间：30 分钟
DEFAULT_SESSION_TIMEOUT_S = 30 * 60


class SessionNotFound(Exception):
    """会话不存在或已过期（两者不作区分）。"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found or expired: {session_id}")


@dataclass
class Session:
    """
    单个对话会话。

    属性:
        id: 会话唯一标识（uuid4 字符串），作为存储的查找键
        role_id: 创建会话时生效的角色 ID；非角色流程创建的会话为 None
        messages: 对话消息列表，每条为 {"role": "user"|"assistant", "content": str}
        created_at: 创建时间（epoch 秒）
        last_accessed_at: 最后访问时间（epoch 秒），每次读写都会刷新
    """

    id: str
    role_id: str | None = None
    messages: list[dict[str, str]] = field(default_factory=list)
    created_at: float = 0.0
    last_accessed_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """序列化为 API 响应格式（camelCase）。"""
        return {
            "id": self.id,
            "roleId": self.role_id,
            "messages": [dict(m) for m in self.messages],
            "createdAt": self.created_at,
            "lastAccessedAt": self.last_accessed_at,
        }


@dataclass
class SessionStats:
    """会话统计快照。"""

    total: int
    active: int

    def to_dict(self) -> dict[str, int]:
        return {"totalSessions": self.total, "activeSessions": self.active}


class SessionStore:
    """
    内存会话存储 - 管理所有对话会话的完整生命周期。

    与具体的消息平台或 AI 后端无关，只负责"会话 ID → 对话历史"的映射。
    进程重启后会话全部丢失（不做持久化）。

    FastAPI 会把同步路由放进线程池执行，所以这里用一把锁
    保护字典的"查找-修改"过程。

    属性:
        session_timeout: 闲置过期时间（秒）
        _clock: 时间源（默认 time.time，测试时可注入假时钟）
        _sessions: 会话字典 {session_id: Session}
    """

    def __init__(
        self,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT_S,
        clock: Callable[[], float] = time.time,
    ):
        self.session_timeout = session_timeout
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def _is_expired(self, session: Session, now: float) -> bool:
        """过期判定：闲置时间达到或超过 session_timeout 即视为过期。"""
        return now - session.last_accessed_at >= self.session_timeout

    def _get_live(self, session_id: str) -> Session | None:
        """
        取出未过期的会话并刷新访问时间（调用方须持有锁）。

        过期的会话会在这里被顺手删除。
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None

        now = self._clock()
        if self._is_expired(session, now):
            del self._sessions[session_id]
            logger.debug(f"Session {session_id} expired on access")
            return None

        session.last_accessed_at = now
        return session

    def create_session(self, role_id: str | None = None) -> str:
        """
        创建新会话。

        参数:
            role_id: 会话所属角色 ID（可选）

        返回:
            新会话的 ID
        """
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            role_id=role_id,
            created_at=now,
            last_accessed_at=now,
        )
        with self._lock:
            self._sessions[session.id] = session
        return session.id

    def get_session(self, session_id: str) -> Session | None:
        """获取会话；不存在或已过期时返回 None。"""
        with self._lock:
            return self._get_live(session_id)

    def has_session(self, session_id: str) -> bool:
        """会话是否存在且未过期。只做判断，不刷新访问时间。"""
        with self._lock:
            session = self._sessions.get(session_id)
            return session is not None and not self._is_expired(session, self._clock())

    def get_messages(self, session_id: str) -> list[dict[str, str]] | None:
        """
        获取会话消息列表的副本。

        返回:
            消息列表（按对话顺序），会话不存在或已过期时返回 None
        """
        with self._lock:
            session = self._get_live(session_id)
            if session is None:
                return None
            return [dict(m) for m in session.messages]

    def add_message(self, session_id: str, role: str, content: str) -> Session:
        """
        向会话追加一条消息。

        参数:
            session_id: 会话 ID
            role: 'user' 或 'assistant'
            content: 消息文本

        返回:
            更新后的会话

        异常:
            SessionNotFound: 会话不存在或已过期
            ValueError: role 不是 user / assistant
        """
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Invalid message role: {role}")

        with self._lock:
            session = self._get_live(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            session.messages.append({"role": role, "content": content})
            return session

    def update_session(self, session_id: str, messages: list[dict[str, str]]) -> Session:
        """
        整体替换会话的消息列表。

        AI 后端返回的是包含新回复的完整历史，调用方用它覆盖旧历史。

        异常:
            SessionNotFound: 会话不存在或已过期
        """
        with self._lock:
            session = self._get_live(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            session.messages = [
                {"role": m["role"], "content": m["content"]} for m in messages
            ]
            return session

    def delete_session(self, session_id: str) -> bool:
        """删除会话（无论是否过期）。返回是否真的删除了条目。"""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear_all(self) -> None:
        """清空所有会话（管理操作）。"""
        with self._lock:
            self._sessions.clear()

    def sweep_expired(self) -> int:
        """
        扫描并删除所有已过期的会话。

        由 SessionSweeper 定时调用，保证长期无人访问的会话不会一直占用内存。

        返回:
            本次删除的会话数量
        """
        with self._lock:
            now = self._clock()
            expired = [
                sid for sid, session in self._sessions.items()
                if self._is_expired(session, now)
            ]
            for sid in expired:
                del self._sessions[sid]
        return len(expired)

    def stats(self) -> SessionStats:
        """返回会话统计：物理条目总数与仍在有效期内的数量。"""
        with self._lock:
            now = self._clock()
            active = sum(
                1 for session in self._sessions.values()
                if not self._is_expired(session, now)
            )
            return SessionStats(total=len(self._sessions), active=active)

    def __len__(self) -> int:
        return len(self._sessions)
