"""
会话管理模块 - 管理对话历史的短期内存存储。

本模块提供会话（Session）的完整生命周期管理：创建、读取、追加、整体替换、
删除、清空，以及基于闲置时间的过期与后台清扫。会话只存在于进程内存中。

【架构定位】
会话存储位于 HTTP 路由 / LINE 渠道与 AI 后端之间：
- ConversationService 为每个身份（bot + 用户 + 群组）维护一个会话 ID
- 每轮对话先追加用户消息，再把完整历史发给 Gemini，最后写回带回复的历史
- SessionSweeper 定时清理长时间无人访问的会话
"""

from gembot.session.manager import Session, SessionNotFound, SessionStats, SessionStore
from gembot.session.sweeper import SessionSweeper

__all__ = ["Session", "SessionNotFound", "SessionStats", "SessionStore", "SessionSweeper"]
