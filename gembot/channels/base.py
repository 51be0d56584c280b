"""
渠道基类模块 - 定义所有消息渠道的统一接口。

本模块提供了 BaseChannel 抽象基类，具体渠道（目前是 LINE）
继承此基类并实现其抽象方法。

【核心抽象方法】
- start(): 启动渠道（建立 HTTP 连接池等）
- stop(): 停止渠道，释放资源
- send(): 向渠道发送出站消息

【公共能力】
- is_allowed(): 基于白名单的权限控制
- _handle_message(): 模板方法（权限检查 → 构造 InboundMessage → 交给对话服务 → 发送回复）

【Java 开发者类比】
- BaseChannel 相当于 Java 的 abstract class
- _handle_message() 相当于 Template Method 模式中的模板方法
- MessageHandler 相当于一个函数式接口 Function<InboundMessage, CompletableFuture<OutboundMessage>>
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from gembot.bus.events import CONTENT_TEXT, InboundMessage, OutboundMessage

# 对话服务的入口：收到一条入站消息，返回要发送的回复（或 None 表示不回复）
MessageHandler = Callable[[InboundMessage], Awaitable[OutboundMessage | None]]


class BaseChannel(ABC):
    """
    消息渠道抽象基类。

    属性:
        name: 渠道标识名（如 "line"）
        config: 渠道特定的配置对象
        handler: 对话服务入口（通常是 ConversationService.handle_inbound）
    """

    name: str = "base"

    def __init__(self, config: Any, handler: MessageHandler):
        self.config = config
        self.handler = handler
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """启动渠道。"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """停止渠道并清理资源。"""
        pass

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """
        通过该渠道发送出站消息。

        异常:
            发送失败时由实现类抛出，_handle_message() 负责记录日志
        """
        pass

    def is_allowed(self, sender_id: str) -> bool:
        """
        检查发送者是否有权限使用该机器人。

        - 白名单为空 → 允许所有人
        - 白名单非空 → 只允许名单中的用户
        """
        allow_list = getattr(self.config, "allow_from", [])
        if not allow_list:
            return True
        return str(sender_id) in allow_list

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        content_type: str = CONTENT_TEXT,
        bot_id: str | None = None,
        group_id: str | None = None,
        reply_token: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OutboundMessage | None:
        """
        处理来自聊天平台的入站消息（模板方法）。

        1. 权限检查
        2. 构造 InboundMessage
        3. 交给对话服务，拿到回复
        4. 发送回复；发送失败只记录日志，不重试

        返回:
            对话服务给出的回复（被拒绝或无需回复时为 None）
        """
        if not self.is_allowed(sender_id):
            logger.warning(
                f"Access denied for sender {sender_id} on channel {self.name}. "
                f"Add them to allowFrom list in config to grant access."
            )
            return None

        msg = InboundMessage(
            channel=self.name,
            sender_id=str(sender_id),
            chat_id=str(chat_id),
            content=content,
            content_type=content_type,
            bot_id=bot_id,
            group_id=group_id,
            reply_token=reply_token,
            metadata=metadata or {},
        )

        reply = await self.handler(msg)
        if reply is None:
            return None

        try:
            await self.send(reply)
        except Exception as e:
            logger.error(f"Failed to deliver reply on {self.name} to {reply.chat_id}: {e}")
        return reply

    @property
    def is_running(self) -> bool:
        return self._running
