"""
LINE 渠道实现 - Webhook 事件解析、签名校验与 Messaging API 调用。

与轮询 / 长连接类渠道不同，LINE 采用 Webhook 推送：
HTTP 层（gembot/api/routes/line.py）收到请求后，先用 ChannelManager 找到
签名匹配的 bot，再调用该 bot 的 handle_webhook()。本类不监听任何端口。

一个 LineChannel 实例对应一个 LINE 官方账号（一组 channel secret / access token）。

【签名算法】
X-Line-Signature = base64(HMAC-SHA256(channel_secret, 原始请求体))
必须对原始字节计算，不能对重新序列化的 JSON 计算。

【回复方式】
- Reply API：使用事件中的 replyToken（一次性，约 1 分钟有效，不计入推送额度）
- Push API：没有 replyToken 时按 chat_id 主动推送
"""

import asyncio
import base64
import hashlib
import hmac
from typing import Any

import httpx
from loguru import logger

from gembot.bus.events import CONTENT_STICKER, CONTENT_TEXT, OutboundMessage
from gembot.channels.base import BaseChannel, MessageHandler
from gembot.config.schema import LineBotConfig
from gembot.utils.helpers import truncate_string

# LINE 单条文本消息的长度上限
MAX_TEXT_LENGTH = 5000

DEFAULT_API_BASE = "https://api.line.me"


def compute_signature(channel_secret: str, body: bytes) -> str:
    """计算 LINE Webhook 签名。"""
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


class LineChannel(BaseChannel):
    """
    LINE 渠道（单个官方账号）。

    属性:
        config: 该 bot 的配置（secret / token / 白名单）
        api_base: Messaging API 基础 URL
    """

    name = "line"

    def __init__(
        self,
        config: LineBotConfig,
        handler: MessageHandler,
        api_base: str = DEFAULT_API_BASE,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, handler)
        self.api_base = api_base.rstrip("/")
        self._client = client

    @property
    def label(self) -> str:
        return self.config.name or "line"

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        self._running = True
        logger.info(f"LINE bot {self.label} ready")

    async def stop(self) -> None:
        self._running = False
        if self._client:
            await self._client.aclose()
            self._client = None

    def verify_signature(self, body: bytes, signature: str) -> bool:
        """校验 X-Line-Signature（常量时间比较）。未配置 secret 时一律不匹配。"""
        if not self.config.channel_secret or not signature:
            return False
        expected = compute_signature(self.config.channel_secret, body)
        return hmac.compare_digest(expected, signature)

    async def handle_webhook(self, payload: dict[str, Any]) -> int:
        """
        处理一次 Webhook 推送中的全部事件（并发处理）。

        单个事件失败只记录日志，不影响同批次的其他事件。

        返回:
            事件总数
        """
        destination = payload.get("destination")
        events = payload.get("events") or []
        logger.info(f"Webhook received for bot {self.label} ({destination or 'N/A'}), events: {len(events)}")

        results = await asyncio.gather(
            *(self._handle_event(event, destination) for event in events),
            return_exceptions=True,
        )
        for event, result in zip(events, results):
            if isinstance(result, Exception):
                logger.error(f"Error handling LINE event {event.get('type')}: {result}")
        return len(events)

    async def _handle_event(self, event: dict[str, Any], destination: str | None) -> None:
        """处理单个事件：只关心文本和贴图消息，其他事件忽略。"""
        if event.get("type") != "message":
            logger.debug(f"Ignoring LINE event type {event.get('type')}")
            return

        message = event.get("message") or {}
        message_type = message.get("type")
        if message_type == "text":
            content_type, content = CONTENT_TEXT, message.get("text", "")
            metadata = {"message_id": message.get("id")}
        elif message_type == "sticker":
            content_type, content = CONTENT_STICKER, ""
            metadata = {
                "message_id": message.get("id"),
                "package_id": message.get("packageId"),
                "sticker_id": message.get("stickerId"),
            }
        else:
            logger.debug(f"Ignoring LINE message type {message_type}")
            return

        source = event.get("source") or {}
        user_id = source.get("userId")
        if not user_id:
            logger.warning("LINE event without userId, ignoring")
            return

        group_id = source.get("groupId") or source.get("roomId")
        chat_id = group_id or user_id

        await self._handle_message(
            sender_id=user_id,
            chat_id=chat_id,
            content=content,
            content_type=content_type,
            bot_id=destination,
            group_id=group_id,
            reply_token=event.get("replyToken"),
            metadata=metadata,
        )

    async def send(self, msg: OutboundMessage) -> None:
        """
        发送文本回复：有 reply token 时走 Reply API，否则走 Push API。

        异常:
            httpx.HTTPError: 网络错误或 LINE 返回非 2xx
        """
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)

        messages = [{"type": "text", "text": truncate_string(msg.content, MAX_TEXT_LENGTH)}]
        if msg.reply_token:
            url = f"{self.api_base}/v2/bot/message/reply"
            body: dict[str, Any] = {"replyToken": msg.reply_token, "messages": messages}
        else:
            url = f"{self.api_base}/v2/bot/message/push"
            body = {"to": msg.chat_id, "messages": messages}

        response = await self._client.post(
            url,
            json=body,
            headers={"Authorization": f"Bearer {self.config.channel_access_token}"},
        )
        response.raise_for_status()
        logger.debug(f"LINE reply sent to {msg.chat_id} via {'reply' if msg.reply_token else 'push'}")
