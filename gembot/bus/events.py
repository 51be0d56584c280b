"""
消息事件类型定义模块 - 渠道与对话服务之间传递的数据结构。

本模块定义了两个核心数据类：
- InboundMessage：入站消息（从 LINE 渠道到 ConversationService）
- OutboundMessage：出站消息（从 ConversationService 回到渠道）

渠道只负责把平台原生事件翻译成 InboundMessage、把 OutboundMessage 翻译回
平台 API 调用；角色解析、会话维护与 Gemini 调用都不需要知道 LINE 的事件格式。

【Java 开发者类比】
- 使用 Python 的 @dataclass 装饰器，等价于 Java 的 record 类或 Lombok 的 @Data
- @property 等价于 Java 的 getter 方法

【身份键】
session_key 把 (渠道, bot, 聊天窗口, 发送者) 组合成一个字符串，
ConversationService 用它在"身份 → 会话 ID"表里查找当前会话。
同一个群里的不同成员各自拥有独立的会话。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# 消息内容类型
CONTENT_TEXT = "text"
CONTENT_STICKER = "sticker"


@dataclass
class InboundMessage:
    """
    入站消息 - 从聊天渠道接收到的用户消息。

    属性:
        channel: 消息来源渠道标识（目前只有 'line'）
        sender_id: 发送者唯一标识（LINE userId）
        chat_id: 回复目标（1:1 聊天为 userId，群聊为 groupId / roomId）
        content: 消息文本内容（贴图消息为空串）
        content_type: 'text' 或 'sticker'
        bot_id: 接收消息的 bot（webhook 中的 destination）
        group_id: 群组 / 聊天室 ID，1:1 聊天为 None
        reply_token: LINE 回复令牌（一次性，约 1 分钟内有效）
        timestamp: 接收时间戳
        metadata: 渠道特有的附加数据（如贴图的 packageId / stickerId）
    """

    channel: str
    sender_id: str
    chat_id: str
    content: str
    content_type: str = CONTENT_TEXT
    bot_id: str | None = None
    group_id: str | None = None
    reply_token: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_sticker(self) -> bool:
        return self.content_type == CONTENT_STICKER

    @property
    def session_key(self) -> str:
        """
        生成身份键。

        格式为 "channel:bot:chat_id:sender_id"，例如 "line:U0bot:C123:U456"，
        没有 bot ID 时以 "-" 占位。
        """
        return f"{self.channel}:{self.bot_id or '-'}:{self.chat_id}:{self.sender_id}"


@dataclass
class OutboundMessage:
    """
    出站消息 - 要发送回聊天渠道的回复。

    属性:
        channel: 目标渠道标识
        chat_id: 目标聊天窗口（push 接口的 to 字段）
        content: 回复文本内容
        bot_id: 由哪个 bot 发送（决定使用哪个 access token）
        reply_token: 有值时优先走 reply 接口，否则走 push 接口
        metadata: 渠道特有的附加数据
    """

    channel: str
    chat_id: str
    content: str
    bot_id: str | None = None
    reply_token: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
