"""渠道与对话服务之间的消息事件。"""

from gembot.bus.events import InboundMessage, OutboundMessage

__all__ = ["InboundMessage", "OutboundMessage"]
