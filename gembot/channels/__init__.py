"""聊天渠道模块 - 目前只有 LINE。"""

from gembot.channels.base import BaseChannel
from gembot.channels.line import LineChannel
from gembot.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelManager", "LineChannel"]
