"""
渠道管理器模块 - 管理所有 LINE bot 的生命周期与签名路由。

本模块负责：
1. 根据配置为每个 LINE 官方账号创建一个 LineChannel
2. 统一启动 / 停止所有渠道
3. Webhook 到达时，用每个 bot 的 secret 依次校验签名，找出这次推送属于哪个 bot

【Java 开发者类比】
- ChannelManager 相当于 Spring 的 ApplicationContext 中一组同类型 Bean 的注册表
- match_signature() 相当于按请求特征选择处理器的 HandlerMapping
"""

from loguru import logger

from gembot.channels.base import BaseChannel, MessageHandler
from gembot.channels.line import LineChannel
from gembot.config.schema import Config


class ChannelManager:
    """
    渠道管理器。

    属性:
        config: 全局配置对象
        handler: 对话服务入口，所有渠道共享
        channels: 已初始化的渠道字典 {渠道名: 渠道实例}
    """

    def __init__(self, config: Config, handler: MessageHandler):
        self.config = config
        self.handler = handler
        self.channels: dict[str, BaseChannel] = {}

        self._init_channels()

    def _init_channels(self) -> None:
        """为每个配置了 secret 的 LINE bot 创建渠道实例。"""
        line = self.config.channels.line
        if not line.enabled:
            logger.info("LINE channel disabled")
            return

        for index, bot in enumerate(line.bots, start=1):
            if not bot.channel_secret or not bot.channel_access_token:
                logger.warning(f"LINE bot #{index} is missing channelSecret or channelAccessToken, skipped")
                continue
            name = f"line:{bot.name or index}"
            self.channels[name] = LineChannel(bot, self.handler, api_base=line.api_base)
            logger.info(f"LINE bot {name} enabled")

    def match_signature(self, body: bytes, signature: str) -> LineChannel | None:
        """
        依次用每个 bot 的 secret 校验签名。

        返回:
            签名匹配的渠道；全部不匹配时返回 None
        """
        for name, channel in self.channels.items():
            if isinstance(channel, LineChannel) and channel.verify_signature(body, signature):
                logger.debug(f"Signature matched {name}")
                return channel
        logger.error(f"Signature validation failed for all {len(self.channels)} configured bots")
        return None

    def get_channel(self, name: str) -> BaseChannel | None:
        return self.channels.get(name)

    async def start_all(self) -> None:
        if not self.channels:
            logger.warning("No channels enabled")
            return

        for name, channel in self.channels.items():
            try:
                await channel.start()
            except Exception as e:
                logger.error(f"Failed to start channel {name}: {e}")

    async def stop_all(self) -> None:
        logger.info("Stopping all channels...")
        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info(f"Stopped {name} channel")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

    def get_status(self) -> dict[str, dict[str, bool]]:
        """获取所有渠道的运行状态。"""
        return {
            name: {"enabled": True, "running": channel.is_running}
            for name, channel in self.channels.items()
        }

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels.keys())
