"""
日志配置模块 - 基于 loguru 的统一日志输出。

输出目标：
- stderr：按配置级别输出，供容器 / systemd 收集
- 日志目录下的 gembot-{日期}.log：全部级别，按天滚动
- 日志目录下的 error-{日期}.log：仅 ERROR 及以上，管理后台据 "error-" 前缀标记

管理 API（/api/admin/logs）直接读取这个目录下的文件。
"""

import sys
from pathlib import Path

from loguru import logger

from gembot.config.schema import LoggingConfig
from gembot.utils.helpers import get_logs_path

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(config: LoggingConfig, verbose: bool = False) -> Path | None:
    """
    配置 loguru 的输出目标。

    参数:
        config: 日志配置
        verbose: 为 True 时控制台输出降到 DEBUG

    返回:
        日志目录路径（未启用文件日志时返回 None）
    """
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else config.level, format=_FORMAT)

    if not config.file_enabled:
        return None

    log_dir = get_logs_path(config.dir)
    logger.add(
        log_dir / "gembot-{time:YYYY-MM-DD}.log",
        level=config.level,
        rotation=config.rotation,
        retention=config.retention,
        encoding="utf-8",
        enqueue=True,
    )
    logger.add(
        log_dir / "error-{time:YYYY-MM-DD}.log",
        level="ERROR",
        rotation=config.rotation,
        retention=config.retention,
        encoding="utf-8",
        enqueue=True,
    )
    return log_dir
