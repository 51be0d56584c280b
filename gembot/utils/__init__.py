"""
工具函数模块 - 提供 gembot 项目全局通用的辅助函数。

本模块包含：
- ensure_dir：确保目录存在
- get_data_path：获取数据存储路径（~/.gembot）
- setup_logging：配置 loguru 日志输出（控制台 + 滚动文件）
"""

from gembot.utils.helpers import ensure_dir, get_data_path
from gembot.utils.log import setup_logging

__all__ = ["ensure_dir", "get_data_path", "setup_logging"]
