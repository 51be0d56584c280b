"""
工具函数集合 - gembot 项目全局通用的辅助函数。

本模块提供路径管理、字符串处理、时间戳等基础工具函数，
被项目中的多个模块引用。

函数分类：
- 路径管理：ensure_dir, get_data_path, get_logs_path
- 字符串工具：truncate_string, is_safe_filename
- 时间工具：timestamp
"""

from pathlib import Path
from datetime import datetime


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 gembot 数据目录（~/.gembot）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".gembot")


def get_logs_path(log_dir: str | None = None) -> Path:
    """
    获取日志目录。

    参数:
        log_dir: 自定义日志目录。为 None 时使用默认路径 ~/.gembot/logs

    返回:
        展开并确保存在的日志目录路径
    """
    if log_dir:
        return ensure_dir(Path(log_dir).expanduser())
    return ensure_dir(get_data_path() / "logs")


def timestamp() -> str:
    """获取当前时间的 ISO 8601 格式字符串。"""
    return datetime.now().isoformat()


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串到指定最大长度，超出时添加后缀。

    日志中打印用户消息时使用，避免长消息刷屏。

    参数:
        s: 原始字符串
        max_len: 最大长度（包含后缀），默认 100
        suffix: 截断后缀，默认 "..."

    返回:
        截断后的字符串
    """
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def is_safe_filename(name: str) -> bool:
    """
    检查文件名是否安全（不含路径分隔符或上级目录引用）。

    管理 API 读取日志文件时使用，防止目录穿越（../../etc/passwd）。
    """
    if not name or name in {".", ".."}:
        return False
    return not any(part in name for part in ("..", "/", "\\"))
