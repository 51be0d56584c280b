"""
配置文件读写 - ~/.gembot/config.json 与 Config 对象之间的转换。

文件里的键是 camelCase，Config 字段是 snake_case，两个方向的改写
都交给 pydantic.alias_generators（与角色文档用的是同一套规则）。
旧版只有一个 LINE bot 的配置格式在加载时自动迁移。

【Java 开发者类比】
- load_config / save_config 相当于一个手写的 Jackson ObjectMapper 读写配置
- _VERBATIM_FIELDS 类似给某个 Map 字段单独关闭 @JsonNaming
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic.alias_generators import to_camel, to_snake

from gembot.config.schema import Config

# 值是自由字典的字段：只改写字段名本身，里面的键（如 HTTP 头名）保持原样
_VERBATIM_FIELDS = frozenset({"extra_headers"})


def get_config_path() -> Path:
    """获取默认配置文件路径: ~/.gembot/config.json"""
    return Path.home() / ".gembot" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    读取配置文件并构造 Config。

    文件缺失或无法解析时返回默认 Config（此时 GEMBOT_* 环境变量仍然生效）；
    解析失败只记录警告，不让进程退出。

    参数:
        config_path: 配置文件路径，默认 ~/.gembot/config.json
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Config(**convert_keys(_migrate_config(data)))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        logger.warning("Using default configuration.")
        return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """以 camelCase 键、两格缩进写出配置；目录不存在时自动创建。"""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(convert_to_camel(config.model_dump()), indent=2, ensure_ascii=False)
    path.write_text(content, encoding="utf-8")


def _migrate_config(data: dict) -> dict:
    """
    把旧版单 bot 写法 channels.line.channelSecret / channelAccessToken
    挪进 channels.line.bots 列表。
    """
    line = data.get("channels", {}).get("line", {})
    if "channelSecret" in line and "bots" not in line:
        line["bots"] = [{
            "name": "default",
            "channelSecret": line.pop("channelSecret"),
            "channelAccessToken": line.pop("channelAccessToken", ""),
        }]
    return data


def _rekey(data: Any, rename: Callable[[str], str]) -> Any:
    """按 rename 递归改写字典键；_VERBATIM_FIELDS 下的子字典原样保留。"""
    if isinstance(data, list):
        return [_rekey(item, rename) for item in data]
    if not isinstance(data, dict):
        return data

    result = {}
    for key, value in data.items():
        new_key = rename(key)
        if to_snake(new_key) in _VERBATIM_FIELDS and isinstance(value, dict):
            result[new_key] = dict(value)
        else:
            result[new_key] = _rekey(value, rename)
    return result


def convert_keys(data: Any) -> Any:
    """配置文件的 camelCase 键 → Config 字段名，如 {"maxTokens": 1} → {"max_tokens": 1}。"""
    return _rekey(data, to_snake)


def convert_to_camel(data: Any) -> Any:
    """convert_keys 的逆操作，保存配置时使用。"""
    return _rekey(data, to_camel)
