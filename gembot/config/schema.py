"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 gembot 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── gateway       - HTTP 网关服务配置（监听地址、运行环境、API 密钥、CORS）
├── agents        - 对话默认参数（默认模型、温度、最大输出 token）
├── providers     - LLM 提供商配置（Gemini API Key 等）
├── sessions      - 会话存储配置（过期时间、清扫间隔）
├── roles         - 角色配置文件路径
├── channels      - 消息渠道配置（LINE 多 bot）
└── logging       - 日志配置（级别、目录、滚动策略）

注意：角色/映射表本身不在这里，而是存放在独立的 roles.json 中
（见 gembot/roles/schema.py），因为它会被管理后台频繁改写。

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ==============================================================================
# 网关 / 对话参数
# ==============================================================================


class GatewayConfig(BaseModel):
    """HTTP 网关服务配置。"""
    host: str = "0.0.0.0"  # 监听地址（0.0.0.0 表示监听所有网卡）
    port: int = 8080  # 监听端口
    environment: Literal["development", "production"] = "development"
    api_secret_key: str = ""  # REST / 管理接口的 x-api-key（为空时开发环境跳过认证）
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class AgentDefaults(BaseModel):
    """
    对话默认参数。

    当角色没有指定模型、或 REST 调用方没有传 model 时使用这里的值。
    """
    model: str = "gemini-2.0-flash-exp"  # 默认 Gemini 模型
    max_tokens: int = 8192  # 单次调用的最大输出 token 数
    temperature: float = 0.7  # 生成温度
    top_p: float = 0.95


class AgentsConfig(BaseModel):
    """对话参数容器。"""
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


# ==============================================================================
# LLM 提供商配置
# ==============================================================================


class ProviderConfig(BaseModel):
    """
    单个 LLM 提供商的配置。

    api_key 留空时由 LiteLLM 从环境变量 GEMINI_API_KEY 读取。
    """
    api_key: str = ""
    api_base: str | None = None  # 自定义 API 基础 URL（用于代理）
    extra_headers: dict[str, str] | None = None


class ProvidersConfig(BaseModel):
    """LLM 提供商聚合配置。目前只接入 Gemini。"""
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)


# ==============================================================================
# 会话 / 角色
# ==============================================================================


class SessionsConfig(BaseModel):
    """会话存储配置。"""
    timeout_s: int = 30 * 60  # 会话闲置过期时间（滑动窗口），默认 30 分钟
    sweep_interval_s: int = 5 * 60  # 后台清扫间隔，默认 5 分钟
    sweep_enabled: bool = True


class RolesConfig(BaseModel):
    """角色配置文件位置。"""
    path: str = "~/.gembot/roles.json"

    @property
    def file_path(self) -> Path:
        return Path(self.path).expanduser()


# ==============================================================================
# 渠道配置
# ==============================================================================


class LineBotConfig(BaseModel):
    """
    单个 LINE 官方账号（bot）的配置。

    一个网关可以同时服务多个 bot：Webhook 收到请求时，
    依次用每个 bot 的 channel_secret 校验签名，匹配成功的即为来源 bot。
    """
    name: str = ""  # 便于日志识别的名字
    channel_secret: str = ""  # 用于校验 X-Line-Signature
    channel_access_token: str = ""  # 调用 Messaging API 的 Bearer Token
    allow_from: list[str] = Field(default_factory=list)  # 允许的用户 ID 白名单（空 = 所有人）


class LineConfig(BaseModel):
    """LINE 渠道配置。"""
    enabled: bool = True
    api_base: str = "https://api.line.me"
    bots: list[LineBotConfig] = Field(default_factory=list)


class ChannelsConfig(BaseModel):
    """所有消息渠道的聚合配置。"""
    line: LineConfig = Field(default_factory=LineConfig)


class LoggingConfig(BaseModel):
    """日志配置（loguru）。"""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    dir: str = "~/.gembot/logs"
    file_enabled: bool = True
    rotation: str = "00:00"  # 每天午夜滚动
    retention: str = "14 days"


# ==============================================================================
# 根配置类
# ==============================================================================


class Config(BaseSettings):
    """
    gembot 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: GEMBOT_
    - 嵌套分隔符: __ (双下划线)
    - 示例: GEMBOT_GATEWAY__PORT=443 可覆盖 gateway.port
    """
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    roles: RolesConfig = Field(default_factory=RolesConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="GEMBOT_",
        env_nested_delimiter="__",
    )

    @property
    def is_production(self) -> bool:
        return self.gateway.environment == "production"

    @property
    def auth_enabled(self) -> bool:
        """
        是否启用 API Key 认证。

        开发环境且未设置有效密钥（空串或占位符）时关闭认证，
        生产环境始终启用。
        """
        key = self.gateway.api_secret_key
        has_real_key = bool(key) and key != "your_secret_key_here"
        return self.is_production or has_real_key
