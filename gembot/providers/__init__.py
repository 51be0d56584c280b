"""
LLM 提供者抽象层模块（providers 包）。

gembot 与 Google Gemini 之间的桥梁层：
- base.py             : LLMProvider 抽象基类、LLMResponse 与 ProviderError
- litellm_provider.py : 基于 LiteLLM 的唯一实现
- registry.py         : 对外公开的模型目录与模型名规范化
"""

from gembot.providers.base import EmbeddingResult, LLMProvider, LLMResponse, ProviderError, ToolCallRequest
from gembot.providers.litellm_provider import LiteLLMProvider

__all__ = [
    "EmbeddingResult",
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "ProviderError",
    "ToolCallRequest",
]
