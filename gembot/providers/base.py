"""
LLM 提供者基类定义模块。

本模块定义了与 Gemini 交互的核心抽象接口，类似于 Java 中的 Interface + DTO 模式：
- ToolCallRequest : LLM 返回的函数调用请求（function-call 接口使用）
- LLMResponse     : 统一的对话响应格式（文本内容、函数调用、token 用量）
- ProviderError   : 生成 / 流式 / 向量接口失败时抛出的异常
- LLMProvider     : 抽象基类，定义所有提供者必须实现的接口

架构角色：
  LINE 消息 / REST 请求 → ConversationService → LLMProvider.chat() → Gemini → LLMResponse

类比 Java：
  - LLMProvider 相当于一个 interface
  - LLMResponse 相当于一个不可变的 DTO（Data Transfer Object）

错误约定：
  - chat() 从不抛出异常，失败时返回 finish_reason="error" 的 LLMResponse，
    由调用方决定是回复致歉文本还是转换为 ProviderError
  - generate() / stream() / embed() 失败时直接抛出 ProviderError
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any


class ProviderError(Exception):
    """AI 后端调用失败。"""

    def __init__(self, message: str, model: str | None = None):
        self.message = message
        self.model = model
        super().__init__(message)


@dataclass
class ToolCallRequest:
    """
    LLM 返回的函数调用请求。

    属性：
        id: 调用的唯一标识符
        name: 要调用的函数名称
        arguments: 调用参数字典
    """
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMResponse:
    """
    LLM 的统一响应数据结构。

    属性：
        content: 文本内容（只返回函数调用时可能为 None）
        tool_calls: 函数调用请求列表
        finish_reason: 结束原因（"stop"=正常, "tool_calls"=函数调用, "error"=出错）
        usage: token 用量统计（prompt_tokens, completion_tokens, total_tokens）
        model: 实际使用的模型名称
    """
    content: str | None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)
    model: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    @property
    def is_error(self) -> bool:
        return self.finish_reason == "error"


@dataclass
class EmbeddingResult:
    """向量化结果。dimensions 取第一条向量的长度，没有结果时为 0。"""
    embeddings: list[list[float]]
    model: str | None = None

    @property
    def dimensions(self) -> int:
        return len(self.embeddings[0]) if self.embeddings else 0


class LLMProvider(ABC):
    """
    LLM 提供者抽象基类（类似 Java 的 interface）。

    当前唯一的实现类是 LiteLLMProvider（在 litellm_provider.py 中）。
    测试中用一个返回固定文本的假实现替代。

    属性：
        api_key: API 密钥
        api_base: API 基础 URL（用于自定义端点或代理）
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        发送多轮对话请求（核心方法）。

        参数：
            messages: 消息列表，每条为 {"role": "user"|"assistant", "content": "..."}
            tools: 可选的函数定义列表（OpenAI 函数调用格式）
            model: 模型名称，为空则使用默认模型
            max_tokens: 响应的最大 token 数
            temperature: 采样温度

        返回：
            LLMResponse；失败时 finish_reason 为 "error"
        """
        pass

    async def generate(
        self,
        prompt: str | list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.7,
        top_p: float | None = None,
    ) -> LLMResponse:
        """
        单轮生成。prompt 可以是纯文本，也可以是多模态内容片段列表。

        异常：
            ProviderError: 调用失败
        """
        response = await self.chat(
            [{"role": "user", "content": prompt}],
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if response.is_error:
            raise ProviderError(response.content or "Generation failed", model)
        return response

    @abstractmethod
    def stream(self, prompt: str, model: str | None = None) -> AsyncIterator[str]:
        """
        流式生成，逐块产出文本。

        异常：
            ProviderError: 调用失败（可能在产出部分文本之后）
        """
        pass

    @abstractmethod
    async def embed(self, texts: list[str], model: str | None = None) -> EmbeddingResult:
        """
        文本向量化。

        异常：
            ProviderError: 调用失败
        """
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """获取该提供者的默认模型名称。"""
        pass
