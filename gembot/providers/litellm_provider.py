"""
LiteLLM 提供者实现模块：Gemini 的统一调用层。

本模块是 LLMProvider 抽象基类的唯一实现，通过 LiteLLM 库调用 Google Gemini。
LiteLLM 把各家 API 统一成 OpenAI 兼容格式，所以会话里的 "assistant" 角色
会被它自动翻译成 Gemini 的 "model" 角色，这里无需自己转换。

核心设计：
  1. 模型名称解析：去掉 models/ 前缀，加上 LiteLLM 的 gemini/ 路由前缀
  2. 环境变量配置：把 API Key 写入 GEMINI_API_KEY
  3. 错误容错：chat() 失败时返回错误响应而非抛出异常；
     generate() / stream() / embed() 失败时抛出 ProviderError

数据流：
  ConversationService → LiteLLMProvider.chat() → _resolve_model() → acompletion() → Gemini
                                                                         ↓
  ConversationService ← _parse_response() ← LLMResponse ← API Response ←─┘
"""

import json
import os
from collections.abc import AsyncIterator
from typing import Any

import litellm
from litellm import acompletion, aembedding
from loguru import logger

from gembot.providers.base import (
    EmbeddingResult,
    LLMProvider,
    LLMResponse,
    ProviderError,
    ToolCallRequest,
)
from gembot.providers.registry import DEFAULT_CHAT_MODEL, DEFAULT_EMBEDDING_MODEL, to_litellm_model

GEMINI_ENV_KEY = "GEMINI_API_KEY"


class LiteLLMProvider(LLMProvider):
    """
    基于 LiteLLM 的 Gemini 提供者。

    构造参数：
        api_key: Gemini API 密钥
        api_base: 自定义 API 基础 URL（用于代理）
        default_model: 默认模型名称
        extra_headers: 额外的 HTTP 请求头
        top_p: 默认 nucleus 采样参数
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = DEFAULT_CHAT_MODEL,
        extra_headers: dict[str, str] | None = None,
        top_p: float | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}
        self.top_p = top_p

        if api_key:
            os.environ.setdefault(GEMINI_ENV_KEY, api_key)

        # 禁用 LiteLLM 的调试日志输出；自动丢弃 Gemini 不支持的参数
        litellm.suppress_debug_info = True
        litellm.drop_params = True

    def _resolve_model(self, model: str | None) -> str:
        return to_litellm_model(model or self.default_model)

    def _common_kwargs(self) -> dict[str, Any]:
        """认证信息与自定义端点。直接传 api_key 比仅依赖环境变量更可靠。"""
        kwargs: dict[str, Any] = {}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        return kwargs

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        发送多轮对话请求。

        参数：
            messages: 完整对话历史，最后一条是本轮用户消息
            tools: 可选的函数定义列表
            model: 模型名称（带不带 models/ 前缀均可），为空则使用默认模型
            max_tokens: 响应的最大 token 数
            temperature: 采样温度

        返回：
            LLMResponse；失败时 content 为错误描述、finish_reason 为 "error"
        """
        return await self._complete(messages, tools, model, max_tokens, temperature, self.top_p)

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str | None,
        max_tokens: int,
        temperature: float,
        top_p: float | None,
    ) -> LLMResponse:
        model = self._resolve_model(model)

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            **self._common_kwargs(),
        }
        if top_p is not None:
            kwargs["top_p"] = top_p

        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        try:
            response = await acompletion(**kwargs)
            return self._parse_response(response, model)
        except Exception as e:
            logger.error(f"Gemini call failed ({model}): {e}")
            return LLMResponse(
                content=f"Error calling Gemini: {str(e)}",
                finish_reason="error",
                model=model,
            )

    async def generate(
        self,
        prompt: str | list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.7,
        top_p: float | None = None,
    ) -> LLMResponse:
        """单轮生成；top_p 可按请求覆盖默认值。失败时抛出 ProviderError。"""
        response = await self._complete(
            [{"role": "user", "content": prompt}],
            None,
            model,
            max_tokens,
            temperature,
            self.top_p if top_p is None else top_p,
        )
        if response.is_error:
            raise ProviderError(f"Gemini text generation failed: {response.content}", response.model)
        return response

    async def stream(self, prompt: str, model: str | None = None) -> AsyncIterator[str]:
        """流式生成，逐块产出文本。"""
        model = self._resolve_model(model)
        try:
            response = await acompletion(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                stream=True,
                **self._common_kwargs(),
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                text = getattr(chunk.choices[0].delta, "content", None)
                if text:
                    yield text
        except Exception as e:
            logger.error(f"Gemini streaming failed ({model}): {e}")
            raise ProviderError(f"Gemini streaming failed: {e}", model) from e

    async def embed(self, texts: list[str], model: str | None = None) -> EmbeddingResult:
        """文本向量化，返回与输入顺序一致的向量列表。"""
        model = to_litellm_model(model or DEFAULT_EMBEDDING_MODEL)
        try:
            response = await aembedding(model=model, input=texts, **self._common_kwargs())
        except Exception as e:
            logger.error(f"Gemini embeddings failed ({model}): {e}")
            raise ProviderError(f"Gemini embeddings generation failed: {e}", model) from e

        vectors = []
        for item in response.data:
            vectors.append(item["embedding"] if isinstance(item, dict) else item.embedding)
        return EmbeddingResult(embeddings=vectors, model=model)

    def _parse_response(self, response: Any, model: str) -> LLMResponse:
        """
        将 LiteLLM 的原始响应解析为统一的 LLMResponse 格式。

        LiteLLM 的响应格式遵循 OpenAI 规范：response.choices[0].message
        中包含 content 和 tool_calls。
        """
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        if hasattr(message, "tool_calls") and message.tool_calls:
            for tc in message.tool_calls:
                args = tc.function.arguments
                if isinstance(args, str):
                    try:
                        args = json.loads(args)
                    except json.JSONDecodeError:
                        args = {"raw": args}

                tool_calls.append(ToolCallRequest(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=args,
                ))

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
            model=model,
        )

    def get_default_model(self) -> str:
        return self.default_model
