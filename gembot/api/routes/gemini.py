"""Gemini REST 接口（/api/gemini）。"""

import json
from typing import Literal

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gembot.agent.conversation import ConversationService
from gembot.api.deps import get_config, get_conversation, get_provider, get_sessions, require_api_key
from gembot.api.errors import ok
from gembot.config.schema import Config
from gembot.providers.base import LLMProvider, ProviderError
from gembot.providers.registry import MODELS, find_model, normalize_model_name
from gembot.session.manager import SessionNotFound, SessionStore

router = APIRouter(dependencies=[Depends(require_api_key)])

MAX_PROMPT_LENGTH = 10000
DEFAULT_IMAGE_MIME = "image/jpeg"


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateRequest(_Body):
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)
    model: str | None = None
    temperature: float | None = Field(None, ge=0, le=2)
    max_output_tokens: int | None = Field(None, ge=1, le=8192)
    top_p: float | None = Field(None, ge=0, le=1)


class ChatMessage(_Body):
    role: Literal["user", "model", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(_Body):
    messages: list[ChatMessage] = Field(min_length=1)
    model: str | None = None
    session_id: str | None = None
    role_id: str | None = None


class StreamRequest(_Body):
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)
    model: str | None = None


class FunctionDeclaration(_Body):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    parameters: dict | None = None


class FunctionCallRequest(_Body):
    prompt: str = Field(min_length=1)
    functions: list[FunctionDeclaration] = Field(min_length=1)
    model: str | None = None


class EmbeddingsRequest(_Body):
    text: str | list[str]
    model: str | None = None


class ImageAnalysisRequest(_Body):
    prompt: str = Field(min_length=1)
    image: str = Field(min_length=1)
    mime_type: str | None = None
    model: str | None = None


def image_data_url(image: str, mime_type: str | None = None) -> str:
    """把 base64 图片或 data URL 统一成 data URL。"""
    if image.startswith("data:"):
        return image
    return f"data:{mime_type or DEFAULT_IMAGE_MIME};base64,{image}"


@router.post("/generate")
async def generate(
    body: GenerateRequest,
    provider: LLMProvider = Depends(get_provider),
    config: Config = Depends(get_config),
):
    """单轮文本生成。"""
    defaults = config.agents.defaults
    logger.info(f"Text generation request (model {body.model}, prompt length {len(body.prompt)})")

    response = await provider.generate(
        body.prompt,
        model=body.model,
        max_tokens=body.max_output_tokens or defaults.max_tokens,
        temperature=defaults.temperature if body.temperature is None else body.temperature,
        top_p=body.top_p,
    )
    return ok({
        "text": response.content or "",
        "model": normalize_model_name(body.model or provider.get_default_model()),
        "tokensUsed": {
            "prompt": response.usage.get("prompt_tokens", 0),
            "completion": response.usage.get("completion_tokens", 0),
            "total": response.usage.get("total_tokens", 0),
        },
    })


@router.post("/chat")
async def chat(
    body: ChatRequest,
    conversation: ConversationService = Depends(get_conversation),
):
    """多轮对话；带 sessionId 时续接会话历史。"""
    logger.info(f"Chat request (session {body.session_id}, {len(body.messages)} messages)")
    result = await conversation.chat(
        [m.model_dump() for m in body.messages],
        model=body.model,
        session_id=body.session_id,
        role_id=body.role_id,
    )
    return ok(result.to_dict())


@router.post("/stream")
async def stream(
    body: StreamRequest,
    provider: LLMProvider = Depends(get_provider),
):
    """Server-Sent Events 流式生成。出错时以一条 error 事件结束。"""

    async def events():
        try:
            async for chunk in provider.stream(body.prompt, model=body.model):
                yield f"data: {json.dumps({'chunk': chunk}, ensure_ascii=False)}\n\n"
            yield f"data: {json.dumps({'done': True})}\n\n"
        except ProviderError as e:
            yield f"data: {json.dumps({'error': e.message}, ensure_ascii=False)}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/function-call")
async def function_call(
    body: FunctionCallRequest,
    provider: LLMProvider = Depends(get_provider),
):
    """函数调用：让模型决定是否调用给定的函数。"""
    tools = [
        {"type": "function", "function": f.model_dump(exclude_none=True)}
        for f in body.functions
    ]
    response = await provider.chat(
        [{"role": "user", "content": body.prompt}],
        tools=tools,
        model=body.model,
    )
    if response.is_error:
        raise ProviderError(f"Gemini function calling failed: {response.content}", body.model)

    call = response.tool_calls[0] if response.has_tool_calls else None
    return ok({
        "functionCall": {"name": call.name, "arguments": call.arguments} if call else None,
        "text": response.content or "",
    })


@router.post("/embeddings")
async def embeddings(
    body: EmbeddingsRequest,
    provider: LLMProvider = Depends(get_provider),
):
    texts = [body.text] if isinstance(body.text, str) else body.text
    result = await provider.embed(texts, model=body.model)
    return ok({"embeddings": result.embeddings, "dimensions": result.dimensions})


@router.post("/analyze-image")
async def analyze_image(
    body: ImageAnalysisRequest,
    provider: LLMProvider = Depends(get_provider),
):
    """图片理解：图片以 base64 或 data URL 传入。"""
    content = [
        {"type": "text", "text": body.prompt},
        {"type": "image_url", "image_url": {"url": image_data_url(body.image, body.mime_type)}},
    ]
    response = await provider.generate(content, model=body.model)
    return ok({"analysis": response.content or "", "model": response.model})


@router.get("/sessions/stats")
async def session_stats(sessions: SessionStore = Depends(get_sessions)):
    return ok(sessions.stats().to_dict())


@router.post("/sessions/clear")
async def clear_sessions(
    sessions: SessionStore = Depends(get_sessions),
    conversation: ConversationService = Depends(get_conversation),
):
    sessions.clear_all()
    conversation.prune()
    logger.info("All sessions cleared")
    return ok({"cleared": True}, "All sessions cleared successfully")


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, sessions: SessionStore = Depends(get_sessions)):
    session = sessions.get_session(session_id)
    if session is None:
        raise SessionNotFound(session_id)
    return ok(session.to_dict())


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, sessions: SessionStore = Depends(get_sessions)):
    if not sessions.delete_session(session_id):
        raise SessionNotFound(session_id)
    return ok({"deleted": True}, "Session deleted successfully")


@router.get("/models")
async def list_models():
    return ok({"models": [spec.to_dict() for spec in MODELS]})


@router.get("/models/{model_id:path}")
async def get_model_info(model_id: str):
    spec = find_model(model_id)
    if spec is None:
        return ok({"name": normalize_model_name(model_id)})
    return ok(spec.to_dict())
