"""
Gemini 模型注册表 - 对外公开的模型目录与模型名规范化。

与其在各处写 if-elif 判断模型，不如把目录集中声明在 MODELS 元组中：
/api/gemini/models 接口、`gembot status` 命令和模型名解析全部从这里派生。

模型名的三种写法：
  - "gemini-1.5-pro"          用户 / 角色配置里最常见的写法
  - "models/gemini-1.5-pro"   Google API 资源名写法
  - "gemini/gemini-1.5-pro"   LiteLLM 路由写法（只在调用 LiteLLM 时使用）
normalize_model_name() 统一成 API 资源名写法，to_litellm_model() 转为 LiteLLM 写法。
"""

from dataclasses import dataclass
from typing import Any

MODEL_RESOURCE_PREFIX = "models/"
LITELLM_PREFIX = "gemini"

DEFAULT_CHAT_MODEL = "gemini-2.0-flash-exp"
DEFAULT_EMBEDDING_MODEL = "models/text-embedding-004"


@dataclass(frozen=True)
class ModelSpec:
    """
    单个模型的元数据。

    属性:
        name: 模型名（与 Google 目录中的写法一致，部分带 models/ 前缀）
        display_name: 显示名称
        description: 描述
        input_token_limit / output_token_limit: 上下文与输出上限
        methods: 支持的生成方式
    """

    name: str
    display_name: str
    description: str
    input_token_limit: int = 1048576
    output_token_limit: int = 8192
    methods: tuple[str, ...] = ("generateContent", "streamGenerateContent")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "inputTokenLimit": self.input_token_limit,
            "outputTokenLimit": self.output_token_limit,
            "supportedGenerationMethods": list(self.methods),
        }


MODELS: tuple[ModelSpec, ...] = (
    ModelSpec(
        name="gemini-2.0-flash-exp",
        display_name="Gemini 2.0 Flash (Experimental)",
        description="Latest experimental model with improved performance",
    ),
    ModelSpec(
        name="gemini-exp-1206",
        display_name="Gemini Experimental 1206",
        description="Experimental model from December 2024",
    ),
    ModelSpec(
        name="models/gemini-1.5-pro",
        display_name="Gemini 1.5 Pro",
        description="Most capable model for complex tasks",
    ),
    ModelSpec(
        name="models/gemini-1.5-flash",
        display_name="Gemini 1.5 Flash",
        description="Fast and efficient model for most tasks",
    ),
    ModelSpec(
        name="models/text-embedding-004",
        display_name="Text Embedding 004",
        description="Latest embedding model",
        input_token_limit=2048,
        output_token_limit=0,
        methods=("embedContent",),
    ),
)


def normalize_model_name(model: str | None) -> str | None:
    """补齐 models/ 前缀；空值原样返回 None。"""
    if not model:
        return None
    if model.startswith(f"{LITELLM_PREFIX}/"):
        model = model[len(LITELLM_PREFIX) + 1:]
    if model.startswith(MODEL_RESOURCE_PREFIX):
        return model
    return f"{MODEL_RESOURCE_PREFIX}{model}"


def to_litellm_model(model: str) -> str:
    """转换为 LiteLLM 的路由写法，例如 models/gemini-1.5-pro → gemini/gemini-1.5-pro。"""
    if model.startswith(f"{LITELLM_PREFIX}/"):
        return model
    if model.startswith(MODEL_RESOURCE_PREFIX):
        model = model[len(MODEL_RESOURCE_PREFIX):]
    return f"{LITELLM_PREFIX}/{model}"


def find_model(model: str) -> ModelSpec | None:
    """按名称查找模型，带不带 models/ 前缀都能匹配。"""
    target = normalize_model_name(model)
    for spec in MODELS:
        if normalize_model_name(spec.name) == target:
            return spec
    return None
