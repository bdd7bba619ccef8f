"""本地模型能力集成层。

该包下的模块负责：
- 定义模型能力与会话句柄的抽象接口 (base)。
- 提供具体运行时的实现 (如 ollama_client)。
"""

from typing import Literal, Optional

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.providers.base import ModelCapability, ModelSessionHandle, SessionOptions, Summarizer
from chat_core.providers.ollama_client import OllamaCapability, OllamaSession


def create_capability(name: Optional[str] = None) -> ModelCapability:
    """根据名称创建模型能力实例，默认使用 Ollama。"""

    capability_name = (name or "ollama").lower()
    if capability_name == "ollama":
        return OllamaCapability(settings)
    raise ValidationError(code="UNKNOWN_CAPABILITY", message=f"Unknown model capability: {name!r}")


DefaultCapabilityName = Literal["ollama"]

__all__ = [
    "create_capability",
    "ModelCapability",
    "ModelSessionHandle",
    "SessionOptions",
    "Summarizer",
    "OllamaCapability",
    "OllamaSession",
]
