"""会话标题生成。

优先使用可选的 Summarizer 生成简短标题；摘要能力缺失、不可用、报错或返回空白时，
回退为截断首条用户消息（前 30 个字符 + "..."）。
"""

import logging
from typing import Optional

from chat_core.domain.models import Availability
from chat_core.infrastructure.logging.logger import log_event
from chat_core.providers.base import ModelCapability, SessionOptions, Summarizer


HEADLINE_PROMPT = (
    "Write a short headline (at most six words) that summarizes the user's message. "
    "Reply with the headline only, in plain text, without quotes."
)


def fallback_title(text: str, max_chars: int = 30) -> str:
    return text[:max_chars] + ("..." if len(text) > max_chars else "")


class ModelSummarizer:
    """基于本地模型能力的摘要器。

    每次调用都打开一个一次性的句柄，生成后立即销毁，不占用对话会话的上下文。
    """

    def __init__(self, capability: Optional[ModelCapability]):
        self._capability = capability

    def is_available(self) -> bool:
        if self._capability is None:
            return False
        try:
            return self._capability.availability() == Availability.READY.value
        except Exception as exc:
            log_event(logging.WARNING, "Summarizer availability check failed", {}, error=str(exc))
            return False

    def summarize(self, text: str) -> str:
        handle = self._capability.create(SessionOptions(temperature=0.2, system_prompt=HEADLINE_PROMPT))
        try:
            return handle.prompt(text).strip().strip('"')
        finally:
            handle.destroy()


class TitleGenerator:
    def __init__(self, summarizer: Optional[Summarizer] = None, max_chars: int = 30):
        self._summarizer = summarizer
        self._max_chars = max_chars

    def generate(self, text: str) -> str:
        text = text.strip()
        if self._summarizer is None or not self._summarizer.is_available():
            return fallback_title(text, self._max_chars)
        try:
            summary = self._summarizer.summarize(text).strip()
        except Exception as exc:
            log_event(logging.WARNING, "Summarization failed, using fallback", {}, error=str(exc))
            return fallback_title(text, self._max_chars)
        return summary or fallback_title(text, self._max_chars)
