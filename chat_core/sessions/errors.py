"""错误分类器。

把能力探测、会话生命周期、流式生成中抛出的任意异常映射为固定的 ChatErrorKind：

1. 已经是 ChatError 的异常原样透传（底层已明确分类）。
2. 异常信息（不区分大小写）包含 context/token/quota/limit 时归为 CONTEXT_WINDOW_EXCEEDED。
3. 网络层异常（NetworkError / httpx.RequestError）归为 NETWORK_ERROR。
4. 其余归为 UNKNOWN。

第 2 条是尽力而为的启发式规则，包含这些词的无关错误也会被误判为上下文超限，
这是已知限制。
"""

from typing import Optional, Tuple

import httpx

from chat_core.domain.exceptions import (
    ChatError,
    ChatErrorKind,
    ChatNetworkError,
    ContextWindowExceeded,
    NetworkError,
    UnknownChatError,
)

CONTEXT_WINDOW_MARKERS = ("context", "token", "quota", "limit")

CONTEXT_LIMIT_MESSAGE = "Context limit reached. Please start a new conversation."
UNSUPPORTED_MESSAGE = (
    "No local language model capability is configured. "
    "Install a local model runtime and check the connection settings."
)

# kind -> (面向用户的提示, 展示时长 ms)
USER_MESSAGES = {
    ChatErrorKind.CONTEXT_WINDOW_EXCEEDED: (CONTEXT_LIMIT_MESSAGE, 6000),
    ChatErrorKind.SESSION_ERROR: ("Session error occurred. Please start a new chat.", 5000),
    ChatErrorKind.API_UNAVAILABLE: ("API is currently unavailable. Please try again later.", 5000),
    ChatErrorKind.BROWSER_UNSUPPORTED: (UNSUPPORTED_MESSAGE, 5000),
    ChatErrorKind.NETWORK_ERROR: ("Could not reach the local model server.", 5000),
}
DEFAULT_USER_MESSAGE = ("Failed to generate response. Please try again.", 4000)


def _message_of(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc)


def is_context_window_error(exc: BaseException) -> bool:
    text = _message_of(exc).lower()
    return any(marker in text for marker in CONTEXT_WINDOW_MARKERS)


def classify_prompt_failure(exc: BaseException, message: str = "Failed to generate response") -> ChatError:
    """生成阶段的失败：上下文超限或 UNKNOWN，已分类的异常直接透传。"""

    if isinstance(exc, ChatError):
        return exc
    if is_context_window_error(exc):
        return ContextWindowExceeded(CONTEXT_LIMIT_MESSAGE, details=exc)
    return UnknownChatError(message, details=exc)


def classify_error(exc: BaseException) -> ChatError:
    if isinstance(exc, ChatError):
        return exc
    if is_context_window_error(exc):
        return ContextWindowExceeded(CONTEXT_LIMIT_MESSAGE, details=exc)
    if isinstance(exc, (NetworkError, httpx.RequestError)):
        return ChatNetworkError("Could not reach the local model server", details=exc)
    return UnknownChatError("An unexpected error occurred", details=exc)


def user_message(error: ChatError) -> Tuple[str, int]:
    """返回 (提示文本, 展示时长 ms)。"""

    return USER_MESSAGES.get(error.kind, DEFAULT_USER_MESSAGE)


def describe(error: ChatError) -> dict:
    """日志用的错误摘要。"""

    details: Optional[BaseException] = error.details if isinstance(error.details, BaseException) else None
    return {
        "kind": error.kind.value,
        "error": error.message,
        "cause": repr(details) if details is not None else error.details,
    }
