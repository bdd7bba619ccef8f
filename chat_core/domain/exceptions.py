"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在编排层或 UI 层做统一捕获与用户提示。

ChatError 及其子类对应会话管理器的固定错误分类（ChatErrorKind），
由底层（能力探测、会话生命周期）直接抛出，编排层分类时原样透传。
"""

from enum import Enum
from typing import Any, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、session_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """本地模型服务返回非 2xx 错误时抛出。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class StorageError(BusinessError):
    """ChatStore 读写失败。持久化失败不影响内存中的对话。"""


class ChatErrorKind(str, Enum):
    CONTEXT_WINDOW_EXCEEDED = "CONTEXT_WINDOW_EXCEEDED"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    BROWSER_UNSUPPORTED = "BROWSER_UNSUPPORTED"
    SESSION_ERROR = "SESSION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


class ChatError(BusinessError):
    """带分类的会话错误。

    - kind: 错误分类，见 ChatErrorKind。
    - message: 面向用户的描述。
    - details: 原始异常或其他诊断信息，仅用于日志。
    """

    kind: ChatErrorKind = ChatErrorKind.UNKNOWN

    def __init__(self, message: str, details: Optional[Any] = None, kind: Optional[ChatErrorKind] = None):
        if kind is not None:
            self.kind = kind
        self.details = details
        super().__init__(code=self.kind.value, message=message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class BrowserUnsupported(ChatError):
    """本地模型能力不存在，用户需要更换运行环境。"""

    kind = ChatErrorKind.BROWSER_UNSUPPORTED


class ApiUnavailable(ChatError):
    """能力存在但暂不可用，用户可稍后重试。"""

    kind = ChatErrorKind.API_UNAVAILABLE


class SessionError(ChatError):
    """模型会话句柄缺失或损坏，重建会话即可恢复。"""

    kind = ChatErrorKind.SESSION_ERROR


class ContextWindowExceeded(ChatError):
    """上下文窗口耗尽，只能开启新对话。"""

    kind = ChatErrorKind.CONTEXT_WINDOW_EXCEEDED


class ChatNetworkError(ChatError):
    kind = ChatErrorKind.NETWORK_ERROR


class UnknownChatError(ChatError):
    kind = ChatErrorKind.UNKNOWN
