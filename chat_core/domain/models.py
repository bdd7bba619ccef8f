"""统一的对话数据模型。

本模块定义了会话管理器内部共享的标准数据结构：

- ChatMessage: 一条对话消息（user/assistant），流式生成期间 content 会被原地更新。
- ChatSession: 一个完整会话（消息列表 + token 用量），由 ChatStore 负责持久化。
- ChatSessionMetadata: 会话列表视图所需的投影（id/title/timestamp）。
- ModelParams / TokenUsage / Availability / ApiStatus: 与本地模型能力相关的值对象。

所有时间均使用带时区的 UTC datetime，序列化格式见 to_dict/from_dict。
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal
from uuid import uuid4


# 会话中只出现用户与助手两种角色；system prompt 由 Provider 侧维护，不进入消息列表
Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    """把 datetime 转成带 Z 后缀的 UTC ISO 字符串。"""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


def new_session_id() -> str:
    return f"c-{uuid4().hex}"


@dataclass
class ChatMessage:
    """一条对话消息。

    - id: 会话内唯一的消息 ID。
    - role: 消息角色，user 或 assistant。
    - content: 纯文本内容；仅在 is_streaming=True 时允许被流式累加器改写。
    - timestamp: 消息创建时间（UTC）。
    - is_streaming: 助手消息仍在生成中时为 True。
    """

    id: str
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    is_streaming: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": format_ts(self.timestamp),
            "isStreaming": self.is_streaming,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            role=data["role"],
            content=data.get("content") or "",
            timestamp=parse_ts(data["timestamp"]),
            is_streaming=bool(data.get("isStreaming", False)),
        )


@dataclass
class ChatSessionMetadata:
    """会话列表项，只包含列表视图需要的字段。"""

    id: str
    title: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "timestamp": format_ts(self.timestamp)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatSessionMetadata":
        return cls(id=data["id"], title=data.get("title") or "", timestamp=parse_ts(data["timestamp"]))


@dataclass
class ChatSession:
    """一个完整会话。

    token_usage 记录最近一次成功对话后模型句柄上报的 input_usage，
    不根据消息长度重新估算。
    """

    id: str
    title: str
    timestamp: datetime
    messages: List[ChatMessage] = field(default_factory=list)
    token_usage: int = 0

    @classmethod
    def new(cls) -> "ChatSession":
        return cls(id=new_session_id(), title="", timestamp=utcnow())

    @property
    def metadata(self) -> ChatSessionMetadata:
        return ChatSessionMetadata(id=self.id, title=self.title, timestamp=self.timestamp)

    def copy(self) -> "ChatSession":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "timestamp": format_ts(self.timestamp),
            "messages": [m.to_dict() for m in self.messages],
            "tokenUsage": self.token_usage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatSession":
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            timestamp=parse_ts(data["timestamp"]),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages") or []],
            token_usage=int(data.get("tokenUsage", 0)),
        )


@dataclass(frozen=True)
class TokenUsage:
    """模型句柄当前的上下文用量。"""

    usage: int = 0
    quota: int = 0

    @property
    def ratio(self) -> float:
        if self.quota <= 0:
            return 0.0
        return self.usage / self.quota


@dataclass(frozen=True)
class ModelParams:
    """模型采样参数的默认值与上限。"""

    default_top_k: int
    max_top_k: int
    default_temperature: float
    max_temperature: float


class Availability(str, Enum):
    """本地模型可用性，取值与模型能力接口返回的字符串一致。"""

    READY = "readily"
    NEEDS_DOWNLOAD = "after-download"
    UNAVAILABLE = "no"


class ApiStatus(str, Enum):
    """启动检查阶段对 UI 暴露的状态。"""

    CHECKING = "checking"
    READY = "ready"
    DOWNLOADING = "downloading"
    UNAVAILABLE = "unavailable"
    UNSUPPORTED = "unsupported"
