"""本地模型能力抽象接口。

会话管理器不直接依赖具体的模型运行时，而是依赖此处的协议：

- ModelCapability: 模型能力入口，负责可用性检查、参数查询、创建会话句柄。
- ModelSessionHandle: 一个活跃的模型上下文，带 input_usage / input_quota 计数。
- Summarizer: 可选的摘要能力，用于生成会话标题。

这样可以在不改编排层代码的前提下接入其他本地运行时（llama.cpp、MLX 等）。
"""

from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Literal, Optional, Protocol


# 能力接口返回的可用性字符串
AvailabilityValue = Literal["readily", "after-download", "no"]

# 下载进度回调，参数为已完成比例（0..1）
ProgressCallback = Callable[[float], None]


@dataclass
class InitialPrompt:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class SessionOptions:
    """创建会话句柄时的配置。"""

    top_k: Optional[int] = None
    temperature: Optional[float] = None
    system_prompt: Optional[str] = None
    initial_prompts: List[InitialPrompt] = field(default_factory=list)


class ModelSessionHandle(Protocol):
    """一个活跃的模型会话。

    prompt_streaming 返回的迭代器只能消费一次，片段需按顺序拼接才能得到完整回复。
    """

    input_usage: int
    input_quota: int

    def prompt(self, text: str) -> str:
        ...

    def prompt_streaming(self, text: str) -> Iterator[str]:
        ...

    def clone(self) -> "ModelSessionHandle":
        ...

    def destroy(self) -> None:
        ...


class ModelCapability(Protocol):
    name: str

    def availability(self) -> AvailabilityValue:
        ...

    def params(self) -> dict:
        """返回 {defaultTopK, maxTopK, defaultTemperature, maxTemperature}。"""

        ...

    def create(
        self,
        options: SessionOptions,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ModelSessionHandle:
        ...


class Summarizer(Protocol):
    def is_available(self) -> bool:
        ...

    def summarize(self, text: str) -> str:
        ...
