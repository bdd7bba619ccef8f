"""流式累加器。

状态机：IDLE -> STREAMING -> {COMPLETED, FAILED}

每收到一个片段就 buffer += fragment，并产出携带完整 buffer（而不是增量）的 StreamUpdate，
消费方只需用最新内容整体替换即可。片段耗尽后产出一次 is_streaming=False 的结束信号；
片段源抛出异常时进入 FAILED 并重新抛出，不产出结束信号。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamUpdate:
    content: str
    is_streaming: bool


class StreamAccumulator:
    def __init__(self) -> None:
        self.state = StreamState.IDLE
        self.buffer = ""
        self.fragment_count = 0

    def consume(self, fragments: Iterable[str]) -> Iterator[StreamUpdate]:
        if self.state is not StreamState.IDLE:
            raise RuntimeError(f"Accumulator already used (state={self.state.value})")
        self.state = StreamState.STREAMING
        try:
            for fragment in fragments:
                self.buffer += fragment
                self.fragment_count += 1
                yield StreamUpdate(content=self.buffer, is_streaming=True)
        except GeneratorExit:
            # 消费方提前停止迭代，视为放弃，不产出结束信号
            self.state = StreamState.FAILED
            raise
        except Exception:
            self.state = StreamState.FAILED
            raise
        finally:
            close = getattr(fragments, "close", None)
            if callable(close):
                close()
        self.state = StreamState.COMPLETED
        yield StreamUpdate(content=self.buffer, is_streaming=False)
