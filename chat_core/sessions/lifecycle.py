"""会话生命周期管理。

SessionLifecycleManager 显式持有至多一个模型会话句柄，由编排层注入使用，
不依赖任何全局状态：

- create_session: 先销毁旧句柄再创建新句柄（destroy-before-replace）。
- clone_session: 克隆当前句柄并替换，原句柄在克隆成功后释放。
- prompt_streaming: 返回只能消费一次的 FragmentStream。
- get_usage: 没有句柄时返回 {0, 0}，永不抛出。
"""

import logging
import threading
from typing import Iterator, List, Optional

from chat_core.domain.exceptions import ChatError, SessionError
from chat_core.domain.models import TokenUsage
from chat_core.infrastructure.logging.logger import log_event
from chat_core.providers.base import InitialPrompt, ModelSessionHandle, SessionOptions
from chat_core.sessions.errors import classify_prompt_failure
from chat_core.sessions.probe import CapabilityProbe


NO_SESSION_MESSAGE = "No active session. Please create a session first."


class FragmentStream:
    """单次消费、按顺序产出文本片段的迭代器。

    close() 表示"停止消费"：会关闭底层生成器，从而释放其持有的连接等资源。
    重复 close 是 no-op；关闭后继续迭代立即结束。
    """

    def __init__(self, fragments: Iterator[str]):
        self._fragments = iter(fragments)
        self.closed = False

    def __iter__(self) -> "FragmentStream":
        # 底层迭代器不会重启，重复 iter() 只会从当前位置继续
        return self

    def __next__(self) -> str:
        if self.closed:
            raise StopIteration
        return next(self._fragments)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        close = getattr(self._fragments, "close", None)
        if callable(close):
            close()


class SessionLifecycleManager:
    def __init__(self, probe: CapabilityProbe, system_prompt: Optional[str] = None):
        self._probe = probe
        self._system_prompt = system_prompt
        self._handle: Optional[ModelSessionHandle] = None
        self._lock = threading.RLock()

    @property
    def handle(self) -> Optional[ModelSessionHandle]:
        return self._handle

    def has_active_session(self) -> bool:
        return self._handle is not None

    def create_session(self, initial_prompts: Optional[List[InitialPrompt]] = None) -> None:
        """创建新会话句柄。

        Raises:
            BrowserUnsupported: 模型能力不存在。
            ApiUnavailable: 读取默认参数失败。
            SessionError: 创建句柄失败。
        """

        capability = self._probe.require_capability()
        with self._lock:
            # 旧句柄必须先释放，避免泄漏外部会话资源
            self.destroy_session()
            params = self._probe.get_model_params()
            options = SessionOptions(
                top_k=params.default_top_k,
                temperature=params.default_temperature,
                system_prompt=self._system_prompt,
                initial_prompts=list(initial_prompts or []),
            )
            self._probe.reset_progress()
            try:
                self._handle = capability.create(options, self._probe.report_download_progress)
            except Exception as exc:
                log_event(logging.ERROR, "Error creating session", {}, error=str(exc))
                raise SessionError("Failed to create AI session", details=exc)
        log_event(
            logging.INFO,
            "Model session created",
            {},
            top_k=options.top_k,
            temperature=options.temperature,
            initial_prompts=len(options.initial_prompts),
        )

    def destroy_session(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is None:
            return
        handle.destroy()
        log_event(logging.INFO, "Model session destroyed", {})

    def clone_session(self) -> None:
        with self._lock:
            if self._handle is None:
                raise SessionError("No active session to clone")
            original = self._handle
            try:
                cloned = original.clone()
            except Exception as exc:
                log_event(logging.ERROR, "Error cloning session", {}, error=str(exc))
                raise SessionError("Failed to clone session", details=exc)
            self._handle = cloned
        original.destroy()
        log_event(logging.INFO, "Model session cloned", {})

    def prompt_streaming(self, text: str) -> FragmentStream:
        handle = self._require_handle()
        try:
            return FragmentStream(handle.prompt_streaming(text))
        except ChatError:
            raise
        except Exception as exc:
            log_event(logging.ERROR, "Error during streaming prompt", {}, error=str(exc))
            raise classify_prompt_failure(exc)

    def prompt(self, text: str) -> str:
        handle = self._require_handle()
        try:
            return handle.prompt(text)
        except ChatError:
            raise
        except Exception as exc:
            log_event(logging.ERROR, "Error during prompt", {}, error=str(exc))
            raise classify_prompt_failure(exc)

    def get_usage(self) -> TokenUsage:
        handle = self._handle
        if handle is None:
            return TokenUsage(0, 0)
        return TokenUsage(usage=int(handle.input_usage), quota=int(handle.input_quota))

    def _require_handle(self) -> ModelSessionHandle:
        handle = self._handle
        if handle is None:
            raise SessionError(NO_SESSION_MESSAGE)
        return handle
