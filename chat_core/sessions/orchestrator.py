"""会话编排层。

SessionOrchestrator 串联生命周期管理、流式累加、错误分类与持久化，驱动一轮完整的用户对话：

1. 拒绝空白输入，或已有一轮对话在进行中时的新输入（不排队、不取消）。
2. 追加用户消息和 is_streaming=True 的助手占位消息。
3. 请求片段流并交给 StreamAccumulator，每次更新都按 id 写回占位消息。
4. 完成后清除 is_streaming，读取 {usage, quota}，必要时提示用量，
   首轮对话生成标题，最后持久化。
5. 任何失败都会撤销本轮消息（不留下半截的助手消息）、分类并提示，不再向上抛出。

UI 通过 messages / is_loading / usage 三个 Observable 订阅状态，通过 Notifier 接收提示。
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.domain.chat import ChatStore
from chat_core.domain.exceptions import ChatError, StorageError
from chat_core.domain.models import (
    ChatMessage,
    ChatSession,
    TokenUsage,
    new_message_id,
    utcnow,
)
from chat_core.infrastructure.events.observable import Observable
from chat_core.infrastructure.logging.logger import log_event
from chat_core.providers.base import InitialPrompt
from chat_core.sessions.errors import classify_error, describe, user_message
from chat_core.sessions.lifecycle import FragmentStream, SessionLifecycleManager
from chat_core.sessions.notifier import Notifier
from chat_core.sessions.stream import StreamAccumulator
from chat_core.sessions.summarizer import TitleGenerator


USAGE_WARNING_MESSAGE = "Approaching context limit. Consider starting a new conversation soon."


class SessionOrchestrator:
    def __init__(
        self,
        lifecycle: SessionLifecycleManager,
        store: ChatStore,
        notifier: Notifier,
        title_generator: Optional[TitleGenerator] = None,
        usage_warning_ratio: float = 0.8,
        usage_advisory_mode: str = "every_turn",
    ):
        self._lifecycle = lifecycle
        self._store = store
        self._notifier = notifier
        self._titles = title_generator or TitleGenerator()
        self._usage_warning_ratio = usage_warning_ratio
        self._usage_advisory_mode = usage_advisory_mode
        self._turn_lock = threading.Lock()
        self._advisory_sent = False
        self._session = ChatSession.new()

        self.messages: Observable[List[ChatMessage]] = Observable([], name="messages")
        self.is_loading: Observable[bool] = Observable(False, name="is_loading")
        self.usage: Observable[TokenUsage] = Observable(TokenUsage(), name="usage")

    @classmethod
    def from_settings(cls, lifecycle, store, notifier, title_generator, settings) -> "SessionOrchestrator":
        return cls(
            lifecycle=lifecycle,
            store=store,
            notifier=notifier,
            title_generator=title_generator,
            usage_warning_ratio=settings.usage_warning_ratio,
            usage_advisory_mode=settings.usage_advisory_mode,
        )

    @property
    def session(self) -> ChatSession:
        """当前工作副本的快照。"""
        return self._session.copy()

    @property
    def lifecycle(self) -> SessionLifecycleManager:
        return self._lifecycle

    @property
    def session_id(self) -> str:
        return self._session.id

    # ---- 对话 ----

    def send_message(self, content: str) -> bool:
        """驱动一轮对话。

        Returns:
            True 表示本轮被接受并执行（无论成功与否）；False 表示输入被拒绝。
        """

        text = (content or "").strip()
        if not text:
            return False
        if not self._turn_lock.acquire(blocking=False):
            log_event(logging.INFO, "Rejected send while a turn is in flight", {"session_id": self._session.id})
            return False
        try:
            self._run_turn(text)
        finally:
            self.is_loading.publish(False)
            self._turn_lock.release()
        return True

    def _run_turn(self, text: str) -> None:
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "session_id": self._session.id}
        start_time = time.time()
        first_exchange = not any(m.role == "assistant" for m in self._session.messages)
        turn_start = len(self._session.messages)

        user_msg = ChatMessage(id=new_message_id(), role="user", content=text, timestamp=utcnow())
        self._append(user_msg)
        self.is_loading.publish(True)
        assistant_msg = ChatMessage(
            id=new_message_id(),
            role="assistant",
            content="",
            timestamp=utcnow(),
            is_streaming=True,
        )
        self._append(assistant_msg)

        stream: Optional[FragmentStream] = None
        try:
            stream = self._lifecycle.prompt_streaming(text)
            accumulator = StreamAccumulator()
            for update in accumulator.consume(stream):
                self._update_message(assistant_msg.id, update.content, update.is_streaming)
        except Exception as exc:
            self._rollback(turn_start)
            self._report(exc, log_ctx)
            return
        finally:
            if stream is not None:
                stream.close()

        usage = self._lifecycle.get_usage()
        self._session.token_usage = usage.usage
        self.usage.publish(usage)
        self._check_usage(usage, log_ctx)

        if first_exchange and not self._session.title:
            self._session.title = self._titles.generate(text)
        self._session.timestamp = utcnow()
        self._persist(log_ctx)

        log_event(
            logging.INFO,
            "Completed turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            fragments=accumulator.fragment_count,
            usage=usage.usage,
            quota=usage.quota,
        )

    def _check_usage(self, usage: TokenUsage, log_ctx: Dict[str, Any]) -> None:
        if not self.should_warn_usage(usage, self._usage_warning_ratio):
            return
        if self._usage_advisory_mode == "once_per_session" and self._advisory_sent:
            return
        self._advisory_sent = True
        log_event(logging.WARNING, "Approaching context limit", log_ctx, usage=usage.usage, quota=usage.quota)
        self._notifier.warning(USAGE_WARNING_MESSAGE, 5000)

    @staticmethod
    def should_warn_usage(usage: TokenUsage, ratio: float = 0.8) -> bool:
        return usage.quota > 0 and usage.usage / usage.quota > ratio

    # ---- 会话切换 ----

    def clear_chat(self) -> None:
        self._session = ChatSession.new()
        self._advisory_sent = False
        self.messages.publish([])
        self.usage.publish(TokenUsage())
        self._notifier.info("Chat cleared")

    def new_chat(self) -> bool:
        if self.is_loading.value:
            return False
        self._lifecycle.destroy_session()
        self.clear_chat()
        try:
            self._lifecycle.create_session()
        except Exception as exc:
            error = classify_error(exc)
            log_event(logging.ERROR, "Error creating new session", {"session_id": self._session.id}, **describe(error))
            self._notifier.error("Failed to start new chat", 5000)
            return False
        self._notifier.success("New chat started")
        return True

    def load_session(self, session_id: str) -> bool:
        """从存储中恢复会话，并用历史消息重建模型上下文。"""

        if self.is_loading.value:
            return False
        log_ctx = {"session_id": session_id}
        try:
            stored = self._store.get(session_id)
        except StorageError as exc:
            log_event(logging.ERROR, "Failed to load chat", log_ctx, error=exc.message)
            self._notifier.error("Failed to load chat", 5000)
            return False
        if stored is None:
            self._notifier.error("Chat not found", 4000)
            return False

        prompts = [InitialPrompt(role=m.role, content=m.content) for m in stored.messages if not m.is_streaming]
        try:
            self._lifecycle.create_session(initial_prompts=prompts)
        except Exception as exc:
            error = classify_error(exc)
            log_event(logging.ERROR, "Error restoring model session", log_ctx, **describe(error))
            message, duration = user_message(error)
            self._notifier.error(message, duration)
            return False

        self._session = stored
        self._advisory_sent = False
        self.messages.publish(self._copy_messages())
        self.usage.publish(TokenUsage(usage=stored.token_usage, quota=self._lifecycle.get_usage().quota))
        log_event(logging.INFO, "Loaded chat", log_ctx, messages=len(stored.messages))
        return True

    def delete_session(self, session_id: str) -> bool:
        if session_id == self._session.id and self._turn_lock.locked():
            # 本轮结束时会重新持久化当前会话，进行中时不允许删除
            log_event(logging.INFO, "Rejected delete of the chat in flight", {"session_id": session_id})
            self._notifier.warning("Wait for the response to finish before deleting this chat", 4000)
            return False
        try:
            self._store.delete(session_id)
        except StorageError as exc:
            log_event(logging.ERROR, "Failed to delete chat", {"session_id": session_id}, error=exc.message)
            self._notifier.error("Failed to delete chat", 5000)
            return False
        if session_id == self._session.id:
            self.new_chat()
        return True

    def dispose(self) -> None:
        self._lifecycle.destroy_session()

    # ---- UI 辅助 ----

    def token_percentage(self) -> float:
        usage = self.usage.value
        if usage.quota == 0:
            return 0.0
        return usage.usage / usage.quota * 100

    def token_level(self) -> str:
        percentage = self.token_percentage()
        if percentage > 80:
            return "warn"
        if percentage > 60:
            return "accent"
        return "primary"

    # ---- 内部 ----

    def _append(self, message: ChatMessage) -> None:
        self._session.messages.append(message)
        self.messages.publish(self._copy_messages())

    def _update_message(self, message_id: str, content: str, is_streaming: bool) -> None:
        for msg in self._session.messages:
            if msg.id == message_id:
                if not msg.is_streaming:
                    raise RuntimeError(f"Message {message_id} is no longer streaming")
                msg.content = content
                msg.is_streaming = is_streaming
                break
        self.messages.publish(self._copy_messages())

    def _rollback(self, turn_start: int) -> None:
        del self._session.messages[turn_start:]
        self.messages.publish(self._copy_messages())

    def _report(self, exc: BaseException, log_ctx: Dict[str, Any]) -> None:
        error: ChatError = classify_error(exc)
        log_event(logging.ERROR, "Chat turn failed", log_ctx, **describe(error))
        message, duration = user_message(error)
        self._notifier.error(message, duration)

    def _persist(self, log_ctx: Dict[str, Any]) -> None:
        try:
            self._store.put(self._session.copy())
        except StorageError as exc:
            # 持久化失败只损失持久性，内存中的对话继续可用
            log_event(logging.ERROR, "Failed to save chat", log_ctx, code=exc.code, error=exc.message)
            self._notifier.error("Failed to save chat. The conversation continues without saving.", 5000)

    def _copy_messages(self) -> List[ChatMessage]:
        return [ChatMessage(m.id, m.role, m.content, m.timestamp, m.is_streaming) for m in self._session.messages]
