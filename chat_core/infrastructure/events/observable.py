"""可订阅的值（监听器注册表）。

Observable 保存最新值，并在 publish 时同步通知所有监听器：

- subscribe 时立即用当前值回调一次（与 UI 的"最新值"语义一致）；
- 返回的 Subscription 可以随时 unsubscribe，重复取消是 no-op；
- 单个监听器抛出的异常只记录日志，不影响其他监听器和发布方。
"""

import logging
import threading
from typing import Callable, Generic, List, TypeVar

from chat_core.infrastructure.logging.logger import logger

T = TypeVar("T")
Listener = Callable[[T], None]


class Subscription:
    def __init__(self, unsubscribe: Callable[[], None]):
        self._unsubscribe = unsubscribe
        self.closed = False

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._unsubscribe()


class Observable(Generic[T]):
    def __init__(self, initial: T, name: str = "observable"):
        self._value = initial
        self._name = name
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    @property
    def value(self) -> T:
        return self._value

    def subscribe(self, listener: Listener, *, replay: bool = True) -> Subscription:
        with self._lock:
            self._listeners.append(listener)
            current = self._value
        if replay:
            self._notify(listener, current)
        return Subscription(lambda: self._remove(listener))

    def publish(self, value: T) -> None:
        with self._lock:
            self._value = value
            listeners = list(self._listeners)
        for listener in listeners:
            self._notify(listener, value)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _remove(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                logger.log(logging.WARNING, "Listener not found", extra={"extra": {"observable": self._name}})

    def _notify(self, listener: Listener, value: T) -> None:
        try:
            listener(value)
        except Exception as exc:
            logger.exception(
                "Listener failed",
                extra={"extra": {"observable": self._name, "error": str(exc)}},
            )
