"""面向 UI 的提示通道（toast / snackbar）。

编排层只依赖 Notifier 协议；具体展示由 UI 实现。
"""

import logging
from dataclasses import dataclass
from typing import List, Literal, Protocol

from chat_core.infrastructure.logging.logger import log_event


Level = Literal["success", "error", "warning", "info"]


class Notifier(Protocol):
    def success(self, message: str, duration_ms: int = 3000) -> None:
        ...

    def error(self, message: str, duration_ms: int = 5000) -> None:
        ...

    def warning(self, message: str, duration_ms: int = 4000) -> None:
        ...

    def info(self, message: str, duration_ms: int = 3000) -> None:
        ...


_LOG_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class Notification:
    level: Level
    message: str
    duration_ms: int


class RecordingNotifier:
    """把提示记录在内存中，供无界面调用方轮询或测试断言。"""

    def __init__(self) -> None:
        self.notifications: List[Notification] = []

    def success(self, message: str, duration_ms: int = 3000) -> None:
        self._push("success", message, duration_ms)

    def error(self, message: str, duration_ms: int = 5000) -> None:
        self._push("error", message, duration_ms)

    def warning(self, message: str, duration_ms: int = 4000) -> None:
        self._push("warning", message, duration_ms)

    def info(self, message: str, duration_ms: int = 3000) -> None:
        self._push("info", message, duration_ms)

    def of_level(self, level: Level) -> List[Notification]:
        return [n for n in self.notifications if n.level == level]

    def drain(self) -> List[Notification]:
        items, self.notifications = self.notifications, []
        return items

    def _push(self, level: Level, message: str, duration_ms: int) -> None:
        self.notifications.append(Notification(level, message, duration_ms))


class LoggingNotifier(RecordingNotifier):
    """记录提示的同时写入日志。"""

    def _push(self, level: Level, message: str, duration_ms: int) -> None:
        super()._push(level, message, duration_ms)
        log_event(_LOG_LEVELS[level], message, {"notification": level})
