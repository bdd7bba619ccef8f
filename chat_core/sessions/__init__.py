"""会话管理核心：能力探测、生命周期、流式累加、错误分类与编排。"""

from chat_core.sessions.errors import classify_error
from chat_core.sessions.lifecycle import FragmentStream, SessionLifecycleManager
from chat_core.sessions.notifier import LoggingNotifier, Notifier, RecordingNotifier
from chat_core.sessions.orchestrator import SessionOrchestrator
from chat_core.sessions.probe import CapabilityProbe
from chat_core.sessions.stream import StreamAccumulator, StreamState, StreamUpdate
from chat_core.sessions.summarizer import ModelSummarizer, TitleGenerator

__all__ = [
    "classify_error",
    "CapabilityProbe",
    "FragmentStream",
    "LoggingNotifier",
    "ModelSummarizer",
    "Notifier",
    "RecordingNotifier",
    "SessionLifecycleManager",
    "SessionOrchestrator",
    "StreamAccumulator",
    "StreamState",
    "StreamUpdate",
    "TitleGenerator",
]
