"""对外 API 服务模块。

提供简化的函数接口供上层应用（CLI、桌面或 Web 外壳）调用，返回值均为普通 dict。
组件按配置懒加载，进程内只保留一套实例；需要自定义装配时直接使用 chat_core.sessions。
"""

from typing import Any, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.models import ChatMessage, format_ts
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonChatStore
from chat_core.providers import create_capability
from chat_core.sessions.lifecycle import SessionLifecycleManager
from chat_core.sessions.notifier import LoggingNotifier
from chat_core.sessions.orchestrator import SessionOrchestrator
from chat_core.sessions.probe import CapabilityProbe
from chat_core.sessions.summarizer import ModelSummarizer, TitleGenerator


_store: Optional[JsonChatStore] = None
_probe: Optional[CapabilityProbe] = None
_notifier: Optional[LoggingNotifier] = None
_orchestrator: Optional[SessionOrchestrator] = None


def get_default_orchestrator() -> SessionOrchestrator:
    """获取默认的会话编排器实例（单例）。"""
    global _store, _probe, _notifier, _orchestrator
    if _store is None:
        _store = JsonChatStore(root=settings.storage_root)
    if _orchestrator is None:
        capability = create_capability()
        _probe = CapabilityProbe(capability)
        _notifier = LoggingNotifier()
        summarizer = ModelSummarizer(capability) if settings.enable_summarizer else None
        _orchestrator = SessionOrchestrator.from_settings(
            lifecycle=SessionLifecycleManager(_probe, system_prompt=settings.system_prompt),
            store=_store,
            notifier=_notifier,
            title_generator=TitleGenerator(summarizer, max_chars=settings.title_max_chars),
            settings=settings,
        )
    return _orchestrator


def reset() -> None:
    """释放模型句柄并丢弃单例（测试或重新加载配置时使用）。"""
    global _store, _probe, _notifier, _orchestrator
    if _orchestrator is not None:
        _orchestrator.dispose()
    _store = _probe = _notifier = _orchestrator = None


def initialize() -> Dict[str, Any]:
    """启动检查：探测模型并创建第一个会话。"""
    orchestrator = get_default_orchestrator()
    status = _probe.initialize(orchestrator.lifecycle.create_session)
    return {
        "status": status.value,
        "message": _probe.status_message,
        "download_progress": _probe.download_progress.value,
    }


def send_message(user_input: str) -> Dict[str, Any]:
    """发送一轮用户消息。

    Args:
        user_input: 用户输入内容

    Returns:
        包含是否被接受、会话ID、消息列表、用量和本轮提示的字典
    """
    orchestrator = get_default_orchestrator()
    try:
        accepted = orchestrator.send_message(user_input)
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "session_id": orchestrator.session_id,
            "error": str(e),
        }})
        raise
    return {
        "accepted": accepted,
        "session_id": orchestrator.session_id,
        "title": orchestrator.session.title,
        "messages": get_messages(),
        "usage": get_usage(),
        "notifications": _drain_notifications(),
    }


def new_chat() -> Dict[str, Any]:
    ok = get_default_orchestrator().new_chat()
    return {"ok": ok, "session_id": _orchestrator.session_id, "notifications": _drain_notifications()}


def load_chat(session_id: str) -> Dict[str, Any]:
    ok = get_default_orchestrator().load_session(session_id)
    return {"ok": ok, "session_id": _orchestrator.session_id, "notifications": _drain_notifications()}


def delete_chat(session_id: str) -> Dict[str, Any]:
    ok = get_default_orchestrator().delete_session(session_id)
    return {"ok": ok, "notifications": _drain_notifications()}


def list_chats() -> List[Dict[str, Any]]:
    """列出所有会话（最近更新的在前）。

    Returns:
        会话列表，每项包含 id, title, timestamp
    """
    get_default_orchestrator()
    return [m.to_dict() for m in _store.list_metadata()]


def get_messages() -> List[Dict[str, Any]]:
    """获取当前会话的所有消息。"""
    return [_message_dict(m) for m in get_default_orchestrator().messages.value]


def get_usage() -> Dict[str, Any]:
    orchestrator = get_default_orchestrator()
    usage = orchestrator.usage.value
    return {
        "usage": usage.usage,
        "quota": usage.quota,
        "percentage": round(orchestrator.token_percentage(), 2),
        "level": orchestrator.token_level(),
    }


def _message_dict(m: ChatMessage) -> Dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "timestamp": format_ts(m.timestamp),
        "is_streaming": m.is_streaming,
    }


def _drain_notifications() -> List[Dict[str, Any]]:
    if _notifier is None:
        return []
    return [{"level": n.level, "message": n.message, "duration_ms": n.duration_ms} for n in _notifier.drain()]
