"""Chat Core 顶层包。

该包提供本地大模型多轮对话的会话管理核心，
包括配置加载、领域模型、本地模型能力适配、会话生命周期、
流式输出累加、错误分类与版本化的本地持久化存储。
"""

from chat_core.sessions import SessionOrchestrator, SessionLifecycleManager, CapabilityProbe

__all__ = ["SessionOrchestrator", "SessionLifecycleManager", "CapabilityProbe"]
