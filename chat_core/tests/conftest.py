import pytest

from chat_core.infrastructure.storage.json_store import JsonChatStore
from chat_core.sessions.lifecycle import SessionLifecycleManager
from chat_core.sessions.notifier import RecordingNotifier
from chat_core.sessions.orchestrator import SessionOrchestrator
from chat_core.sessions.probe import CapabilityProbe
from chat_core.sessions.summarizer import TitleGenerator
from chat_core.tests.fakes import FakeCapability


@pytest.fixture
def capability():
    return FakeCapability()


@pytest.fixture
def store(tmp_path):
    return JsonChatStore(root=tmp_path / ".storage")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_orchestrator(store, notifier):
    def _make(capability, summarizer=None, **kwargs):
        probe = CapabilityProbe(capability)
        lifecycle = SessionLifecycleManager(probe)
        if capability is not None:
            lifecycle.create_session()
        return SessionOrchestrator(
            lifecycle=lifecycle,
            store=store,
            notifier=notifier,
            title_generator=TitleGenerator(summarizer),
            **kwargs,
        )

    return _make
