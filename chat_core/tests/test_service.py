import pytest

from chat_core.api import service
from chat_core.tests.fakes import FakeCapability


@pytest.fixture
def svc(tmp_path, monkeypatch):
    cap = FakeCapability(replies=[["Hi", " there"]])
    monkeypatch.setattr(service, "create_capability", lambda: cap)
    monkeypatch.setattr(service.settings, "storage_root", str(tmp_path / ".storage"))
    monkeypatch.setattr(service.settings, "enable_summarizer", False)
    service.reset()
    yield service
    service.reset()


def test_initialize_and_send(svc):
    status = svc.initialize()
    assert status["status"] == "ready"

    result = svc.send_message("Hello")

    assert result["accepted"] is True
    assert result["title"] == "Hello"
    assert [m["content"] for m in result["messages"]] == ["Hello", "Hi there"]
    assert result["messages"][1]["is_streaming"] is False
    assert result["usage"]["quota"] == 1000
    chats = svc.list_chats()
    assert [c["id"] for c in chats] == [result["session_id"]]


def test_blank_input_not_accepted(svc):
    svc.initialize()
    assert svc.send_message("  ")["accepted"] is False


def test_send_without_session_reports_error(svc):
    result = svc.send_message("Hello")
    assert result["messages"] == []
    assert result["notifications"][-1]["level"] == "error"


def test_new_load_delete(svc):
    svc.initialize()
    first = svc.send_message("Hello")["session_id"]

    created = svc.new_chat()
    assert created["ok"] is True
    assert created["session_id"] != first
    assert svc.get_messages() == []

    loaded = svc.load_chat(first)
    assert loaded["ok"] is True
    assert len(svc.get_messages()) == 2

    assert svc.delete_chat(first)["ok"] is True
    assert svc.list_chats() == []
