import threading

from chat_core.domain.exceptions import StorageError
from chat_core.domain.models import TokenUsage
from chat_core.sessions.orchestrator import USAGE_WARNING_MESSAGE, SessionOrchestrator
from chat_core.tests.fakes import FakeCapability, FakeSummarizer


def test_hello_scenario(make_orchestrator, store):
    cap = FakeCapability(replies=[["Hi", " there"]])
    orch = make_orchestrator(cap)
    assert store.list_metadata() == []

    assert orch.send_message("Hello") is True

    messages = orch.messages.value
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[1].content == "Hi there"
    assert messages[1].is_streaming is False
    assert orch.session.title == "Hello"
    items = store.list_metadata()
    assert len(items) == 1
    assert items[0].id == orch.session_id
    assert items[0].title == "Hello"
    assert store.get(orch.session_id).messages == messages


def test_assistant_is_streaming_until_exhausted(make_orchestrator):
    cap = FakeCapability(replies=[["a", "b", "c"]])
    orch = make_orchestrator(cap)
    snapshots = []
    orch.messages.subscribe(lambda msgs: snapshots.append([(m.role, m.content, m.is_streaming) for m in msgs]), replay=False)

    orch.send_message("go")

    assert snapshots[0] == [("user", "go", False)]
    assert snapshots[1] == [("user", "go", False), ("assistant", "", True)]
    streamed = [s[1] for s in snapshots[2:-1]]
    assert streamed == [("assistant", "a", True), ("assistant", "ab", True), ("assistant", "abc", True)]
    assert snapshots[-1][1] == ("assistant", "abc", False)


def test_loading_flag_toggles(make_orchestrator):
    orch = make_orchestrator(FakeCapability(replies=[["x"]]))
    flags = []
    orch.is_loading.subscribe(flags.append, replay=False)
    orch.send_message("hi")
    assert flags == [True, False]
    assert orch.is_loading.value is False


def test_rejects_blank_input(make_orchestrator):
    orch = make_orchestrator(FakeCapability())
    assert orch.send_message("   \n\t") is False
    assert orch.send_message("") is False
    assert orch.messages.value == []


def test_rejects_send_while_in_flight(make_orchestrator):
    release = threading.Event()
    started = threading.Event()

    def slow():
        started.set()
        release.wait(5)
        yield "done"

    orch = make_orchestrator(FakeCapability(replies=[slow()]))
    worker = threading.Thread(target=orch.send_message, args=("first",))
    worker.start()
    assert started.wait(5)
    assert orch.send_message("second") is False
    release.set()
    worker.join(5)
    assert [m.content for m in orch.messages.value] == ["first", "done"]


def test_failure_mid_stream_rolls_back_turn(make_orchestrator, notifier, store):
    cap = FakeCapability(replies=[["ok"], ["par", "tial", RuntimeError("boom")]])
    orch = make_orchestrator(cap)
    orch.send_message("one")
    before = len(orch.messages.value)

    assert orch.send_message("two") is True

    messages = orch.messages.value
    assert len(messages) == before
    assert all(not m.is_streaming for m in messages)
    assert notifier.of_level("error")[-1].message == "Failed to generate response. Please try again."
    assert orch.is_loading.value is False
    assert len(store.get(orch.session_id).messages) == 2


def test_context_failure_message(make_orchestrator, notifier):
    cap = FakeCapability(replies=[[RuntimeError("token limit exceeded")]])
    orch = make_orchestrator(cap)
    orch.send_message("hi")
    assert orch.messages.value == []
    error = notifier.of_level("error")[-1]
    assert error.message == "Context limit reached. Please start a new conversation."
    assert error.duration_ms == 6000


def test_no_session_is_reported(make_orchestrator, notifier):
    orch = make_orchestrator(FakeCapability())
    orch.lifecycle.destroy_session()
    assert orch.send_message("hi") is True
    assert orch.messages.value == []
    assert notifier.of_level("error")[-1].message.startswith("Session error")


def test_usage_is_pulled_from_handle(make_orchestrator, store):
    cap = FakeCapability(replies=[["a"], ["b"]], quota=1000, usage_step=120)
    orch = make_orchestrator(cap)
    orch.send_message("one")
    orch.send_message("two")
    assert orch.usage.value == TokenUsage(240, 1000)
    assert store.get(orch.session_id).token_usage == 240


def test_usage_advisory_threshold(make_orchestrator, notifier):
    cap = FakeCapability(replies=[["a"], ["b"]], quota=1000, usage_step=450)
    orch = make_orchestrator(cap)
    orch.send_message("one")
    assert notifier.of_level("warning") == []
    orch.send_message("two")
    assert [n.message for n in notifier.of_level("warning")] == [USAGE_WARNING_MESSAGE]


def test_usage_advisory_fires_every_turn_by_default(make_orchestrator, notifier):
    cap = FakeCapability(replies=[["a"], ["b"]], quota=100, usage_step=45)
    orch = make_orchestrator(cap)
    cap.handles[-1].input_usage = 80
    orch.send_message("one")
    orch.send_message("two")
    assert len(notifier.of_level("warning")) == 2


def test_usage_advisory_once_per_session(make_orchestrator, notifier):
    cap = FakeCapability(replies=[["a"], ["b"]], quota=100, usage_step=45)
    orch = make_orchestrator(cap, usage_advisory_mode="once_per_session")
    cap.handles[-1].input_usage = 80
    orch.send_message("one")
    orch.send_message("two")
    assert len(notifier.of_level("warning")) == 1


def test_should_warn_usage():
    assert SessionOrchestrator.should_warn_usage(TokenUsage(81, 100))
    assert not SessionOrchestrator.should_warn_usage(TokenUsage(80, 100))
    assert not SessionOrchestrator.should_warn_usage(TokenUsage(10, 0))
    assert not SessionOrchestrator.should_warn_usage(TokenUsage(0, 0))


def test_title_uses_summarizer_only_on_first_exchange(make_orchestrator):
    summarizer = FakeSummarizer(result="Greeting")
    orch = make_orchestrator(FakeCapability(replies=[["a"], ["b"]]), summarizer=summarizer)
    orch.send_message("Hello there")
    orch.send_message("And again")
    assert orch.session.title == "Greeting"
    assert summarizer.calls == ["Hello there"]


def test_long_first_message_title_fallback(make_orchestrator):
    orch = make_orchestrator(FakeCapability(replies=[["a"]]))
    orch.send_message("x" * 45)
    assert orch.session.title == "x" * 30 + "..."


def test_storage_failure_keeps_conversation(make_orchestrator, notifier, monkeypatch):
    orch = make_orchestrator(FakeCapability(replies=[["a"]]))

    def fail(session):
        raise StorageError(code="STORE_WRITE_ERROR", message="disk full")

    monkeypatch.setattr(orch._store, "put", fail)
    assert orch.send_message("hi") is True
    assert [m.content for m in orch.messages.value] == ["hi", "a"]
    assert notifier.of_level("error")[-1].message.startswith("Failed to save chat")


def test_new_chat_replaces_handle(make_orchestrator, notifier):
    cap = FakeCapability(replies=[["a"]])
    orch = make_orchestrator(cap)
    orch.send_message("hi")
    old_id = orch.session_id
    old_handle = cap.handles[-1]

    assert orch.new_chat() is True

    assert old_handle.destroyed
    assert len(cap.handles) == 2
    assert orch.session_id != old_id
    assert orch.messages.value == []
    assert orch.usage.value == TokenUsage(0, 0)
    assert [n.message for n in notifier.notifications[-2:]] == ["Chat cleared", "New chat started"]


def test_new_chat_failure_is_reported(make_orchestrator, notifier):
    cap = FakeCapability()
    orch = make_orchestrator(cap)
    cap.fail_create = RuntimeError("nope")
    assert orch.new_chat() is False
    assert notifier.of_level("error")[-1].message == "Failed to start new chat"


def test_load_session_restores_context(make_orchestrator, store):
    cap = FakeCapability(replies=[["Hi"], ["More"]])
    orch = make_orchestrator(cap)
    orch.send_message("Hello")
    saved_id = orch.session_id
    orch.new_chat()

    assert orch.load_session(saved_id) is True

    assert orch.session_id == saved_id
    assert [m.content for m in orch.messages.value] == ["Hello", "Hi"]
    prompts = cap.created_options[-1].initial_prompts
    assert [(p.role, p.content) for p in prompts] == [("user", "Hello"), ("assistant", "Hi")]
    orch.send_message("next")
    assert len(store.get(saved_id).messages) == 4
    assert store.get(saved_id).title == "Hello"


def test_load_missing_session(make_orchestrator, notifier):
    orch = make_orchestrator(FakeCapability())
    assert orch.load_session("c-missing") is False
    assert notifier.of_level("error")[-1].message == "Chat not found"


def test_delete_current_session_starts_new_chat(make_orchestrator, store):
    orch = make_orchestrator(FakeCapability(replies=[["a"]]))
    orch.send_message("hi")
    sid = orch.session_id
    assert orch.delete_session(sid) is True
    assert store.list_metadata() == []
    assert orch.session_id != sid


def test_token_percentage_and_level(make_orchestrator):
    orch = make_orchestrator(FakeCapability())
    assert orch.token_percentage() == 0.0
    orch.usage.publish(TokenUsage(70, 100))
    assert orch.token_level() == "accent"
    orch.usage.publish(TokenUsage(90, 100))
    assert orch.token_level() == "warn"
    orch.usage.publish(TokenUsage(10, 100))
    assert orch.token_level() == "primary"


def test_delete_rejected_while_turn_in_flight(make_orchestrator, store, notifier):
    release = threading.Event()
    started = threading.Event()

    def slow():
        started.set()
        release.wait(5)
        yield "late"

    orch = make_orchestrator(FakeCapability(replies=[["a"], slow()]))
    orch.send_message("one")
    sid = orch.session_id
    worker = threading.Thread(target=orch.send_message, args=("two",))
    worker.start()
    assert started.wait(5)

    assert orch.delete_session(sid) is False

    release.set()
    worker.join(5)
    assert notifier.of_level("warning")[-1].message.startswith("Wait for the response")
    assert orch.session_id == sid
    assert len(store.get(sid).messages) == 4
    assert orch.delete_session(sid) is True
    assert store.get(sid) is None
    assert store.list_metadata() == []


def test_failed_turn_does_not_raise(make_orchestrator, notifier):
    orch = make_orchestrator(FakeCapability(replies=[["Hi", RuntimeError("boom")]]))
    assert orch.send_message("Hello") is True
    assert orch.messages.value == []
    assert len(notifier.of_level("error")) == 1
