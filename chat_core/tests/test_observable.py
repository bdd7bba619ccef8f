from chat_core.infrastructure.events.observable import Observable
from chat_core.sessions.notifier import LoggingNotifier, RecordingNotifier


def test_subscribe_replays_current_value():
    obs = Observable(1)
    seen = []
    obs.subscribe(seen.append)
    obs.publish(2)
    assert seen == [1, 2]


def test_subscribe_without_replay():
    obs = Observable("a")
    seen = []
    obs.subscribe(seen.append, replay=False)
    assert seen == []
    obs.publish("b")
    assert seen == ["b"]


def test_unsubscribe_is_idempotent():
    obs = Observable(0)
    seen = []
    sub = obs.subscribe(seen.append)
    sub.unsubscribe()
    sub.unsubscribe()
    obs.publish(5)
    assert seen == [0]
    assert obs.listener_count == 0


def test_failing_listener_does_not_block_others():
    obs = Observable(0)
    seen = []

    def bad(value):
        raise ValueError("listener bug")

    obs.subscribe(bad, replay=False)
    obs.subscribe(seen.append, replay=False)
    obs.publish(3)
    assert seen == [3]
    assert obs.value == 3


def test_recording_notifier_levels_and_drain():
    n = RecordingNotifier()
    n.success("saved")
    n.error("failed", 6000)
    n.warning("careful")
    assert [x.message for x in n.of_level("error")] == ["failed"]
    assert n.of_level("error")[0].duration_ms == 6000
    assert len(n.drain()) == 3
    assert n.notifications == []


def test_logging_notifier_records():
    n = LoggingNotifier()
    n.info("Chat cleared")
    assert n.notifications[0].level == "info"
