"""Tests for wake channels."""
import json
from unittest.mock import Mock

from nutri_reminders.reminders.notifier import (
    SCAN_TASK_NAME,
    CeleryWakeChannel,
    InProcessWakeChannel,
    NullWakeChannel,
    RedisWakeChannel,
    RedisWakeListener,
    WakeSignal,
)


def test_null_channel_accepts_everything():
    assert NullWakeChannel().notify("u1", ["a", "b"]) is True


def test_in_process_channel_wakes_agent():
    agent = Mock()
    InProcessWakeChannel(agent).notify("u1", ["water-u1"])
    signal = agent.wake.call_args.args[0]
    assert signal == WakeSignal(owner_id="u1", reminder_ids=["water-u1"])


def test_redis_channel_publishes_json():
    client = Mock()
    RedisWakeChannel(client, "reminders:wake").notify("u1", ["goal-u1"])
    channel, message = client.publish.call_args.args
    assert channel == "reminders:wake"
    assert json.loads(message) == {"owner_id": "u1", "reminder_ids": ["goal-u1"]}


def test_celery_channel_enqueues_scan():
    app = Mock()
    CeleryWakeChannel(app, queue="reminders").notify("u1")
    app.send_task.assert_called_once_with(SCAN_TASK_NAME, kwargs={"owner_id": "u1"}, queue="reminders")


def test_failures_are_swallowed_and_reported():
    """A lost wake signal only delays delivery until the next timer tick."""
    client = Mock()
    client.publish.side_effect = ConnectionError("redis down")
    assert RedisWakeChannel(client, "reminders:wake").notify("u1", []) is False


def test_signal_json_round_trip_accepts_bytes():
    signal = WakeSignal(owner_id="u1", reminder_ids=["meal-lunch-u1"])
    assert WakeSignal.from_json(signal.to_json().encode("utf-8")) == signal


def test_listener_relays_messages_and_ignores_garbage():
    agent = Mock()
    listener = RedisWakeListener(Mock(), "reminders:wake", agent)
    listener.handle(b'{"owner_id": "u1", "reminder_ids": ["water-u1"]}')
    listener.handle(b"not json")
    assert agent.wake.call_count == 1
    assert agent.wake.call_args.args[0].owner_id == "u1"


def test_listener_thread_polls_pubsub_until_stopped():
    agent = Mock()
    pubsub = Mock()
    pubsub.get_message.side_effect = [
        {"type": "message", "data": b'{"owner_id": "u2", "reminder_ids": []}'},
    ] + [None] * 10000
    client = Mock()
    client.pubsub.return_value = pubsub
    listener = RedisWakeListener(client, "reminders:wake", agent, poll_timeout=0.01)
    listener.start()
    for _ in range(200):
        if agent.wake.called:
            break
        listener._stop.wait(0.01)
    listener.stop()
    pubsub.subscribe.assert_called_once_with("reminders:wake")
    pubsub.close.assert_called_once()
    assert agent.wake.call_args.args[0].owner_id == "u2"
