"""Tests for settings and container wiring."""
import pytest
from pydantic import ValidationError

from nutri_reminders.reminders.agent import ReminderAgent
from nutri_reminders.reminders.config import ReminderSettings
from nutri_reminders.reminders.container import build_container, build_sink, build_wake_channel
from nutri_reminders.reminders.dispatcher import FcmSink, LoggingSink
from nutri_reminders.reminders.notifier import InProcessWakeChannel, NullWakeChannel, RedisWakeChannel
from nutri_reminders.reminders.repository import ReminderStore


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("REMINDER_SCAN_INTERVAL_SECONDS", "60")
    monkeypatch.setenv("REMINDER_API_KEYS", "a, b,,c")
    monkeypatch.setenv("REMINDER_OVERDUE_GRACE_MINUTES", "")
    cfg = ReminderSettings()
    assert cfg.SCAN_INTERVAL_SECONDS == 60
    assert cfg.API_KEYS == ["a", "b", "c"]
    assert cfg.OVERDUE_GRACE_MINUTES is None


@pytest.mark.parametrize("overrides", [
    {"WAKE_CHANNEL": "redis", "REDIS_URL": None},
    {"WAKE_CHANNEL": "celery", "CELERY_BROKER_URL": None},
    {"SCAN_INTERVAL_SECONDS": 0},
    {"INTERVAL_SNAP_TOLERANCE_SECONDS": -1},
    {"DELIVERY_SINK": "carrier-pigeon"},
])
def test_invalid_combinations_are_rejected(overrides):
    with pytest.raises(ValidationError):
        ReminderSettings(**overrides)


def test_sink_selection():
    assert isinstance(build_sink(ReminderSettings(DELIVERY_SINK="log")), LoggingSink)
    fcm = build_sink(ReminderSettings(DELIVERY_SINK="fcm", FCM_PROJECT_ID="demo"))
    assert isinstance(fcm, FcmSink)
    assert fcm.project_id == "demo"


def test_wake_channel_selection():
    agent = ReminderAgent(ReminderStore(None), LoggingSink())
    try:
        assert isinstance(build_wake_channel(ReminderSettings(), agent), NullWakeChannel)
        assert isinstance(build_wake_channel(ReminderSettings(EMBEDDED_AGENT=True), agent), InProcessWakeChannel)
        redis_channel = build_wake_channel(ReminderSettings(WAKE_CHANNEL="redis"), agent)
        assert isinstance(redis_channel, RedisWakeChannel)
        assert redis_channel.channel == "reminders:wake"
    finally:
        agent.stop()


def test_container_uses_settings(session_factory):
    cfg = ReminderSettings(OVERDUE_GRACE_MINUTES=45, INTERVAL_SNAP_TOLERANCE_SECONDS=10, EMBEDDED_AGENT=True)
    container = build_container(cfg, session_factory=session_factory)
    try:
        assert container.embedded_agent is True
        assert container.agent.overdue_grace.total_seconds() == 45 * 60
        assert container.reconciler.tolerance.total_seconds() == 10
        assert container.reconciler.notifier is container.wake_channel
    finally:
        container.shutdown()


def test_celery_beat_schedules_the_scan_task():
    from nutri_reminders.reminders.celery_app import celery_app
    from nutri_reminders.reminders.config import settings
    from nutri_reminders.reminders.notifier import SCAN_TASK_NAME

    entry = celery_app.conf.beat_schedule["scan-and-dispatch"]
    assert entry["task"] == SCAN_TASK_NAME
    assert entry["schedule"] == settings.SCAN_INTERVAL_SECONDS


def test_scan_task_runs_one_agent_scan(monkeypatch, session_factory):
    from conftest import RecordingSink
    from nutri_reminders.reminders import tasks

    container = build_container(ReminderSettings(), session_factory=session_factory, sink=RecordingSink())
    monkeypatch.setattr(tasks, "get_container", lambda: container)
    try:
        assert tasks.scan_and_dispatch_task(owner_id="u1") == 0
    finally:
        container.shutdown()
