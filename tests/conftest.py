"""Pytest configuration and fixtures."""
from datetime import datetime, timedelta

import pytest

from nutri_reminders.db.session import build_engine, create_session_factory, init_db
from nutri_reminders.reminders.agent import ReminderAgent
from nutri_reminders.reminders.dispatcher import DeliverySink
from nutri_reminders.reminders.notifier import WakeChannel
from nutri_reminders.reminders.reconciler import Reconciler
from nutri_reminders.reminders.repository import ReminderStore

# Wednesday
START = datetime(2024, 1, 10, 9, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSink(DeliverySink):
    """Records payloads; ``result`` may be a bool or an exception to raise."""

    name = "recording"

    def __init__(self, result=True):
        self.result = result
        self.delivered = []

    def deliver(self, payload):
        self.delivered.append(payload)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class RecordingWakeChannel(WakeChannel):
    name = "recording"

    def __init__(self):
        self.signals = []

    def _send(self, signal):
        self.signals.append(signal)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ReminderStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def wake():
    return RecordingWakeChannel()


@pytest.fixture
def reconciler(store, wake, clock):
    return Reconciler(store, notifier=wake, clock=clock, sleep=lambda seconds: None)


@pytest.fixture
def agent(store, sink, clock):
    a = ReminderAgent(store, sink, clock=clock, delivery_timeout=2.0, delivery_workers=2)
    yield a
    a.stop(timeout=1.0)
