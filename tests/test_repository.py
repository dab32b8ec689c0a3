"""Tests for the reminder store."""
from datetime import datetime, time, timedelta

import pytest

from nutri_reminders.db.session import build_engine, create_session_factory
from nutri_reminders.reminders.exceptions import StorageUnavailable, WriteConflict
from nutri_reminders.reminders.models import Reminder, reminder_id_for
from nutri_reminders.reminders.recurrence_models import DailyRule
from nutri_reminders.reminders.repository import ReminderStore

T0 = datetime(2024, 1, 10, 9, 0)


def make_reminder(owner="u1", category="goal", slot=None, next_trigger=T0, enabled=True):
    return Reminder(
        id=reminder_id_for(owner, category, slot),
        owner_id=owner,
        category=category,
        rule=DailyRule(time=time(9, 0)).to_dict(),
        payload={"tag": category},
        enabled=enabled,
        next_trigger=next_trigger,
        trigger_count=0,
    )


def test_reminder_ids_are_deterministic():
    assert reminder_id_for("u1", "meal", "morning_snack") == "meal-morning-snack-u1"
    assert reminder_id_for("u1", "water") == "water-u1"


def test_put_then_get(store):
    store.put(make_reminder())
    loaded = store.get("goal-u1")
    assert loaded is not None
    assert loaded.owner_id == "u1"
    assert loaded.recurrence_rule == DailyRule(time=time(9, 0))
    assert loaded.created_at is not None


def test_put_upserts_and_refreshes_updated_at(store):
    first = store.put(make_reminder())
    stamp = first.updated_at
    replacement = make_reminder(next_trigger=T0 + timedelta(days=1))
    replacement.payload = {"tag": "changed"}
    second = store.put(replacement)
    assert second.updated_at >= stamp
    assert second.created_at == first.created_at
    assert store.get("goal-u1").payload == {"tag": "changed"}
    assert len(store.get_by_owner("u1")) == 1


def test_get_by_owner_is_scoped_and_ordered(store):
    store.put(make_reminder(category="goal", next_trigger=T0 + timedelta(hours=2)))
    store.put(make_reminder(category="weight", next_trigger=T0))
    store.put(make_reminder(owner="u2", category="goal"))
    rows = store.get_by_owner("u1")
    assert [r.id for r in rows] == ["weight-u1", "goal-u1"]


def test_get_due_filters_enabled_and_horizon(store):
    store.put(make_reminder(category="goal", next_trigger=T0 - timedelta(minutes=5)))
    store.put(make_reminder(category="weight", next_trigger=T0 - timedelta(minutes=10)))
    store.put(make_reminder(category="streak", next_trigger=T0 - timedelta(minutes=1), enabled=False))
    store.put(make_reminder(category="summary", next_trigger=T0 + timedelta(minutes=1)))
    assert [r.id for r in store.get_due(T0)] == ["weight-u1", "goal-u1"]
    assert [r.id for r in store.get_due(T0, limit=1)] == ["weight-u1"]


def test_get_upcoming_uses_owner_and_horizon(store):
    store.put(make_reminder(category="goal", next_trigger=T0 + timedelta(minutes=20)))
    store.put(make_reminder(category="weight", next_trigger=T0 + timedelta(hours=3)))
    store.put(make_reminder(owner="u2", category="goal", next_trigger=T0))
    assert [r.id for r in store.get_upcoming("u1", T0 + timedelta(minutes=30))] == ["goal-u1"]


def test_delete_and_delete_all_for_owner(store):
    store.put(make_reminder(category="goal"))
    store.put(make_reminder(category="weight"))
    store.put(make_reminder(owner="u2"))
    assert store.delete("goal-u1") is True
    assert store.delete("goal-u1") is False
    assert store.delete_all_for_owner("u1") == 1
    assert store.get_by_owner("u1") == []
    assert len(store.get_by_owner("u2")) == 1


def test_set_enabled(store):
    store.put(make_reminder())
    r = store.set_enabled("goal-u1", False)
    assert r.enabled is False
    assert store.get_due(T0 + timedelta(days=1)) == []
    r = store.set_enabled("goal-u1", True, next_trigger=T0 + timedelta(days=1))
    assert r.enabled is True
    assert store.get("goal-u1").next_trigger == T0 + timedelta(days=1)
    assert store.set_enabled("missing", True) is None


def test_insert_many_rejects_existing_ids(store):
    store.put(make_reminder())
    with pytest.raises(WriteConflict):
        store.insert_many([make_reminder()])


def test_upsert_many_replaces_existing_ids(store):
    store.put(make_reminder())
    saved = store.upsert_many([make_reminder(next_trigger=T0 + timedelta(hours=1)), make_reminder(category="weight")])
    assert len(saved) == 2
    assert store.get("goal-u1").next_trigger == T0 + timedelta(hours=1)


def test_advance_records_firing(store):
    store.put(make_reminder())
    due = store.get("goal-u1")
    assert store.advance(due, T0 + timedelta(days=1), fired_at=T0) is True
    after = store.get("goal-u1")
    assert after.next_trigger == T0 + timedelta(days=1)
    assert after.last_triggered == T0
    assert after.trigger_count == 1


def test_advance_without_firing_keeps_count(store):
    store.put(make_reminder())
    due = store.get("goal-u1")
    assert store.advance(due, T0 + timedelta(days=1)) is True
    after = store.get("goal-u1")
    assert after.trigger_count == 0
    assert after.last_triggered is None


def test_advance_leaves_replaced_rows_alone(store):
    store.put(make_reminder())
    stale = store.get("goal-u1")
    store.put(make_reminder(next_trigger=T0 + timedelta(hours=5)))
    assert store.advance(stale, T0 + timedelta(days=1), fired_at=T0) is False
    assert store.get("goal-u1").next_trigger == T0 + timedelta(hours=5)
    store.delete("goal-u1")
    assert store.advance(stale, T0 + timedelta(days=1), fired_at=T0) is False
    assert store.get("goal-u1") is None


@pytest.mark.parametrize("call", [
    lambda s: s.get("x"),
    lambda s: s.get_by_owner("u1"),
    lambda s: s.get_due(T0),
    lambda s: s.delete_all_for_owner("u1"),
    lambda s: s.put(make_reminder()),
])
def test_missing_store_raises_storage_unavailable(call):
    store = ReminderStore(None)
    assert store.available is False
    with pytest.raises(StorageUnavailable):
        call(store)


def test_ping_reports_reachability(store, tmp_path):
    assert store.ping() is True
    assert ReminderStore(None).ping() is False

    engine = build_engine(f"sqlite:///{tmp_path / 'missing-dir' / 'reminders.db'}")
    try:
        unreachable = ReminderStore(create_session_factory(engine))
        assert unreachable.available is True
        assert unreachable.ping() is False
    finally:
        engine.dispose()
