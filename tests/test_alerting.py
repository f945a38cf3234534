import sqlite3

import pytest

from conftest import FakeChannel, FakeClock
from gpon_monitor.alerting import AlertManager
from gpon_monitor.models.traffic import MonitoredEntity, TrafficSample
from gpon_monitor.notifications import NotificationDispatcher

MINUTE = 60


def _manager(store, clock, channels=None, **kwargs):
    if channels is None:
        channels = [FakeChannel("email"), FakeChannel("telegram")]
    kwargs.setdefault("first_alert_delay_s", 5 * MINUTE)
    kwargs.setdefault("second_alert_delay_s", 60 * MINUTE)
    manager = AlertManager(
        store, NotificationDispatcher(channels, timeout_s=1.0), clock, **kwargs
    )
    return manager, channels


def _sample(name: str, rx: int, tx: int = 0) -> TrafficSample:
    return TrafficSample(name=name, rx=rx, tx=tx, timestamp=0, target="10.0.0.2")


def _entities(threshold=10, active=True):
    return {"Q1": MonitoredEntity(name="Q1", active=active, threshold_kb=threshold)}


@pytest.mark.asyncio
async def test_q1_escalation_and_recovery(store) -> None:
    clock = FakeClock(0)
    manager, (email, chat) = _manager(store, clock)
    entities = _entities()

    await manager.evaluate([_sample("Q1", 0)], entities)
    assert manager.tracking["Q1"].first_crossing_time == 0
    assert manager.tracking["Q1"].phase == "below_threshold"
    record = store.find_open_alert("Q1")
    assert record is not None and record.start_time == 0
    assert email.sent == [] and chat.sent == []

    clock.now = 5 * MINUTE
    result = await manager.evaluate([_sample("Q1", 0)], entities)
    assert result.transitions == 1 and result.notifications == 1
    assert manager.tracking["Q1"].first_notified is True
    assert store.find_open_alert("Q1").notified_first is True
    assert store.find_open_alert("Q1").first_alert_sent_at == 5 * MINUTE
    assert email.stages() == ["first"] and chat.stages() == ["first"]

    clock.now = 60 * MINUTE
    await manager.evaluate([_sample("Q1", 0)], entities)
    assert manager.tracking["Q1"].second_notified is True
    assert store.find_open_alert("Q1").notified_second is True
    assert chat.stages() == ["first", "second"]

    clock.now = 61 * MINUTE
    await manager.evaluate([_sample("Q1", 20480)], entities)
    assert "Q1" not in manager.tracking
    assert store.find_open_alert("Q1") is None
    (closed,) = store.alerts_for("Q1")
    assert closed.end_time == 61 * MINUTE
    # Recovery notifications are disabled by default
    assert chat.stages() == ["first", "second"]

    history = store.alert_history("Q1")
    assert [h.alert_type for h in history] == ["second", "first"]


@pytest.mark.asyncio
async def test_recovery_notification_sent_when_enabled(store) -> None:
    clock = FakeClock(0)
    manager, (_, chat) = _manager(store, clock, send_recovery_notifications=True)

    await manager.check_alert("Q1", 0.0, "10.0.0.2", 10)
    clock.now = 5 * MINUTE
    await manager.check_alert("Q1", 0.0, "10.0.0.2", 10)
    clock.now = 6 * MINUTE
    stage, sent = await manager.check_alert("Q1", 20.0, "10.0.0.2", 10)

    assert stage == "recovery"
    assert sent is True
    assert chat.stages() == ["first", "recovery"]
    assert chat.sent[-1].since == 0
    assert store.alert_history("Q1", limit=1)[0].alert_type == "recovery"


@pytest.mark.asyncio
async def test_repeated_evaluation_does_not_duplicate_notifications(store) -> None:
    clock = FakeClock(0)
    manager, (email, _) = _manager(store, clock)

    await manager.check_alert("Q1", 0.0, "N/A", 10)
    clock.now = 5 * MINUTE
    first = await manager.check_alert("Q1", 0.0, "N/A", 10)
    again = await manager.check_alert("Q1", 0.0, "N/A", 10)

    assert first == ("first", True)
    assert again == (None, False)
    assert email.stages() == ["first"]
    assert len(store.alerts_for("Q1")) == 1


@pytest.mark.asyncio
async def test_second_stage_never_fires_in_same_cycle_as_first(store) -> None:
    clock = FakeClock(1000)
    manager, (email, _) = _manager(
        store, clock, first_alert_delay_s=0, second_alert_delay_s=0
    )

    stage, _ = await manager.check_alert("Q1", 0.0, "N/A", 10)
    assert stage == "first"
    assert manager.tracking["Q1"].second_notified is False

    stage, _ = await manager.check_alert("Q1", 0.0, "N/A", 10)
    assert stage == "second"
    assert email.stages() == ["first", "second"]


@pytest.mark.asyncio
async def test_recovery_round_trip_opens_new_record(store) -> None:
    clock = FakeClock(0)
    manager, _ = _manager(store, clock)

    await manager.check_alert("Q1", 0.0, "N/A", 10)
    clock.now = 5 * MINUTE
    await manager.check_alert("Q1", 0.0, "N/A", 10)
    clock.now = 10 * MINUTE
    await manager.check_alert("Q1", 50.0, "N/A", 10)
    assert "Q1" not in manager.tracking

    clock.now = 20 * MINUTE
    await manager.check_alert("Q1", 0.0, "N/A", 10)

    old, new = store.alerts_for("Q1")
    assert old.end_time == 10 * MINUTE
    assert new.end_time is None
    assert new.start_time == 20 * MINUTE
    assert manager.tracking["Q1"].first_notified is False


@pytest.mark.asyncio
async def test_brief_recovery_does_not_happen_without_above_threshold_sample(store) -> None:
    clock = FakeClock(0)
    manager, _ = _manager(store, clock)

    await manager.check_alert("Q1", 0.0, "N/A", 10)
    clock.now = 4 * MINUTE
    await manager.check_alert("Q1", 9.99, "N/A", 10)
    clock.now = 5 * MINUTE
    stage, _ = await manager.check_alert("Q1", 0.0, "N/A", 10)

    assert stage == "first"
    assert manager.tracking["Q1"].first_crossing_time == 0


@pytest.mark.asyncio
async def test_restore_state_reproduces_stored_flags(store) -> None:
    store.open_alert("Q1", 100.0)
    store.mark_notified("Q1", "first", 400.0)
    store.open_alert("Q2", 200.0)
    store.open_alert("Q3", 300.0)
    store.mark_notified("Q3", "first", 500.0)
    store.mark_notified("Q3", "second", 900.0)

    manager, _ = _manager(store, FakeClock(1000))
    restored = await manager.restore_state()

    assert restored == 3
    snapshot = {s.name: s for s in manager.snapshot()}
    assert (snapshot["Q1"].first_notified, snapshot["Q1"].second_notified) == (True, False)
    assert (snapshot["Q2"].first_notified, snapshot["Q2"].second_notified) == (False, False)
    assert (snapshot["Q3"].first_notified, snapshot["Q3"].second_notified) == (True, True)
    assert snapshot["Q1"].first_crossing_time == 100.0


@pytest.mark.asyncio
async def test_restore_state_normalizes_second_without_first(store) -> None:
    store.open_alert("Q1", 100.0)
    store._conn.execute("UPDATE alerts SET notified_second = 1 WHERE name = 'Q1'")

    manager, _ = _manager(store, FakeClock(1000))
    await manager.restore_state()

    track = manager.tracking["Q1"]
    assert track.first_notified is True
    assert track.second_notified is True
    assert manager.metrics.invariant_violations == 1


@pytest.mark.asyncio
async def test_restore_state_repairs_duplicate_open_records(store) -> None:
    store._conn.execute("INSERT INTO alerts (name, start_time) VALUES ('Q1', 100.0)")
    store._conn.execute("INSERT INTO alerts (name, start_time) VALUES ('Q1', 200.0)")

    manager, _ = _manager(store, FakeClock(1000))
    await manager.restore_state()

    open_records = [r for r in store.alerts_for("Q1") if r.is_open]
    assert len(open_records) == 1
    assert open_records[0].start_time == 200.0
    assert manager.tracking["Q1"].first_crossing_time == 200.0
    assert manager.metrics.invariant_violations == 1


@pytest.mark.asyncio
async def test_open_record_is_adopted_instead_of_duplicated(store) -> None:
    store.open_alert("Q1", 0.0)
    store.mark_notified("Q1", "first", 300.0)

    clock = FakeClock(10 * MINUTE)
    manager, (email, _) = _manager(store, clock)
    stage, _ = await manager.check_alert("Q1", 0.0, "N/A", 10)

    assert stage is None
    assert email.sent == []
    assert manager.tracking["Q1"].first_notified is True
    assert len(store.alerts_for("Q1")) == 1


@pytest.mark.asyncio
async def test_inactive_entity_keeps_tracking(store) -> None:
    clock = FakeClock(0)
    manager, (email, _) = _manager(store, clock)
    await manager.evaluate([_sample("Q1", 0)], _entities())

    clock.now = 30 * MINUTE
    result = await manager.evaluate([_sample("Q1", 40960)], _entities(active=False))

    assert result.active == 0
    assert "Q1" in manager.tracking
    assert store.find_open_alert("Q1") is not None
    assert email.sent == []


@pytest.mark.asyncio
async def test_unconfigured_queue_is_skipped(store) -> None:
    manager, _ = _manager(store, FakeClock(0))
    result = await manager.evaluate([_sample("GPON-unknown", 0)], {})
    assert result.active == 0
    assert manager.tracking == {}


@pytest.mark.asyncio
async def test_email_failure_still_marks_first_notified(store) -> None:
    clock = FakeClock(0)
    email = FakeChannel("email", error=RuntimeError("smtp down"))
    chat = FakeChannel("telegram")
    manager, _ = _manager(store, clock, channels=[email, chat])

    await manager.check_alert("Q1", 0.0, "N/A", 10)
    clock.now = 5 * MINUTE
    stage, sent = await manager.check_alert("Q1", 0.0, "N/A", 10)

    assert (stage, sent) == ("first", True)
    assert manager.tracking["Q1"].first_notified is True
    assert store.find_open_alert("Q1").notified_first is True
    assert chat.stages() == ["first"]
    assert manager.metrics.alerts_sent == {("first", "telegram"): 1}


@pytest.mark.asyncio
async def test_all_channels_failing_skips_history(store) -> None:
    clock = FakeClock(0)
    email = FakeChannel("email", error=RuntimeError("smtp down"))
    manager, _ = _manager(store, clock, channels=[email])

    await manager.check_alert("Q1", 0.0, "N/A", 10)
    clock.now = 5 * MINUTE
    await manager.check_alert("Q1", 0.0, "N/A", 10)

    assert manager.tracking["Q1"].first_notified is True
    assert store.alert_history("Q1") == []


@pytest.mark.asyncio
async def test_store_failure_keeps_in_memory_transition(store, monkeypatch) -> None:
    def broken_open(name, start_time):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "open_alert", broken_open)
    manager, _ = _manager(store, FakeClock(0))

    stage, _ = await manager.check_alert("Q1", 0.0, "N/A", 10)

    assert stage is None
    assert "Q1" in manager.tracking
    assert manager.metrics.store_errors == 1


def test_threshold_falls_back_to_default(store) -> None:
    manager, _ = _manager(store, FakeClock(0), default_threshold_kb=0.5)
    assert manager.threshold_for(MonitoredEntity("Q1", True, None)) == 0.5
    assert manager.threshold_for(MonitoredEntity("Q1", True, 0)) == 0.5
    assert manager.threshold_for(MonitoredEntity("Q1", True, 25)) == 25


@pytest.mark.asyncio
async def test_reset_closes_open_alerts(store) -> None:
    clock = FakeClock(0)
    manager, _ = _manager(store, clock)
    await manager.check_alert("Q1", 0.0, "N/A", 10)
    await manager.check_alert("Q2", 0.0, "N/A", 10)

    clock.now = 100
    closed = await manager.reset()

    assert closed == 2
    assert manager.tracking == {}
    assert store.open_alerts() == []


@pytest.mark.asyncio
async def test_statistics_counts_recent_alerts(store) -> None:
    clock = FakeClock(100_000)
    manager, _ = _manager(store, clock, first_alert_delay_s=0)
    await manager.check_alert("Q1", 0.0, "N/A", 10)

    stats = await manager.statistics()

    assert stats.total_alerts == 1
    assert stats.active_alerts == 1
    assert stats.first_notifications == 1
    assert stats.history_by_stage == {"first": 1}
