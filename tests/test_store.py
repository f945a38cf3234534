import pytest

from gpon_monitor.models.alerts import AlertHistoryEntry
from gpon_monitor.models.traffic import TrafficSample


def test_upsert_entity_round_trip(store) -> None:
    store.upsert_entity("GPON-1", True, 10, updated_at=100)
    store.upsert_entity("GPON-2", False)
    store.upsert_entity("GPON-1", True, 20, updated_at=200)

    entities = store.monitored_entities()

    assert entities["GPON-1"].active is True
    assert entities["GPON-1"].threshold_kb == 20
    assert entities["GPON-1"].updated_at == 200
    assert entities["GPON-2"].active is False
    assert entities["GPON-2"].threshold_kb is None


def test_upsert_entity_rejects_non_positive_threshold(store) -> None:
    with pytest.raises(ValueError):
        store.upsert_entity("GPON-1", True, 0)


def test_traffic_history_filters_by_name_and_time(store) -> None:
    for ts in (100, 200, 300):
        store.append_sample(TrafficSample("GPON-1", rx=ts, tx=1, timestamp=ts))
    store.append_sample(TrafficSample("GPON-2", rx=5, tx=5, timestamp=250))

    points = store.traffic_history("GPON-1", since=200)

    assert [p.timestamp for p in points] == [200, 300]
    assert points[0].rx == 200 and points[0].tx == 1


def test_prune_samples_removes_old_rows(store) -> None:
    for ts in (100, 200, 300):
        store.append_sample(TrafficSample("GPON-1", rx=0, tx=0, timestamp=ts))

    assert store.prune_samples(before=250) == 2
    assert [p.timestamp for p in store.traffic_history("GPON-1", 0)] == [300]


def test_open_alert_returns_existing_record(store) -> None:
    first = store.open_alert("Q1", 100.0)
    second = store.open_alert("Q1", 200.0)

    assert first.created is True
    assert second.created is False
    assert second.record.id == first.record.id
    assert second.record.start_time == 100.0
    assert len(store.alerts_for("Q1")) == 1


def test_open_alert_closes_older_duplicates(store) -> None:
    store._conn.execute("INSERT INTO alerts (name, start_time) VALUES ('Q1', 100.0)")
    store._conn.execute("INSERT INTO alerts (name, start_time) VALUES ('Q1', 200.0)")

    result = store.open_alert("Q1", 300.0)

    assert result.created is False
    assert result.repaired == 1
    assert result.record.start_time == 200.0
    assert [r.start_time for r in store.open_alerts()] == [200.0]


def test_mark_notified_and_close(store) -> None:
    store.open_alert("Q1", 100.0)

    assert store.mark_notified("Q1", "first", 400.0) == 1
    assert store.mark_notified("Q1", "second", 4000.0) == 1
    record = store.find_open_alert("Q1")
    assert record.notified_first and record.notified_second
    assert record.first_alert_sent_at == 400.0

    assert store.close_alert("Q1", 5000.0) == 1
    assert store.find_open_alert("Q1") is None
    assert store.mark_notified("Q1", "first", 6000.0) == 0


def test_mark_notified_rejects_recovery(store) -> None:
    store.open_alert("Q1", 100.0)
    with pytest.raises(ValueError):
        store.mark_notified("Q1", "recovery", 200.0)


def test_repair_open_alerts_keeps_newest(store) -> None:
    for start in (100.0, 200.0, 300.0):
        store._conn.execute(
            "INSERT INTO alerts (name, start_time) VALUES ('Q1', ?)", (start,)
        )
    store.open_alert("Q2", 150.0)

    repaired = store.repair_open_alerts(end_time=400.0)

    assert repaired == {"Q1": 2}
    assert sorted((r.name, r.start_time) for r in store.open_alerts()) == [
        ("Q1", 300.0),
        ("Q2", 150.0),
    ]


def test_alert_history_and_statistics(store) -> None:
    store.open_alert("Q1", 1000.0)
    store.mark_notified("Q1", "first", 1300.0)
    store.open_alert("Q2", 10.0)
    store.record_alert_history(AlertHistoryEntry("Q1", "first", 0.0, 10.0, 1300.0))
    store.record_alert_history(AlertHistoryEntry("Q1", "second", 0.0, 10.0, 5000.0))

    history = store.alert_history("Q1")
    stats = store.alert_statistics(since=500.0)

    assert [h.alert_type for h in history] == ["second", "first"]
    assert stats.total_alerts == 1
    assert stats.active_alerts == 1
    assert stats.first_notifications == 1
    assert stats.second_notifications == 0
    assert stats.history_by_stage == {"first": 1, "second": 1}


def test_close_all_open_alerts(store) -> None:
    store.open_alert("Q1", 100.0)
    store.open_alert("Q2", 100.0)

    assert store.close_all_open_alerts(200.0) == 2
    assert store.open_alerts() == []


def test_health_metrics(store) -> None:
    store.record_health_metric("monitor_duration_seconds", 0.5, 100.0)
    store.record_health_metric("monitor_duration_seconds", 0.7, 130.0)

    assert store.health_metrics("monitor_duration_seconds") == [(130.0, 0.7), (100.0, 0.5)]
    assert store.ping() is True
