import json
import threading
from datetime import datetime, timedelta

import pytest

from neonexcore.collector import Collector, CollectorConfig
from neonexcore.dashboard import (
    Alert,
    AlertCondition,
    Dashboard,
    DashboardConfig,
    default_dashboard_config,
)


@pytest.fixture
def collector():
    with Collector(CollectorConfig(collect_system_metrics=False)) as c:
        yield c


class _Sink:
    def __init__(self):
        self.messages = []
        self.event = threading.Event()

    def __call__(self, data):
        self.messages.append(json.loads(data.decode("utf-8")))
        self.event.set()


def test_snapshot_contains_metrics(collector):
    collector.new_counter("requests", "Total requests").add(3)
    dash = Dashboard(collector)
    snap = dash.snapshot()
    assert snap["type"] == "metrics"
    assert snap["uptime"] >= 0
    names = {m["name"]: m for m in snap["metrics"]}
    assert names["requests"]["value"] == 3.0
    assert names["requests"]["type"] == "counter"
    assert names["requests"]["description"] == "Total requests"


def test_broadcast_once_publishes_json(collector):
    collector.new_gauge("active").set(7)
    sink = _Sink()
    dash = Dashboard(collector, publish=sink)
    data = dash.broadcast_once()
    assert json.loads(data) == sink.messages[0]
    assert sink.messages[0]["metrics"][0]["value"] == 7.0


def test_histogram_buckets_serialize(collector):
    hist = collector.new_histogram("latency", "", None, [0.5, 1])
    hist.observe(0.25)
    dash = Dashboard(collector)
    message = json.loads(dash.broadcast_once())
    metric = message["metrics"][0]
    assert metric["type"] == "histogram"
    assert metric["metadata"]["count"] == 1
    assert sorted(metric["metadata"]["buckets"].values()) == [1, 1]


def test_alert_fires_and_publishes(collector):
    collector.new_gauge("queue").set(50)
    sink = _Sink()
    dash = Dashboard(collector, publish=sink)
    dash.add_alert(Alert(name="big", metric="queue", condition=AlertCondition.GREATER_THAN, threshold=10))
    dash.broadcast_once()
    types = [m["type"] for m in sink.messages]
    assert types == ["metrics", "alert"]
    alert_msg = sink.messages[1]
    assert alert_msg["alert"]["name"] == "big"
    assert alert_msg["alert"]["condition"] == "gt"
    assert alert_msg["metric"]["name"] == "queue"
    assert dash.get_alerts()[0].last_fired is not None


@pytest.mark.parametrize(
    "condition, threshold, expected",
    [
        (AlertCondition.GREATER_THAN, 5, True),
        (AlertCondition.GREATER_THAN, 10, False),
        (AlertCondition.LESS_THAN, 20, True),
        (AlertCondition.LESS_THAN, 5, False),
        (AlertCondition.EQUALS, 10, True),
        (AlertCondition.EQUALS, 11, False),
        (AlertCondition.NOT_EQUALS, 11, True),
        (AlertCondition.NOT_EQUALS, 10, False),
        ("unknown", 10, False),
    ],
)
def test_alert_conditions(collector, condition, threshold, expected):
    collector.new_gauge("g").set(10)
    dash = Dashboard(collector)
    dash.add_alert(Alert(name="a", metric="g", condition=condition, threshold=threshold))
    fired = dash.check_alerts(collector.get_all_metrics())
    assert (len(fired) == 1) is expected


def test_alert_cooldown(collector):
    collector.new_gauge("g").set(10)
    dash = Dashboard(collector)
    old = datetime.now().astimezone() - timedelta(minutes=2)
    dash.add_alert(Alert(name="a", metric="g", condition="gt", threshold=1, last_fired=old))
    metrics = collector.get_all_metrics()
    assert [a.name for a in dash.check_alerts(metrics)] == ["a"]
    assert dash.check_alerts(metrics) == []


def test_alert_on_missing_metric_does_not_fire(collector):
    dash = Dashboard(collector)
    dash.add_alert(Alert(name="a", metric="absent", condition="gt", threshold=0))
    assert dash.check_alerts(collector.get_all_metrics()) == []


def test_add_alert_enables(collector):
    dash = Dashboard(collector)
    stored = dash.add_alert(Alert(name="a", metric="m", condition="lt", threshold=1, enabled=False))
    assert stored.enabled is True
    assert [a.enabled for a in dash.get_alerts()] == [True]


def test_get_alerts_returns_copies(collector):
    dash = Dashboard(collector)
    dash.add_alert(Alert(name="a", metric="m", condition="lt", threshold=1))
    copy = dash.get_alerts()[0]
    copy.threshold = 99
    assert dash.get_alerts()[0].threshold == 1


def test_remove_alert(collector):
    dash = Dashboard(collector)
    dash.add_alert(Alert(name="a", metric="m", condition="lt", threshold=1))
    dash.add_alert(Alert(name="b", metric="m", condition="lt", threshold=1))
    dash.remove_alert("missing")
    assert [a.name for a in dash.get_alerts()] == ["a", "b"]
    dash.remove_alert("a")
    assert [a.name for a in dash.get_alerts()] == ["b"]


def test_removed_alert_no_longer_fires(collector):
    collector.new_gauge("g").set(10)
    dash = Dashboard(collector)
    dash.add_alert(Alert(name="a", metric="g", condition="gt", threshold=1))
    dash.remove_alert("a")
    assert dash.check_alerts(collector.get_all_metrics()) == []


def test_start_broadcasts_in_background(collector):
    collector.new_counter("c").inc()
    sink = _Sink()
    config = default_dashboard_config()
    config.broadcast_interval = 0.01
    with Dashboard(collector, publish=sink, config=config) as dash:
        dash.start()
        assert sink.event.wait(5)
    assert sink.messages[0]["type"] == "metrics"


def test_close_stops_broadcasting(collector):
    sink = _Sink()
    dash = Dashboard(collector, publish=sink, config=DashboardConfig(broadcast_interval=0.01))
    dash.start()
    assert sink.event.wait(5)
    dash.close()
    count = len(sink.messages)
    threading.Event().wait(0.05)
    assert len(sink.messages) == count