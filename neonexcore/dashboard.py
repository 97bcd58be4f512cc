"""Periodic metric broadcasts with threshold alerts."""

from __future__ import annotations

import dataclasses
import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from neonexcore.collector import Collector, Metric

_ALERT_COOLDOWN = timedelta(minutes=1)


class AlertCondition(str, Enum):
    """How a metric's value is compared with an alert's threshold."""

    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    EQUALS = "eq"
    NOT_EQUALS = "ne"


_COMPARE: dict[AlertCondition, Callable[[float, float], bool]] = {
    AlertCondition.GREATER_THAN: lambda value, threshold: value > threshold,
    AlertCondition.LESS_THAN: lambda value, threshold: value < threshold,
    AlertCondition.EQUALS: lambda value, threshold: value == threshold,
    AlertCondition.NOT_EQUALS: lambda value, threshold: value != threshold,
}


@dataclass
class Alert:
    """A rule that fires when a named metric meets a condition."""

    name: str
    metric: str
    condition: AlertCondition | str
    threshold: float
    description: str = ""
    enabled: bool = True
    last_fired: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def matches(self, value: float) -> bool:
        """Whether the given value meets this alert's condition."""
        try:
            condition = AlertCondition(self.condition)
        except ValueError:
            return False
        return _COMPARE[condition](value, self.threshold)


@dataclass
class DashboardConfig:
    """Dashboard settings; the interval is in seconds."""

    broadcast_interval: float = 1.0
    enable_alerts: bool = True
    enable_history: bool = True
    history_size: int = 60


def default_dashboard_config() -> DashboardConfig:
    return DashboardConfig()


def _iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.isoformat()


def _metric_to_dict(metric: Metric) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": metric.name,
        "type": metric.type.value,
        "value": metric.value,
    }
    if metric.labels:
        data["labels"] = dict(metric.labels)
    data["timestamp"] = _iso(metric.timestamp)
    if metric.description:
        data["description"] = metric.description
    if metric.unit:
        data["unit"] = metric.unit
    if metric.tags:
        data["tags"] = list(metric.tags)
    if metric.metadata:
        metadata = dict(metric.metadata)
        buckets = metadata.get("buckets")
        if isinstance(buckets, dict):
            metadata["buckets"] = {format(bound, "g"): count for bound, count in buckets.items()}
        data["metadata"] = metadata
    return data


def _alert_to_dict(alert: Alert) -> dict[str, Any]:
    condition = alert.condition.value if isinstance(alert.condition, AlertCondition) else alert.condition
    data: dict[str, Any] = {
        "name": alert.name,
        "description": alert.description,
        "metric": alert.metric,
        "condition": condition,
        "threshold": alert.threshold,
        "enabled": alert.enabled,
    }
    if alert.last_fired is not None:
        data["last_fired"] = _iso(alert.last_fired)
    if alert.metadata:
        data["metadata"] = dict(alert.metadata)
    return data


def _encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, default=str).encode("utf-8")


class Dashboard:
    """Publishes collector snapshots and fires alerts on their values.

    ``publish`` receives each JSON message as bytes; with none given the
    messages are built but go nowhere.
    """

    def __init__(
        self,
        collector: Collector,
        publish: Callable[[bytes], Any] | None = None,
        config: DashboardConfig | None = None,
    ) -> None:
        self._collector = collector
        self._publish = publish
        self._config = config if config is not None else default_dashboard_config()
        self._alerts: list[Alert] = []
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def __enter__(self) -> Dashboard:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def snapshot(self) -> dict[str, Any]:
        """The metrics message as a JSON-ready dictionary."""
        metrics = self._collector.get_all_metrics()
        return self._metrics_message(metrics)

    def _metrics_message(self, metrics: list[Metric]) -> dict[str, Any]:
        return {
            "type": "metrics",
            "timestamp": int(time.time()),
            "uptime": self._collector.get_uptime().total_seconds(),
            "metrics": [_metric_to_dict(metric) for metric in metrics],
        }

    def broadcast_once(self) -> bytes:
        """Publish one metrics message, check alerts, and return the message."""
        metrics = self._collector.get_all_metrics()
        data = _encode(self._metrics_message(metrics))
        if self._publish is not None:
            self._publish(data)
        self.check_alerts(metrics)
        return data

    def check_alerts(self, metrics: list[Metric]) -> list[Alert]:
        """Fire every enabled alert whose metric meets its condition.

        Returns copies of the alerts that fired; an alert fires at most
        once a minute.
        """
        fired: list[Alert] = []
        with self._lock:
            for alert in self._alerts:
                if not alert.enabled:
                    continue
                for metric in metrics:
                    if metric.name == alert.metric and alert.matches(metric.value):
                        if self._fire(alert, metric):
                            fired.append(dataclasses.replace(alert))
        return fired

    def _fire(self, alert: Alert, metric: Metric) -> bool:
        now = datetime.now().astimezone()
        if alert.last_fired is not None:
            last = alert.last_fired if alert.last_fired.tzinfo else alert.last_fired.astimezone()
            if now - last < _ALERT_COOLDOWN:
                return False
        alert.last_fired = now
        data = _encode(
            {
                "type": "alert",
                "timestamp": int(time.time()),
                "alert": _alert_to_dict(alert),
                "metric": _metric_to_dict(metric),
            }
        )
        if self._publish is not None:
            self._publish(data)
        return True

    def add_alert(self, alert: Alert) -> Alert:
        """Add an enabled copy of the alert and return it."""
        stored = dataclasses.replace(alert, enabled=True, metadata=dict(alert.metadata))
        with self._lock:
            self._alerts.append(stored)
        return dataclasses.replace(stored)

    def remove_alert(self, name: str) -> None:
        """Remove the first alert with this name, if any."""
        with self._lock:
            for index, alert in enumerate(self._alerts):
                if alert.name == name:
                    del self._alerts[index]
                    return

    def get_alerts(self) -> list[Alert]:
        """Copies of all alerts, in the order they were added."""
        with self._lock:
            return [dataclasses.replace(alert) for alert in self._alerts]

    def start(self) -> None:
        """Broadcast in the background every configured interval."""
        with self._lock:
            if self._thread is not None:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self._config.broadcast_interval):
            try:
                self.broadcast_once()
            except (TypeError, ValueError):
                continue

    def close(self) -> None:
        """Stop background broadcasting."""
        self._stop.set()
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()