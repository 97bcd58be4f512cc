"""In-process metrics: counters, gauges, histograms and summaries."""

from __future__ import annotations

import gc
import os
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class MetricType(str, Enum):
    """Kind of metric."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"


@dataclass
class Metric:
    """A snapshot of one metric's value with its metadata."""

    name: str
    type: MetricType
    value: float
    labels: dict[str, str] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now().astimezone())
    description: str = ""
    unit: str = ""
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class Counter:
    """A monotonically increasing count."""

    def __init__(self, name: str, description: str = "", labels: dict[str, str] | None = None):
        self.name = name
        self.description = description
        self.labels = labels
        self._value = 0
        self._lock = threading.Lock()

    def inc(self) -> None:
        self.add(1)

    def add(self, value: int) -> None:
        if value < 0:
            raise ValueError("counter cannot be decreased")
        with self._lock:
            self._value += value

    def get(self) -> int:
        with self._lock:
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = 0


class Gauge:
    """An integer value that can go up and down."""

    def __init__(self, name: str, description: str = "", labels: dict[str, str] | None = None):
        self.name = name
        self.description = description
        self.labels = labels
        self._value = 0
        self._lock = threading.Lock()

    def set(self, value: int) -> None:
        with self._lock:
            self._value = int(value)

    def inc(self) -> None:
        self.add(1)

    def dec(self) -> None:
        self.add(-1)

    def add(self, value: int) -> None:
        with self._lock:
            self._value += int(value)

    def sub(self, value: int) -> None:
        self.add(-value)

    def get(self) -> int:
        with self._lock:
            return self._value


class Histogram:
    """Counts observations into cumulative buckets; sums kept to the millisecond."""

    def __init__(
        self,
        name: str,
        description: str,
        labels: dict[str, str] | None,
        buckets: list[float],
    ):
        self.name = name
        self.description = description
        self.labels = labels
        self._buckets = list(buckets)
        self._counts = [0] * len(self._buckets)
        self._sum_milli = 0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum_milli += int(value * 1000)
            self._count += 1
            for index, bound in enumerate(self._buckets):
                if value <= bound:
                    self._counts[index] += 1

    def get_sum(self) -> float:
        with self._lock:
            return self._sum_milli / 1000.0

    def get_count(self) -> int:
        with self._lock:
            return self._count

    def get_buckets(self) -> dict[float, int]:
        """Map each bucket's upper bound to the observations at or below it."""
        with self._lock:
            return dict(zip(self._buckets, self._counts))


class Summary:
    """Tracks the sum, count and the most recent observations."""

    _HISTORY = 100

    def __init__(self, name: str, description: str = "", labels: dict[str, str] | None = None):
        self.name = name
        self.description = description
        self.labels = labels
        self._values: deque[float] = deque(maxlen=self._HISTORY)
        self._sum_milli = 0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum_milli += int(value * 1000)
            self._count += 1
            self._values.append(value)

    def get_sum(self) -> float:
        with self._lock:
            return self._sum_milli / 1000.0

    def get_count(self) -> int:
        with self._lock:
            return self._count

    def get_average(self) -> float:
        with self._lock:
            if self._count == 0:
                return 0.0
            return (self._sum_milli / 1000.0) / self._count


@dataclass
class CollectorConfig:
    """Collector settings; the interval is in seconds."""

    collect_system_metrics: bool = True
    system_metrics_interval: float = 5.0
    enable_history: bool = True
    history_size: int = 100
    default_buckets: list[float] = field(
        default_factory=lambda: [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10]
    )


def default_collector_config() -> CollectorConfig:
    return CollectorConfig()


class _GCPauseTracker:
    """Measures the duration of the most recent garbage collection."""

    def __init__(self) -> None:
        self._started: int | None = None
        self.last_pause_ns = 0

    def __call__(self, phase: str, info: dict[str, Any]) -> None:
        if phase == "start":
            self._started = time.perf_counter_ns()
        elif phase == "stop" and self._started is not None:
            self.last_pause_ns = time.perf_counter_ns() - self._started
            self._started = None


def _memory_bytes() -> int:
    try:
        with open("/proc/self/statm", encoding="ascii") as statm:
            resident_pages = int(statm.read().split()[1])
        return resident_pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError, AttributeError):
        pass
    try:
        import resource
    except ImportError:
        return 0
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    return peak if sys.platform == "darwin" else peak * 1024


class Collector:
    """Creates, holds and snapshots named metrics."""

    def __init__(self, config: CollectorConfig | None = None) -> None:
        self._config = config if config is not None else default_collector_config()
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}
        self._summaries: dict[str, Summary] = {}
        self._lock = threading.RLock()
        self.start_time = datetime.now().astimezone()
        self._started = time.monotonic()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._gc_tracker: _GCPauseTracker | None = None

        if self._config.collect_system_metrics:
            self._start_system_metrics()

    def __enter__(self) -> Collector:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def new_counter(
        self, name: str, description: str = "", labels: dict[str, str] | None = None
    ) -> Counter:
        """Return the counter with this name, creating it if needed."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, description, labels)
            return self._counters[name]

    def new_gauge(
        self, name: str, description: str = "", labels: dict[str, str] | None = None
    ) -> Gauge:
        """Return the gauge with this name, creating it if needed."""
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name, description, labels)
            return self._gauges[name]

    def new_histogram(
        self,
        name: str,
        description: str = "",
        labels: dict[str, str] | None = None,
        buckets: list[float] | None = None,
    ) -> Histogram:
        """Return the histogram with this name, creating it with the given or default buckets."""
        with self._lock:
            if name not in self._histograms:
                chosen = list(buckets) if buckets else list(self._config.default_buckets)
                self._histograms[name] = Histogram(name, description, labels, chosen)
            return self._histograms[name]

    def new_summary(
        self, name: str, description: str = "", labels: dict[str, str] | None = None
    ) -> Summary:
        """Return the summary with this name, creating it if needed."""
        with self._lock:
            if name not in self._summaries:
                self._summaries[name] = Summary(name, description, labels)
            return self._summaries[name]

    def _start_system_metrics(self) -> None:
        self._cpu = self.new_gauge("system_cpu_percent", "CPU usage percentage")
        self._memory = self.new_gauge("system_memory_bytes", "Memory usage in bytes")
        self._threads = self.new_gauge("system_threads", "Number of threads")
        self._gc_pause = self.new_gauge("system_gc_pause_ns", "GC pause time in nanoseconds")
        self._gc_tracker = _GCPauseTracker()
        gc.callbacks.append(self._gc_tracker)
        self._thread = threading.Thread(target=self._run_system_metrics, daemon=True)
        self._thread.start()

    def _run_system_metrics(self) -> None:
        while not self._stop.wait(self._config.system_metrics_interval):
            self._memory.set(_memory_bytes())
            self._threads.set(threading.active_count())
            if self._gc_tracker is not None:
                self._gc_pause.set(self._gc_tracker.last_pause_ns)
            self._cpu.set(0)

    @staticmethod
    def _snapshot(metric: Any, kind: MetricType, now: datetime) -> Metric:
        if kind is MetricType.COUNTER or kind is MetricType.GAUGE:
            return Metric(
                name=metric.name,
                type=kind,
                value=float(metric.get()),
                labels=metric.labels,
                timestamp=now,
                description=metric.description,
            )
        if kind is MetricType.HISTOGRAM:
            metadata = {"count": metric.get_count(), "buckets": metric.get_buckets()}
        else:
            metadata = {"count": metric.get_count(), "average": metric.get_average()}
        return Metric(
            name=metric.name,
            type=kind,
            value=metric.get_sum(),
            labels=metric.labels,
            timestamp=now,
            description=metric.description,
            metadata=metadata,
        )

    def _families(self) -> list[tuple[MetricType, dict[str, Any]]]:
        return [
            (MetricType.COUNTER, self._counters),
            (MetricType.GAUGE, self._gauges),
            (MetricType.HISTOGRAM, self._histograms),
            (MetricType.SUMMARY, self._summaries),
        ]

    def get_all_metrics(self) -> list[Metric]:
        """Snapshot every metric: counters, then gauges, histograms and summaries."""
        now = datetime.now().astimezone()
        with self._lock:
            return [
                self._snapshot(metric, kind, now)
                for kind, family in self._families()
                for metric in family.values()
            ]

    def get_metric(self, name: str) -> Metric | None:
        """Snapshot the named metric, or None if there is none."""
        now = datetime.now().astimezone()
        with self._lock:
            for kind, family in self._families():
                if name in family:
                    return self._snapshot(family[name], kind, now)
        return None

    def get_uptime(self) -> timedelta:
        return timedelta(seconds=time.monotonic() - self._started)

    def reset(self) -> None:
        """Reset every counter to zero."""
        with self._lock:
            for counter in self._counters.values():
                counter.reset()

    def close(self) -> None:
        """Stop background system-metric collection."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._gc_tracker is not None:
            try:
                gc.callbacks.remove(self._gc_tracker)
            except ValueError:
                pass
            self._gc_tracker = None