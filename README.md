# neonexcore

Building blocks for service applications, using the standard library only.

| Module | What it gives you |
| --- | --- |
| `neonexcore.logger` | A thread-safe, levelled, structured `Logger` with `TextFormatter` and `JSONFormatter` |
| `neonexcore.writer` | `FileWriter`, which rotates by size and by date, and `MultiWriter` |
| `neonexcore.log_config` | Configures the global logger from `LOG_*` environment variables |
| `neonexcore.collector` | `Collector` holding counters, gauges, histograms and summaries |
| `neonexcore.dashboard` | `Dashboard`, which publishes metric snapshots as JSON and fires threshold alerts |
| `neonexcore.notification` | `NotificationManager`, which routes messages to one sender per channel |
| `neonexcore.circuit_breaker` | `CircuitBreaker` with closed, open and half-open states |
| `neonexcore.traffic` | `TrafficManager`, which handles weighted splits, canary rollouts and A/B tests |
| `neonexcore.registry` | `ServiceRegistry`, with health tracking and an optional HTTP control plane |
| `neonexcore.settings` | `SettingsManager`, typed key/value settings in SQLite with a cache |
| `neonexcore.rbac` | `RBACManager`, roles and permissions in SQLite, plus access guards |

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Logging

The default logger writes to standard output at `INFO` level. Caller file and line information is on by default.

```python
from neonexcore import logger
from neonexcore.logger import JSONFormatter, LogLevel

log = logger.default_logger()
log.set_level(LogLevel.DEBUG)
log.set_formatter(JSONFormatter())

log.info("server started", {"port": 8080})
request_log = log.with_fields({"request_id": "abc123"})
request_log.warn("slow request", {"duration_ms": 1200})
```

`fatal()` logs the message and then raises `SystemExit(1)`.

A writer is any object with a `write(bytes)` method. A text stream such as `io.StringIO` also works. To write to a rotating file:

```python
from neonexcore.writer import FileWriter, FileWriterConfig

with FileWriter(FileWriterConfig(filename="logs/app.log", max_size=10, max_backups=5)) as out:
    log.add_writer(out)
    log.info("goes to stdout and to the file")
```

`max_size` is in megabytes and defaults to 100 when set to 0. `max_age` is in days. When a file is rotated it is renamed to `<file>.YYYYMMDD-HHMMSS`. Backups beyond `max_backups`, and backups older than `max_age`, are then removed.

`log_config.load_config()` reads `LOG_LEVEL`, `LOG_FORMAT`, `LOG_OUTPUT` and `LOG_FILE_PATH`. You can also pass it any mapping. `setup()` applies the result to the global logger. When `output` is `"file"` or `"both"`, `setup()` returns the `FileWriter` it attached, so you can close it later:

```python
from neonexcore import log_config

file_writer = log_config.setup(log_config.load_config())
```

## Metrics and alerts

```python
from neonexcore.collector import Collector, CollectorConfig

with Collector(CollectorConfig(collect_system_metrics=False)) as collector:
    requests = collector.new_counter("http_requests_total", "Total requests", None)
    requests.inc()

    latency = collector.new_histogram("latency_seconds", "Request latency", None, [0.1, 0.5, 1])
    latency.observe(0.3)

    for metric in collector.get_all_metrics():
        print(metric.name, metric.type.value, metric.value)
```

Asking for the same name twice returns the same metric. Histogram and summary sums are kept to the millisecond. When system metrics are enabled, a background thread updates four gauges every `system_metrics_interval` seconds:

- `system_memory_bytes`
- `system_threads`
- `system_gc_pause_ns`
- `system_cpu_percent`, which is always 0

`close()` stops that thread.

`Dashboard` turns collector snapshots into JSON messages and passes them to a `publish` callback:

```python
from neonexcore.dashboard import Alert, AlertCondition, Dashboard

dashboard = Dashboard(collector, publish=print)
dashboard.add_alert(Alert(name="busy", metric="http_requests_total",
                          condition=AlertCondition.GREATER_THAN, threshold=1000))
dashboard.broadcast_once()   # or dashboard.start() ... dashboard.close()
```

An alert fires at most once a minute.

## Notifications

```python
from neonexcore.notification import Channel, NotificationManager

class PrintSender:
    def send(self, notification):
        print(notification.to, notification.subject, notification.body)

notifications = NotificationManager()
notifications.register_sender(Channel.EMAIL, PrintSender())
notifications.send_email("someone@example.com", "Hello", "Welcome aboard")
```

Sending on a channel that has no sender raises `NotificationError`.

## Circuit breaker

```python
from neonexcore.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3, timeout=30))
if not breaker.is_open():
    try:
        call_downstream()
        breaker.record_success()
    except Exception:
        breaker.record_failure()
```

## Traffic management

```python
from neonexcore.traffic import TrafficManager, TrafficPolicy, TrafficSplit

traffic = TrafficManager()
traffic.set_policy(TrafficPolicy(
    service_name="orders",
    splits=[TrafficSplit(version="v1", weight=90), TrafficSplit(version="v2", weight=10)],
))
version = traffic.select_version("orders", {}, "127.0.0.1")
```

Split weights must add up to 100, or `TrafficError` is raised. A/B tests take precedence over canaries, and canaries take precedence over splits. Use `increment_canary`, `promote_canary` and `rollback_canary` to drive a rollout.

## Service registry

```python
from neonexcore.registry import ServiceInstance, ServiceRegistry

with ServiceRegistry() as registry:
    registry.register(ServiceInstance(service_name="orders", host="localhost", port=8081))
    instance = registry.discover("orders")   # a random healthy instance
```

When given a control plane base address, the registry also makes these requests:

- `POST /api/v1/services/register`
- `DELETE /api/v1/services/<name>`
- `GET /api/v1/services/<name>`
- `POST /api/v1/services/<name>/heartbeat`

In addition, it pulls `GET /api/v1/services` every `sync_interval` seconds. Failures raise `RegistryError`.

## Settings

```python
from neonexcore.settings import SettingsManager

settings = SettingsManager("app.db")          # or ":memory:", or a sqlite3 connection
settings.set("site.name", "Demo", "core")
settings.set("page.size", 20, "core")
settings.get_int("page.size", 10)             # 20
settings.get_by_module("core")
```

## RBAC

```python
from neonexcore.rbac import Forbidden, Permission, RBACManager, require_permission

rbac = RBACManager()                           # in-memory SQLite by default
rbac.seed_default_roles()                      # super-admin, admin, user
admin = rbac.get_role_by_slug("admin")
perm = rbac.create_permission(Permission(name="Edit posts", slug="posts.edit", module="blog"))
rbac.attach_permission_to_role(admin.id, perm.id)
rbac.assign_role(42, admin.id)
assert rbac.has_permission(42, "posts.edit")

guard = require_permission(rbac, "posts.edit")
guard(42)                                      # returns 42
```

A guard raises:

- `Unauthorized` (status 401) when there is no valid user id;
- `Forbidden` (status 403) when the check fails;
- `AccessError` (status 500) when the database fails.

Every error offers `to_dict()`, which gives a response body.

## What the package does not do

- It serves no HTTP endpoints and has no request middleware. The dashboard hands its JSON messages to your callback; it has no web page or websocket of its own. The RBAC guards are plain callables for you to wire into whatever framework you use.
- Storage for settings and RBAC is SQLite only.
- The package has no command-line program.