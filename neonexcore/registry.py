"""Service discovery with an optional remote control plane."""

from __future__ import annotations

import json
import random
import re
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class HealthStatus(str, Enum):
    """Health of a service instance."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class RegistryError(Exception):
    """Raised when a service cannot be found or the control plane fails."""


def _now() -> datetime:
    return datetime.now().astimezone()


_FRACTION = re.compile(r"(\.\d{6})\d+")


def _format_time(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment is not None else None


def _parse_time(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    text = _FRACTION.sub(r"\1", text)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _parse_health(value: Any) -> HealthStatus:
    try:
        return HealthStatus(value)
    except ValueError:
        return HealthStatus.UNKNOWN


@dataclass
class ServiceInstance:
    """One running instance of a service."""

    service_name: str
    host: str = ""
    port: int = 0
    protocol: str = "http"
    instance_id: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    health: HealthStatus = HealthStatus.UNKNOWN
    registered_at: datetime | None = None
    last_heartbeat: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """The instance as a JSON-ready dictionary."""
        return {
            "service_name": self.service_name,
            "instance_id": self.instance_id,
            "host": self.host,
            "port": self.port,
            "protocol": self.protocol,
            "metadata": dict(self.metadata),
            "health": HealthStatus(self.health).value,
            "registered_at": _format_time(self.registered_at),
            "last_heartbeat": _format_time(self.last_heartbeat),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServiceInstance:
        """Build an instance from its JSON form."""
        return cls(
            service_name=data.get("service_name", ""),
            host=data.get("host", ""),
            port=int(data.get("port") or 0),
            protocol=data.get("protocol", ""),
            instance_id=data.get("instance_id", ""),
            metadata=dict(data.get("metadata") or {}),
            health=_parse_health(data.get("health")),
            registered_at=_parse_time(data.get("registered_at")),
            last_heartbeat=_parse_time(data.get("last_heartbeat")),
        )


class ServiceRegistry:
    """Keeps service instances locally and mirrors them to a control plane.

    With a control plane URL, the whole catalogue is pulled from it every
    ``sync_interval`` seconds in the background until ``close`` is called.
    """

    def __init__(
        self,
        control_plane: str = "",
        sync_interval: float = 30.0,
        http_timeout: float = 10.0,
    ) -> None:
        self.control_plane = control_plane.rstrip("/")
        self._http_timeout = http_timeout
        self._services: dict[str, list[ServiceInstance]] = {}
        self._lock = threading.RLock()
        self.last_sync: datetime | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        if self.control_plane:
            self._thread = threading.Thread(
                target=self._sync_loop, args=(sync_interval,), daemon=True
            )
            self._thread.start()

    def __enter__(self) -> ServiceRegistry:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _call(self, method: str, path: str, body: bytes | None = None) -> tuple[int, bytes]:
        request = urllib.request.Request(
            self.control_plane + path, data=body, method=method
        )
        if body is not None:
            request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._http_timeout) as response:
                return response.status, response.read()
        except urllib.error.HTTPError as exc:
            payload = exc.read()
            exc.close()
            return exc.code, payload
        except (urllib.error.URLError, OSError) as exc:
            raise RegistryError(f"control plane request failed: {exc}") from exc

    def register(self, instance: ServiceInstance) -> ServiceInstance:
        """Add an instance, marking it healthy; returns the stored instance."""
        with self._lock:
            if not instance.instance_id:
                instance.instance_id = f"{instance.service_name}-{time.time_ns()}"
            now = _now()
            instance.registered_at = now
            instance.last_heartbeat = now
            instance.health = HealthStatus.HEALTHY
            self._services.setdefault(instance.service_name, []).append(instance)
        if self.control_plane:
            body = json.dumps(instance.to_dict()).encode("utf-8")
            status, _ = self._call("POST", "/api/v1/services/register", body)
            if status != 200:
                raise RegistryError(f"registration failed: {status}")
        return instance

    def deregister(self, service_name: str) -> None:
        """Forget every instance of the service."""
        with self._lock:
            self._services.pop(service_name, None)
        if self.control_plane:
            self._call("DELETE", f"/api/v1/services/{service_name}")

    def discover(self, service_name: str) -> ServiceInstance:
        """Pick one healthy instance of the service at random."""
        with self._lock:
            instances = list(self._services.get(service_name, []))
        if not instances and self.control_plane:
            try:
                self._sync_service(service_name)
            except (RegistryError, ValueError):
                pass
            else:
                with self._lock:
                    instances = list(self._services.get(service_name, []))
        if not instances:
            raise RegistryError(f"no instances found for service: {service_name}")
        healthy = [inst for inst in instances if inst.health is HealthStatus.HEALTHY]
        if not healthy:
            raise RegistryError(f"no healthy instances for service: {service_name}")
        return random.choice(healthy)

    def discover_all(self, service_name: str) -> list[ServiceInstance]:
        """Every instance of the service, healthy or not."""
        with self._lock:
            instances = list(self._services.get(service_name, []))
        if not instances:
            raise RegistryError(f"no instances found for service: {service_name}")
        return instances

    def heartbeat(self, service_name: str) -> None:
        """Mark every instance of the service as just seen."""
        with self._lock:
            now = _now()
            for inst in self._services.get(service_name, []):
                inst.last_heartbeat = now
        if self.control_plane:
            self._call("POST", f"/api/v1/services/{service_name}/heartbeat", b"")

    def update_health(self, service_name: str, instance_id: str, status: HealthStatus) -> None:
        with self._lock:
            for inst in self._services.get(service_name, []):
                if inst.instance_id == instance_id:
                    inst.health = HealthStatus(status)
                    break

    def list_services(self) -> list[str]:
        with self._lock:
            return list(self._services)

    def get_service_instances(self, service_name: str) -> list[ServiceInstance]:
        with self._lock:
            return list(self._services.get(service_name, []))

    def _sync_service(self, service_name: str) -> None:
        status, payload = self._call("GET", f"/api/v1/services/{service_name}")
        if status != 200:
            raise RegistryError(f"sync failed: {status}")
        decoded = json.loads(payload or b"null") or []
        instances = [ServiceInstance.from_dict(item) for item in decoded]
        with self._lock:
            self._services[service_name] = instances

    def sync_all(self) -> None:
        """Replace the local catalogue with the control plane's."""
        status, payload = self._call("GET", "/api/v1/services")
        if status != 200:
            raise RegistryError(f"sync failed: {status}")
        decoded = json.loads(payload or b"null") or {}
        services = {
            name: [ServiceInstance.from_dict(item) for item in (items or [])]
            for name, items in decoded.items()
        }
        with self._lock:
            self._services = services
            self.last_sync = _now()

    def _sync_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.sync_all()
            except (RegistryError, ValueError, TypeError, AttributeError):
                continue

    def cleanup_stale_instances(self, timeout: timedelta | float) -> None:
        """Drop instances whose last heartbeat is older than the timeout."""
        limit = timeout if isinstance(timeout, timedelta) else timedelta(seconds=timeout)
        now = _now()
        with self._lock:
            for name, instances in self._services.items():
                self._services[name] = [
                    inst
                    for inst in instances
                    if inst.last_heartbeat is not None
                    and now - _aware(inst.last_heartbeat) < limit
                ]

    def close(self) -> None:
        """Stop background synchronisation."""
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()