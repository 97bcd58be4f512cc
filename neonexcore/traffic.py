"""Traffic policies: weighted splits, canary rollouts and A/B tests."""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class LoadBalancingStrategy(str, Enum):
    """How requests are spread over instances."""

    ROUND_ROBIN = "round_robin"
    RANDOM = "random"
    LEAST_CONN = "least_conn"
    WEIGHTED_RR = "weighted_round_robin"
    IP_HASH = "ip_hash"


@dataclass
class TrafficSplit:
    """Share of traffic, in percent, sent to a version."""

    version: str
    weight: int
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class CanaryConfig:
    """Progressive rollout of a new version; weights in percent."""

    enabled: bool = False
    new_version: str = ""
    stable_version: str = ""
    initial_weight: int = 0
    increment_step: int = 0
    increment_delay: int = 0
    max_weight: int = 0
    success_rate: float = 0.0


@dataclass
class ABTestConfig:
    """Split between two versions, sticky on a request header."""

    enabled: bool = False
    version_a: str = ""
    version_b: str = ""
    split_key: str = ""
    weight_a: int = 0
    weight_b: int = 0


@dataclass
class TrafficPolicy:
    """Routing policy of one service."""

    service_name: str
    strategy: LoadBalancingStrategy = LoadBalancingStrategy.ROUND_ROBIN
    splits: list[TrafficSplit] = field(default_factory=list)
    canary: CanaryConfig | None = None
    ab_test: ABTestConfig | None = None


class TrafficError(Exception):
    """Raised for an invalid policy or a missing canary configuration."""


class TrafficManager:
    """Holds traffic policies and picks a version for each request.

    ``rng`` supplies ``randrange``; the module's random generator by default.
    """

    def __init__(self, rng: Any = None) -> None:
        self._policies: dict[str, TrafficPolicy] = {}
        self._lock = threading.RLock()
        self._rng = rng if rng is not None else random.Random()

    def _random_percent(self) -> int:
        return self._rng.randrange(100)

    def set_policy(self, policy: TrafficPolicy | None) -> None:
        """Store a policy; split weights, if any, must sum to 100."""
        if policy is None or not policy.service_name:
            raise TrafficError("invalid policy")
        if policy.splits:
            total = sum(split.weight for split in policy.splits)
            if total != 100:
                raise TrafficError(f"traffic split weights must sum to 100, got {total}")
        with self._lock:
            self._policies[policy.service_name] = policy

    def get_policy(self, service_name: str) -> TrafficPolicy | None:
        with self._lock:
            return self._policies.get(service_name)

    def select_version(
        self,
        service_name: str,
        headers: Mapping[str, str] | None = None,
        client_ip: str = "",
    ) -> str:
        """The version to route to, or an empty string for the default."""
        policy = self.get_policy(service_name)
        if policy is None:
            return ""
        headers = headers or {}
        if policy.ab_test is not None and policy.ab_test.enabled:
            return self._select_ab(policy.ab_test, headers)
        if policy.canary is not None and policy.canary.enabled:
            return self._select_canary(policy.canary)
        if policy.splits:
            return self._select_split(policy.splits, headers)
        return ""

    def _select_ab(self, config: ABTestConfig, headers: Mapping[str, str]) -> str:
        assigned = headers.get(config.split_key)
        if assigned is not None and assigned in (config.version_a, config.version_b):
            return assigned
        if self._random_percent() < config.weight_a:
            return config.version_a
        return config.version_b

    def _select_canary(self, config: CanaryConfig) -> str:
        if self._random_percent() < config.initial_weight:
            return config.new_version
        return config.stable_version

    def _select_split(self, splits: list[TrafficSplit], headers: Mapping[str, str]) -> str:
        for split in splits:
            if split.headers and all(
                headers.get(key, "") == value for key, value in split.headers.items()
            ):
                return split.version
        roll = self._random_percent()
        cumulative = 0
        for split in splits:
            cumulative += split.weight
            if roll < cumulative:
                return split.version
        return splits[0].version if splits else ""

    def _canary(self, service_name: str, require_enabled: bool) -> CanaryConfig:
        policy = self._policies.get(service_name)
        if (
            policy is None
            or policy.canary is None
            or (require_enabled and not policy.canary.enabled)
        ):
            raise TrafficError(f"canary not configured for service: {service_name}")
        return policy.canary

    def increment_canary(self, service_name: str) -> None:
        """Raise the canary weight by one step, capped at its maximum."""
        with self._lock:
            canary = self._canary(service_name, require_enabled=True)
            canary.initial_weight = min(
                canary.initial_weight + canary.increment_step, canary.max_weight
            )

    def promote_canary(self, service_name: str) -> None:
        """Make the new version stable and end the canary."""
        with self._lock:
            canary = self._canary(service_name, require_enabled=False)
            canary.stable_version = canary.new_version
            canary.initial_weight = 0
            canary.enabled = False

    def rollback_canary(self, service_name: str) -> None:
        """Send all traffic back to the stable version and end the canary."""
        with self._lock:
            canary = self._canary(service_name, require_enabled=False)
            canary.initial_weight = 0
            canary.enabled = False

    def list_policies(self) -> list[str]:
        """Names of the services that have a policy."""
        with self._lock:
            return list(self._policies)