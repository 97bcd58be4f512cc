import pytest

from neonexcore.traffic import (
    ABTestConfig,
    CanaryConfig,
    LoadBalancingStrategy,
    TrafficError,
    TrafficManager,
    TrafficPolicy,
    TrafficSplit,
)


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def randrange(self, stop):
        return self.value


def test_policy_keeps_strategy():
    manager = TrafficManager()
    manager.set_policy(
        TrafficPolicy(service_name="api", strategy=LoadBalancingStrategy.IP_HASH)
    )
    assert manager.get_policy("api").strategy is LoadBalancingStrategy.IP_HASH


def test_set_policy_rejects_none_and_empty_name():
    manager = TrafficManager()
    with pytest.raises(TrafficError, match="invalid policy"):
        manager.set_policy(None)
    with pytest.raises(TrafficError, match="invalid policy"):
        manager.set_policy(TrafficPolicy(service_name=""))


def test_set_policy_rejects_bad_weights():
    manager = TrafficManager()
    policy = TrafficPolicy(
        service_name="api",
        splits=[TrafficSplit("v1", 50), TrafficSplit("v2", 40)],
    )
    with pytest.raises(TrafficError, match="must sum to 100"):
        manager.set_policy(policy)
    assert manager.get_policy("api") is None


def test_get_and_list_policies():
    manager = TrafficManager()
    manager.set_policy(TrafficPolicy(service_name="api"))
    manager.set_policy(TrafficPolicy(service_name="web"))
    assert manager.get_policy("api").service_name == "api"
    assert sorted(manager.list_policies()) == ["api", "web"]


def test_no_policy_selects_default():
    manager = TrafficManager()
    assert manager.select_version("missing", {}, "") == ""


def test_policy_without_rules_selects_default():
    manager = TrafficManager()
    manager.set_policy(TrafficPolicy(service_name="api"))
    assert manager.select_version("api", {}, "") == ""


@pytest.mark.parametrize("roll, expected", [(10, "v1"), (29, "v1"), (30, "v2"), (99, "v2")])
def test_weighted_split(roll, expected):
    manager = TrafficManager(rng=FixedRandom(roll))
    manager.set_policy(
        TrafficPolicy(
            service_name="api",
            splits=[TrafficSplit("v1", 30), TrafficSplit("v2", 70)],
        )
    )
    assert manager.select_version("api", {}, "") == expected


def test_header_match_wins_over_weight():
    manager = TrafficManager(rng=FixedRandom(0))
    manager.set_policy(
        TrafficPolicy(
            service_name="api",
            splits=[
                TrafficSplit("v1", 90),
                TrafficSplit("beta", 10, headers={"X-Beta": "yes"}),
            ],
        )
    )
    assert manager.select_version("api", {"X-Beta": "yes"}, "") == "beta"
    assert manager.select_version("api", {"X-Beta": "no"}, "") == "v1"


def test_ab_sticky_header():
    manager = TrafficManager(rng=FixedRandom(0))
    ab = ABTestConfig(
        enabled=True, version_a="A", version_b="B", split_key="X-Variant", weight_a=50, weight_b=50
    )
    manager.set_policy(TrafficPolicy(service_name="api", ab_test=ab))
    assert manager.select_version("api", {"X-Variant": "B"}, "") == "B"


@pytest.mark.parametrize("roll, expected", [(49, "A"), (50, "B")])
def test_ab_random_assignment(roll, expected):
    manager = TrafficManager(rng=FixedRandom(roll))
    ab = ABTestConfig(
        enabled=True, version_a="A", version_b="B", split_key="X-Variant", weight_a=50, weight_b=50
    )
    manager.set_policy(TrafficPolicy(service_name="api", ab_test=ab))
    assert manager.select_version("api", {"X-Variant": "other"}, "") == expected


def test_ab_takes_priority_over_canary():
    manager = TrafficManager(rng=FixedRandom(0))
    manager.set_policy(
        TrafficPolicy(
            service_name="api",
            ab_test=ABTestConfig(enabled=True, version_a="A", version_b="B", weight_a=100),
            canary=CanaryConfig(enabled=True, new_version="new", stable_version="old", initial_weight=100),
        )
    )
    assert manager.select_version("api", {}, "") == "A"


@pytest.mark.parametrize("roll, expected", [(5, "new"), (50, "old")])
def test_canary_selection(roll, expected):
    manager = TrafficManager(rng=FixedRandom(roll))
    canary = CanaryConfig(enabled=True, new_version="new", stable_version="old", initial_weight=10)
    manager.set_policy(TrafficPolicy(service_name="api", canary=canary))
    assert manager.select_version("api", {}, "") == expected


def test_increment_canary_caps_at_max():
    manager = TrafficManager()
    canary = CanaryConfig(
        enabled=True, new_version="new", stable_version="old",
        initial_weight=10, increment_step=20, max_weight=25,
    )
    manager.set_policy(TrafficPolicy(service_name="api", canary=canary))
    manager.increment_canary("api")
    assert manager.get_policy("api").canary.initial_weight == 25


def test_increment_canary_requires_enabled():
    manager = TrafficManager()
    manager.set_policy(TrafficPolicy(service_name="api", canary=CanaryConfig(enabled=False)))
    with pytest.raises(TrafficError, match="canary not configured for service: api"):
        manager.increment_canary("api")
    with pytest.raises(TrafficError):
        manager.increment_canary("missing")


def test_promote_canary():
    manager = TrafficManager()
    canary = CanaryConfig(enabled=True, new_version="new", stable_version="old", initial_weight=40)
    manager.set_policy(TrafficPolicy(service_name="api", canary=canary))
    manager.promote_canary("api")
    promoted = manager.get_policy("api").canary
    assert promoted.stable_version == "new"
    assert promoted.initial_weight == 0
    assert promoted.enabled is False


def test_rollback_canary():
    manager = TrafficManager(rng=FixedRandom(0))
    canary = CanaryConfig(enabled=True, new_version="new", stable_version="old", initial_weight=40)
    manager.set_policy(TrafficPolicy(service_name="api", canary=canary))
    manager.rollback_canary("api")
    rolled = manager.get_policy("api").canary
    assert rolled.stable_version == "old"
    assert rolled.enabled is False
    assert manager.select_version("api", {}, "") == ""


def test_promote_and_rollback_without_canary_raise():
    manager = TrafficManager()
    manager.set_policy(TrafficPolicy(service_name="api"))
    with pytest.raises(TrafficError):
        manager.promote_canary("api")
    with pytest.raises(TrafficError):
        manager.rollback_canary("api")