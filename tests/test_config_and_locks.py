import asyncio
from contextlib import asynccontextmanager

import pytest

from identitovigilance.core.config import ApplicationConfig, PolicyConfig
from identitovigilance.core.locks import LocalLockManager, LockManager, canonical_order, create_lock_manager
from identitovigilance.domains.identity.models.identity import VerificationType
from identitovigilance.domains.identity.models.policy import DemotionRule
from identitovigilance.domains.identity.services.policy import StaticPolicyProvider


def test_environment_overrides_policy(monkeypatch):
    monkeypatch.setenv("POLICY_DUPLICATE_THRESHOLD", "80")
    monkeypatch.setenv("POLICY_MANDATORY_VERIFICATIONS", "document, health_card")
    monkeypatch.setenv("POLICY_DEMOTION_RULE", "validated_if_document")

    config = ApplicationConfig()

    assert config.policy.duplicate_threshold == 80
    assert config.policy.mandatory_verifications == ["document", "health_card"]
    assert config.policy.demotion_rule == "validated_if_document"


def test_inconsistent_thresholds_are_rejected(monkeypatch):
    monkeypatch.setenv("POLICY_POSSIBLE_FLOOR", "90")

    with pytest.raises(ValueError):
        ApplicationConfig()


def test_unknown_demotion_rule_is_rejected(monkeypatch):
    monkeypatch.setenv("POLICY_DEMOTION_RULE", "demote_to_provisional")

    with pytest.raises(ValueError):
        ApplicationConfig()


def test_secrets_are_masked(monkeypatch):
    monkeypatch.setenv("TELESERVICE_API_KEY", "secret")

    assert ApplicationConfig().to_dict()["teleservice"]["api_key"] == "***masked***"


async def test_policy_from_config():
    provider = StaticPolicyProvider.from_config(PolicyConfig(
        facility_id="chu-1",
        mandatory_verifications=["health_card"],
        demotion_rule="validated_if_document",
    ))

    policy = await provider.get_policy()

    assert policy.facility_id == "chu-1"
    assert policy.mandatory_verifications == [VerificationType.HEALTH_CARD]
    assert policy.demotion_rule == DemotionRule.VALIDATED_IF_DOCUMENT


def test_canonical_order_is_sorted_and_distinct():
    assert canonical_order(["b", "a", "b"]) == ["a", "b"]


class RecordingLockManager(LockManager):

    def __init__(self):
        self.acquired = []

    @asynccontextmanager
    async def lock(self, key):
        self.acquired.append(key)
        yield


async def test_pairs_are_locked_in_canonical_order():
    manager = RecordingLockManager()

    async with manager.acquire_pair("zeta", "alpha"):
        pass
    async with manager.acquire_pair("alpha", "zeta"):
        pass

    assert manager.acquired == ["alpha", "zeta", "alpha", "zeta"]


async def test_local_locks_serialize_holders():
    manager = LocalLockManager()
    events = []

    async def hold(name):
        async with manager.acquire_pair("a", "b"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(hold("first"), hold("second"))

    assert events == ["first-in", "first-out", "second-in", "second-out"]


async def test_local_locks_are_released_when_unused():
    manager = LocalLockManager()

    async def hold(first, second):
        async with manager.acquire_pair(first, second):
            await asyncio.sleep(0.01)

    await asyncio.gather(hold("a", "b"), hold("b", "c"), hold("a", "c"))
    assert len(manager) == 0

    with pytest.raises(RuntimeError):
        async with manager.acquire_pair("a", "b"):
            assert len(manager) == 2
            raise RuntimeError("merge failed")
    assert len(manager) == 0


def test_local_locks_without_redis(monkeypatch):
    monkeypatch.setenv("REDIS_LOCKS_ENABLED", "false")

    assert isinstance(create_lock_manager(ApplicationConfig().redis), LocalLockManager)
