"""Tests for the client reward request flow."""

import asyncio
from datetime import datetime

import pytest

from client.fraud import FraudConfig
from client.manager import RewardedAdManager
from client.providers import SimulatedAdProvider
from client.storage import InMemoryKeyValueStore
from client.throttle import ThrottleConfig

NOW = datetime(2026, 3, 14, 12, 0, 0).timestamp()


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FixedRandom:
    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def make_manager(provider=None, store=None, clock=None, rng=None, grants=None, **kwargs):
    return RewardedAdManager(
        "u1",
        store=store if store is not None else InMemoryKeyValueStore(),
        provider=provider or SimulatedAdProvider(playback_seconds=0),
        clock=clock or FakeClock(NOW),
        rng=rng or FixedRandom(0.9),
        grant_reward=(lambda amount, kind: grants.append((amount, kind))) if grants is not None else None,
        **kwargs,
    )


class TestTokenReward:
    @pytest.mark.asyncio
    async def test_completed_ad_issues_token(self):
        manager = make_manager()
        outcome = await manager.request_token_reward()
        assert outcome.success
        assert outcome.amount == 1
        assert not outcome.had_bonus
        assert outcome.reward_type == "token"
        assert outcome.reward_token
        assert outcome.transaction_id.startswith("sim_")
        assert outcome.message == "You earned 1 token!"
        assert manager.get_stats()["today_count"] == 1

    @pytest.mark.asyncio
    async def test_bonus_token(self):
        outcome = await make_manager(rng=FixedRandom(0.1)).request_token_reward()
        assert outcome.amount == 2
        assert outcome.had_bonus
        assert outcome.message == "Lucky! You earned 2 tokens!"

    @pytest.mark.asyncio
    async def test_retry_reward(self):
        outcome = await make_manager(rng=FixedRandom(0.1)).request_retry_reward("puzzle-7")
        assert outcome.success
        assert outcome.reward_type == "retry"
        assert outcome.amount == 1
        assert outcome.message == "You earned 1 more attempt!"


class TestGates:
    @pytest.mark.asyncio
    async def test_cooldown_after_success(self):
        clock = FakeClock(NOW)
        manager = make_manager(clock=clock)
        assert (await manager.request_token_reward()).success

        clock.now = NOW + 10
        outcome = await manager.request_token_reward()
        assert not outcome.success
        assert outcome.reason == "cooldown"
        assert outcome.remaining_seconds == 20
        assert outcome.message == "Please wait 20 seconds before watching another ad."
        assert manager.get_remaining_cooldown() == 20

    @pytest.mark.asyncio
    async def test_daily_limit(self):
        clock = FakeClock(NOW)
        manager = make_manager(
            clock=clock,
            throttle_config=ThrottleConfig(cooldown_seconds=0, daily_limit=2),
            fraud_config=FraudConfig(max_rewards=100, min_interval_seconds=0),
        )
        for _ in range(2):
            assert (await manager.request_token_reward()).success
            clock.now += 1

        outcome = await manager.request_token_reward()
        assert outcome.reason == "daily_limit"
        assert "daily limit of 2 ads" in outcome.message
        assert manager.get_stats()["remaining_today"] == 0

    @pytest.mark.asyncio
    async def test_age_restricted(self):
        store = InMemoryKeyValueStore({"user_age_u1": 12})
        outcome = await make_manager(store=store).request_token_reward()
        assert outcome.reason == "age_restricted"

    @pytest.mark.asyncio
    async def test_age_thirteen_is_allowed(self):
        store = InMemoryKeyValueStore({"user_age_u1": "13"})
        assert (await make_manager(store=store).request_token_reward()).success

    @pytest.mark.asyncio
    async def test_suspicious_history_blocks_request(self):
        history = [
            {"token": f"t{i}", "type": "token", "amount": 1, "issued_at": NOW - 60 * (i + 1), "claimed": True}
            for i in range(6)
        ]
        store = InMemoryKeyValueStore({"ad_rewards_u1": history})
        outcome = await make_manager(store=store).request_token_reward()
        assert outcome.reason == "suspicious_activity"

    @pytest.mark.asyncio
    async def test_ad_unavailable(self):
        outcome = await make_manager(provider=SimulatedAdProvider(available=False)).request_token_reward()
        assert outcome.reason == "ad_unavailable"


class TestIncompleteAds:
    @pytest.mark.asyncio
    async def test_cancel_has_no_side_effects(self):
        store = InMemoryKeyValueStore()
        manager = make_manager(provider=SimulatedAdProvider(playback_seconds=5), store=store)

        task = asyncio.create_task(manager.request_token_reward())
        await asyncio.sleep(0.01)
        manager.cancel()
        outcome = await asyncio.wait_for(task, timeout=1)

        assert outcome.reason == "user_canceled"
        assert outcome.message == "You need to watch the complete ad to earn tokens."
        assert outcome.reward_token is None
        assert manager.get_stats()["today_count"] == 0
        assert manager.get_remaining_cooldown() == 0
        assert store.get("ad_rewards_u1") is None
        assert not manager.throttle.is_reserved("u1")

    @pytest.mark.asyncio
    async def test_load_failure_has_no_side_effects(self):
        manager = make_manager(provider=SimulatedAdProvider(fail_with="load_failed"))
        outcome = await manager.request_token_reward()
        assert outcome.reason == "load_failed"
        assert outcome.message == "Ad could not be loaded. Please try again."
        assert manager.get_stats()["today_count"] == 0

    @pytest.mark.asyncio
    async def test_overlapping_requests_share_one_slot(self):
        manager = make_manager(
            provider=SimulatedAdProvider(playback_seconds=0.05),
            throttle_config=ThrottleConfig(cooldown_seconds=30, daily_limit=1),
        )

        outcomes = await asyncio.gather(*(manager.request_token_reward() for _ in range(3)))

        assert [o.success for o in outcomes].count(True) == 1
        rejected = [o for o in outcomes if not o.success]
        assert {o.reason for o in rejected} == {"in_progress"}
        assert rejected[0].message == "An ad is already playing."
        assert manager.get_stats()["today_count"] == 1
        assert not manager.throttle.is_reserved("u1")

    @pytest.mark.asyncio
    async def test_unavailable_ad_frees_the_slot(self):
        provider = SimulatedAdProvider(playback_seconds=0, available=False)
        manager = make_manager(provider=provider)
        assert (await manager.request_token_reward()).reason == "ad_unavailable"
        assert not manager.throttle.is_reserved("u1")

        provider.available = True
        assert (await manager.request_token_reward()).success

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self):
        manager = make_manager(provider=SimulatedAdProvider(playback_seconds=5))
        task = asyncio.create_task(manager.request_token_reward())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert manager.get_stats()["today_count"] == 0
        assert not manager.throttle.is_reserved("u1")


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_grants_once(self):
        grants = []
        manager = make_manager(grants=grants, rng=FixedRandom(0.1))
        outcome = await manager.request_token_reward()

        assert manager.claim_reward(outcome.reward_token).success
        assert grants == [(2, "token")]

        second = manager.claim_reward(outcome.reward_token)
        assert not second.success
        assert second.reason == "invalid_token"
        assert grants == [(2, "token")]

    @pytest.mark.asyncio
    async def test_expired_claim_grants_nothing(self):
        grants = []
        clock = FakeClock(NOW)
        manager = make_manager(grants=grants, clock=clock)
        outcome = await manager.request_token_reward()
        clock.now = NOW + 301
        assert manager.claim_reward(outcome.reward_token).reason == "expired"
        assert grants == []
