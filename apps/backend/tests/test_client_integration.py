"""Client library against the real app: simulated ad, signed callback, wallet read."""

import httpx
import pytest
from httpx import AsyncClient

from client.callback_sink import HttpCallbackSink
from client.manager import RewardedAdManager
from client.providers import SimulatedAdProvider
from client.storage import InMemoryKeyValueStore, JsonFileKeyValueStore, get_key_value_store
from client.wallet_client import WalletClient
from exceptions import ExternalServiceError


class FixedRandom:
    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.mark.asyncio
async def test_simulated_ad_credits_wallet_through_backend(client: AsyncClient, signing_key):
    provider = SimulatedAdProvider(
        playback_seconds=0,
        callback_sink=HttpCallbackSink(base_url="http://test", client=client),
        signing_key=signing_key,
        key_id="test-key",
    )
    granted = []
    manager = RewardedAdManager(
        "player-1",
        store=InMemoryKeyValueStore(),
        provider=provider,
        grant_reward=lambda amount, kind: granted.append((amount, kind)),
        wallet_client=WalletClient(base_url="http://test", client=client),
        rng=FixedRandom(0.1),
    )

    outcome = await manager.request_token_reward()
    assert outcome.success
    assert outcome.amount == 2
    await provider.wait_for_deliveries()

    # The claim only drives the UI; the balance comes from the ledger
    assert manager.claim_reward(outcome.reward_token).success
    assert granted == [(2, "token")]

    wallet = await manager.get_wallet_balance()
    assert wallet.balance == 2
    assert wallet.total_earned == 2

    history = (await client.get("/api/ads/history/player-1")).json()["events"]
    assert [e["transaction_id"] for e in history] == [outcome.transaction_id]
    assert history[0]["provider"] == "simulated"


class TestHttpCallbackSink:
    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        statuses = iter([503, 200])
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            status = next(statuses)
            return httpx.Response(status, json={"status": "ok", "result": "credited"})

        sink = HttpCallbackSink(
            base_url="http://backend.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            backoff_seconds=0,
        )
        assert await sink.deliver("user_id=u1&signature=abc&key_id=k") == 200
        assert len(seen) == 2
        assert seen[0] == "http://backend.test/api/ads/verify?user_id=u1&signature=abc&key_id=k"

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"status": "rejected"})

        sink = HttpCallbackSink(
            base_url="http://backend.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            backoff_seconds=0,
        )
        assert await sink.deliver("x=1") == 400
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        sink = HttpCallbackSink(
            base_url="http://backend.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503))),
            max_retries=2,
            backoff_seconds=0,
        )
        with pytest.raises(ExternalServiceError):
            await sink.deliver("x=1")


@pytest.mark.asyncio
async def test_wallet_client_wraps_http_errors():
    wallet_client = WalletClient(
        base_url="http://backend.test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )
    with pytest.raises(ExternalServiceError):
        await wallet_client.get_wallet_balance("u1")


class TestKeyValueStores:
    def test_in_memory_values_are_copies(self):
        store = InMemoryKeyValueStore()
        value = {"items": [1]}
        store.set("k", value)
        value["items"].append(2)
        assert store.get("k") == {"items": [1]}

    def test_json_file_round_trip(self, tmp_path):
        store = JsonFileKeyValueStore(str(tmp_path))
        store.set("ad_frequency_u1", {"today_count": 2})
        assert JsonFileKeyValueStore(str(tmp_path)).get("ad_frequency_u1") == {"today_count": 2}
        store.delete("ad_frequency_u1")
        assert store.get("ad_frequency_u1") is None

    def test_corrupt_file_reads_as_absent(self, tmp_path):
        (tmp_path / "ad_rewards_u1.json").write_text("{not json")
        assert JsonFileKeyValueStore(str(tmp_path)).get("ad_rewards_u1") is None

    def test_factory(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLIENT_STORE", "file")
        monkeypatch.setenv("CLIENT_STORE_PATH", str(tmp_path))
        assert isinstance(get_key_value_store(), JsonFileKeyValueStore)
        monkeypatch.delenv("CLIENT_STORE")
        assert isinstance(get_key_value_store(), InMemoryKeyValueStore)
