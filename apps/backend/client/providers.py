"""Ad provider adapters.

`AdProvider` is the seam between the reward flow and whatever actually plays
the ad. The implementation is picked from configuration by
`get_ad_provider()`:

- ``simulated``: plays a fake ad for a fixed time and, when given a signing
  key and a callback sink, delivers a signed completion callback to the
  backend the way the ad network would.
- ``network``: wraps the real ad SDK through a small bridge object.
"""

import asyncio
import logging
import random
import secrets
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Literal, Optional, Protocol, Set

from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel

import config
from services.ssv import build_signed_query

logger = logging.getLogger(__name__)

AdFailureReason = Literal["user_canceled", "load_failed"]


class AdRequest(BaseModel):
    user_id: str
    reward_item: Literal["token", "retry"] = "token"
    reward_amount: int = 1


class AdResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    reason: Optional[AdFailureReason] = None


class AdProvider(ABC):
    name = "generic"

    @abstractmethod
    async def is_available(self) -> bool:
        pass

    @abstractmethod
    async def show_ad(self, request: AdRequest) -> AdResult:
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Stop the ad currently playing; show_ad then reports user_canceled."""
        pass


class SimulatedAdProvider(AdProvider):
    name = "simulated"

    def __init__(
        self,
        playback_seconds: float = 3.0,
        *,
        available: bool = True,
        fail_with: Optional[AdFailureReason] = None,
        success_rate: float = 1.0,
        rng: Optional[random.Random] = None,
        callback_sink=None,
        signing_key: Optional[ec.EllipticCurvePrivateKey] = None,
        key_id: str = config.SIMULATED_SSV_KEY_ID,
        ad_unit: str = "simulated-rewarded",
    ):
        self.playback_seconds = playback_seconds
        self.available = available
        self.fail_with = fail_with
        self.success_rate = success_rate
        self.rng = rng or random.Random()
        self.callback_sink = callback_sink
        self.signing_key = signing_key
        self.key_id = key_id
        self.ad_unit = ad_unit
        self._cancel_event: Optional[asyncio.Event] = None
        self._deliveries: Set[asyncio.Task] = set()

    async def is_available(self) -> bool:
        return self.available

    def cancel(self) -> None:
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def show_ad(self, request: AdRequest) -> AdResult:
        if self.fail_with == "load_failed":
            logger.info("[SimulatedAd] Ad failed to load")
            return AdResult(success=False, reason="load_failed")

        self._cancel_event = asyncio.Event()
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=self.playback_seconds)
            logger.info("[SimulatedAd] User closed the ad early")
            return AdResult(success=False, reason="user_canceled")
        except asyncio.TimeoutError:
            pass  # played to the end
        finally:
            self._cancel_event = None

        if self.fail_with == "user_canceled" or self.rng.random() >= self.success_rate:
            logger.info("[SimulatedAd] User skipped the ad")
            return AdResult(success=False, reason="user_canceled")

        transaction_id = f"sim_{secrets.token_hex(8)}"
        logger.info(f"[SimulatedAd] Ad completed ({transaction_id})")

        if self.callback_sink is not None and self.signing_key is not None:
            query = build_signed_query(self._callback_params(request, transaction_id), self.signing_key, self.key_id)
            task = asyncio.create_task(self._deliver(query, transaction_id))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

        return AdResult(success=True, transaction_id=transaction_id)

    def _callback_params(self, request: AdRequest, transaction_id: str):
        return [
            ("ad_network", self.name),
            ("ad_unit", self.ad_unit),
            ("reward_amount", str(request.reward_amount)),
            ("reward_item", request.reward_item),
            ("timestamp", str(int(time.time() * 1000))),
            ("transaction_id", transaction_id),
            ("user_id", request.user_id),
        ]

    async def _deliver(self, query: str, transaction_id: str) -> None:
        # The ad result is already reported; a failed delivery only shows up in logs
        try:
            await self.callback_sink.deliver(query)
        except Exception as e:
            logger.error(f"[SimulatedAd] Callback delivery for {transaction_id} failed: {e}")

    async def wait_for_deliveries(self) -> None:
        """Wait for in-flight callback deliveries (tests and graceful shutdown)."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries))


class AdSdkBridge(Protocol):
    """What NetworkAdProvider needs from the platform ad SDK."""

    async def is_ready(self) -> bool: ...

    async def show(self, ad_unit: str, user_id: str, custom_data: Dict[str, Any]) -> Dict[str, Any]: ...

    def dismiss(self) -> None: ...


class NetworkAdProvider(AdProvider):
    """
    Real ad network via an SDK bridge.

    The SDK reports {"status": "earned", "transaction_id": ...} for a
    completed view and {"status": "dismissed"} when the user closes the ad.
    Crediting happens when the network calls the backend, not here.
    """

    name = "network"

    def __init__(self, sdk: AdSdkBridge, ad_unit: str = "rewarded"):
        self.sdk = sdk
        self.ad_unit = ad_unit

    async def is_available(self) -> bool:
        try:
            return bool(await self.sdk.is_ready())
        except Exception as e:
            logger.warning(f"[NetworkAd] SDK readiness check failed: {e}")
            return False

    def cancel(self) -> None:
        self.sdk.dismiss()

    async def show_ad(self, request: AdRequest) -> AdResult:
        try:
            outcome = await self.sdk.show(
                self.ad_unit,
                request.user_id,
                {"reward_item": request.reward_item, "reward_amount": request.reward_amount},
            )
        except Exception as e:
            logger.error(f"[NetworkAd] SDK failed to show ad: {e}")
            return AdResult(success=False, reason="load_failed")

        status = (outcome or {}).get("status")
        if status == "earned" and outcome.get("transaction_id"):
            return AdResult(success=True, transaction_id=str(outcome["transaction_id"]))
        if status == "dismissed":
            return AdResult(success=False, reason="user_canceled")

        logger.warning(f"[NetworkAd] Unexpected SDK outcome: {status}")
        return AdResult(success=False, reason="load_failed")


def get_ad_provider(name: Optional[str] = None, **kwargs) -> AdProvider:
    provider_type = (name or config.AD_PROVIDER).lower()
    if provider_type == "network":
        return NetworkAdProvider(**kwargs)
    if provider_type == "simulated":
        return SimulatedAdProvider(**kwargs)
    raise ValueError(f"Unknown ad provider '{provider_type}'")
