"""
Rewarded-ad request flow on the client.

RewardedAdManager runs the gates (age, throttle, fraud, availability), plays
the ad and hands the UI a provisional reward token. None of this credits the
wallet: the ad network's callback to the backend does, independently. The UI
should show `get_wallet_balance()` rather than a sum of claimed tokens.
"""

import logging
import random
import time
from typing import Callable, Optional

from pydantic import BaseModel

import config
from observability.logging import log_event
from services.wallet import WalletBalance
from .fraud import FraudConfig, assess
from .providers import AdProvider, AdRequest, get_ad_provider
from .storage import IKeyValueStore, get_key_value_store
from .throttle import RequestThrottle, ThrottleConfig
from .tokens import ClaimResult, LocalRewardTokenIssuer, RewardKind
from .wallet_client import WalletClient

logger = logging.getLogger(__name__)

GrantReward = Callable[[int, str], None]


class RewardOutcome(BaseModel):
    success: bool
    reason: Optional[str] = None
    message: str = ""
    reward_type: Optional[RewardKind] = None
    reward_token: Optional[str] = None
    amount: int = 0
    had_bonus: bool = False
    transaction_id: Optional[str] = None
    remaining_seconds: Optional[int] = None


class RewardedAdManager:
    def __init__(
        self,
        user_id: str,
        *,
        store: Optional[IKeyValueStore] = None,
        provider: Optional[AdProvider] = None,
        throttle_config: Optional[ThrottleConfig] = None,
        fraud_config: Optional[FraudConfig] = None,
        grant_reward: Optional[GrantReward] = None,
        wallet_client: Optional[WalletClient] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        min_age: int = config.MIN_AD_AGE,
    ):
        self.user_id = user_id
        self.store = store or get_key_value_store()
        self.provider = provider or get_ad_provider()
        self.throttle = RequestThrottle(self.store, throttle_config, clock=clock)
        self.fraud_config = fraud_config or FraudConfig()
        self.tokens = LocalRewardTokenIssuer(user_id, self.store, clock=clock)
        self.grant_reward = grant_reward
        self.wallet_client = wallet_client
        self.min_age = min_age
        self._clock = clock
        self._rng = rng or random.Random()

    async def request_token_reward(self) -> RewardOutcome:
        """1 token, plus a bonus token on a coin flip."""
        return await self._request_reward("token")

    async def request_retry_reward(self, puzzle_id: str) -> RewardOutcome:
        """One more attempt at `puzzle_id`."""
        return await self._request_reward("retry", puzzle_id=puzzle_id)

    async def _request_reward(self, kind: RewardKind, puzzle_id: Optional[str] = None) -> RewardOutcome:
        # 1. Age compliance
        if not self.check_age_compliance():
            log_event(logger, "ad_request_rejected", user_id=self.user_id, reason="age_restricted")
            return RewardOutcome(
                success=False,
                reason="age_restricted",
                message=f"Ads are not available for users under {self.min_age}.",
            )

        # 2. Frequency
        decision = self.throttle.check_and_reserve(self.user_id)
        if not decision.allowed:
            if decision.reason == "cooldown":
                seconds = decision.remaining_seconds
                message = f"Please wait {seconds} second{'s' if seconds > 1 else ''} before watching another ad."
            elif decision.reason == "in_progress":
                message = "An ad is already playing."
            else:
                message = f"You've reached the daily limit of {decision.limit} ads. Please try again tomorrow!"
            log_event(logger, "ad_request_rejected", user_id=self.user_id, reason=decision.reason)
            return RewardOutcome(
                success=False,
                reason=decision.reason,
                message=message,
                remaining_seconds=decision.remaining_seconds,
            )

        try:
            return await self._run_reserved(kind, puzzle_id)
        finally:
            # No-op after commit; frees the slot on every other exit, cancellation included
            self.throttle.release(self.user_id)

    async def _run_reserved(self, kind: RewardKind, puzzle_id: Optional[str]) -> RewardOutcome:
        # 3. Fraud heuristics
        fraud = assess(self.tokens.reward_timestamps(), self._clock(), self.fraud_config)
        if fraud.suspicious:
            log_event(logger, "fraud_detected", user_id=self.user_id, reason=fraud.reason)
            return RewardOutcome(
                success=False,
                reason="suspicious_activity",
                message="Unusual activity detected. Please try again later.",
            )

        # 4. Availability
        if not await self.provider.is_available():
            log_event(logger, "ad_not_available", user_id=self.user_id)
            return RewardOutcome(
                success=False,
                reason="ad_unavailable",
                message="Ads are not available right now. Please try again later.",
            )

        # 5. Playback
        amount = config.TOKEN_REWARD_BASE if kind == "token" else 1
        had_bonus = False
        if kind == "token" and self._rng.random() < config.TOKEN_REWARD_BONUS_CHANCE:
            amount += 1
            had_bonus = True

        log_event(logger, "ad_request_started", user_id=self.user_id, reward_type=kind, puzzle_id=puzzle_id)
        result = await self.provider.show_ad(AdRequest(user_id=self.user_id, reward_item=kind, reward_amount=amount))

        if not result.success:
            log_event(logger, "ad_not_completed", user_id=self.user_id, reason=result.reason)
            if result.reason == "user_canceled":
                message = (
                    "You need to watch the complete ad to earn tokens."
                    if kind == "token"
                    else "You need to watch the complete ad to earn a retry."
                )
            else:
                message = "Ad could not be loaded. Please try again."
            return RewardOutcome(success=False, reason=result.reason, message=message)

        # 6. Completed: take the throttle slot, then mint the provisional token
        self.throttle.commit(self.user_id)
        reward_token = self.tokens.issue(kind, amount)

        log_event(
            logger,
            "ad_completed",
            user_id=self.user_id,
            reward_type=kind,
            puzzle_id=puzzle_id,
            amount=amount,
            had_bonus=had_bonus,
            transaction_id=result.transaction_id,
        )

        if kind == "retry":
            message = "You earned 1 more attempt!"
        elif had_bonus:
            message = f"Lucky! You earned {amount} tokens!"
        else:
            message = f"You earned {amount} token{'s' if amount > 1 else ''}!"

        return RewardOutcome(
            success=True,
            message=message,
            reward_type=kind,
            reward_token=reward_token,
            amount=amount,
            had_bonus=had_bonus,
            transaction_id=result.transaction_id,
        )

    def cancel(self) -> None:
        """Close the ad that is playing; the pending request ends as user_canceled."""
        self.provider.cancel()

    def claim_reward(self, reward_token: str) -> ClaimResult:
        """
        Claim a provisional token and pass it to the UI's grant_reward hook.

        The wallet itself is credited by the backend; this only drives UI feedback.
        """
        result = self.tokens.claim(reward_token)
        if result.success:
            log_event(logger, "reward_claimed", user_id=self.user_id, reward_type=result.type, amount=result.amount)
            if self.grant_reward is not None:
                self.grant_reward(result.amount, result.type)
        else:
            log_event(logger, "reward_claim_failed", user_id=self.user_id, reason=result.reason)
        return result

    async def get_wallet_balance(self) -> WalletBalance:
        if self.wallet_client is None:
            self.wallet_client = WalletClient()
        return await self.wallet_client.get_wallet_balance(self.user_id)

    def check_age_compliance(self) -> bool:
        age = self.store.get(f"user_age_{self.user_id}")
        if age is None:
            return True  # unknown age counts as compliant
        try:
            return int(age) >= self.min_age
        except (TypeError, ValueError):
            return True

    def get_remaining_cooldown(self) -> int:
        return self.throttle.remaining_cooldown(self.user_id)

    def get_stats(self):
        return self.throttle.stats(self.user_id)
