"""Provisional reward tokens handed to the UI after a completed ad.

A token lets the UI show the reward right away. It is claimable once, for a
limited time, and is never proof of payment: the wallet balance comes from
the backend ledger.
"""

import logging
import secrets
import time
from typing import Callable, List, Literal, Optional

from pydantic import BaseModel

import config
from .storage import IKeyValueStore

logger = logging.getLogger(__name__)

RewardKind = Literal["token", "retry"]


class LocalRewardToken(BaseModel):
    token: str
    type: RewardKind
    amount: int
    issued_at: float  # epoch seconds
    claimed: bool = False


class ClaimResult(BaseModel):
    success: bool
    type: Optional[RewardKind] = None
    amount: Optional[int] = None
    reason: Optional[Literal["invalid_token", "expired"]] = None


class LocalRewardTokenIssuer:
    def __init__(
        self,
        user_id: str,
        store: IKeyValueStore,
        ttl_seconds: int = config.REWARD_TOKEN_TTL_SECONDS,
        history_limit: int = config.REWARD_HISTORY_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        self.user_id = user_id
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.history_limit = history_limit
        self._clock = clock
        self.storage_key = f"ad_rewards_{user_id}"

    def history(self) -> List[LocalRewardToken]:
        raw = self.store.get(self.storage_key) or []
        tokens = []
        for item in raw:
            try:
                tokens.append(LocalRewardToken.model_validate(item))
            except ValueError:
                logger.warning(f"[Rewards] Dropping malformed reward entry for user {self.user_id}")
        return tokens

    def _save(self, tokens: List[LocalRewardToken]) -> None:
        self.store.set(self.storage_key, [t.model_dump() for t in tokens])

    def reward_timestamps(self) -> List[float]:
        """Issue times of recent rewards; the fraud detector's input."""
        return [t.issued_at for t in self.history()]

    def issue(self, kind: RewardKind, amount: int) -> str:
        now = self._clock()
        token = f"{int(now * 1000)}_{secrets.token_hex(6)}"
        tokens = self.history()
        tokens.append(LocalRewardToken(token=token, type=kind, amount=amount, issued_at=now))
        # Keep only the most recent entries
        self._save(tokens[-self.history_limit:])
        return token

    def claim(self, token: str) -> ClaimResult:
        tokens = self.history()
        entry = next((t for t in tokens if t.token == token), None)
        if entry is None:
            return ClaimResult(success=False, reason="invalid_token")

        if self._clock() - entry.issued_at > self.ttl_seconds:
            return ClaimResult(success=False, reason="expired")

        if entry.claimed:
            return ClaimResult(success=False, reason="invalid_token")

        entry.claimed = True
        self._save(tokens)
        return ClaimResult(success=True, type=entry.type, amount=entry.amount)
