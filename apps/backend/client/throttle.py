"""Per-user ad request throttling: cooldown between ads and a daily cap.

The policy is two pure functions over ``ThrottleState`` (``evaluate`` and
``record_success``); ``RequestThrottle`` only loads and saves that state.
A successful check holds an in-flight reservation until ``commit`` (the ad
provider reported a completed view) or ``release`` (anything else). The
reservation never touches the persisted count or timestamp.
"""

import math
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Literal, Optional, Set

from pydantic import BaseModel

import config
from .storage import IKeyValueStore


@dataclass(frozen=True)
class ThrottleConfig:
    cooldown_seconds: int = config.AD_COOLDOWN_SECONDS
    daily_limit: int = config.AD_DAILY_LIMIT


@dataclass(frozen=True)
class ThrottleState:
    last_ad_time: Optional[float] = None  # epoch seconds; None until the first completed ad
    today_count: int = 0
    last_reset_date: str = ""  # local date, ISO format

    def to_dict(self) -> Dict:
        return {
            "last_ad_time": self.last_ad_time,
            "today_count": self.today_count,
            "last_reset_date": self.last_reset_date,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ThrottleState":
        if not data:
            return cls()
        return cls(
            last_ad_time=None if data.get("last_ad_time") is None else float(data["last_ad_time"]),
            today_count=int(data.get("today_count", 0)),
            last_reset_date=str(data.get("last_reset_date", "")),
        )


class ThrottleDecision(BaseModel):
    allowed: bool
    reason: Optional[Literal["cooldown", "daily_limit", "in_progress"]] = None
    remaining_seconds: Optional[int] = None
    limit: Optional[int] = None
    remaining_today: Optional[int] = None


def local_date(now: float) -> str:
    return datetime.fromtimestamp(now).date().isoformat()


def roll_over(state: ThrottleState, now: float) -> ThrottleState:
    """Zero the daily count when the stored date is not today."""
    today = local_date(now)
    if state.last_reset_date != today:
        return replace(state, today_count=0, last_reset_date=today)
    return state


def remaining_cooldown(state: ThrottleState, now: float, cfg: ThrottleConfig) -> int:
    if state.last_ad_time is None:
        return 0
    elapsed = now - state.last_ad_time
    if elapsed >= cfg.cooldown_seconds:
        return 0
    return math.ceil(cfg.cooldown_seconds - elapsed)


def evaluate(state: ThrottleState, now: float, cfg: ThrottleConfig, in_flight: bool = False) -> ThrottleDecision:
    """Decide whether a new ad request may start. Never mutates state.

    `in_flight` means another request already holds the slot and its ad has not
    finished yet.
    """
    state = roll_over(state, now)

    wait = remaining_cooldown(state, now, cfg)
    if wait > 0:
        return ThrottleDecision(allowed=False, reason="cooldown", remaining_seconds=wait)

    if state.today_count >= cfg.daily_limit:
        return ThrottleDecision(allowed=False, reason="daily_limit", limit=cfg.daily_limit)

    if in_flight:
        return ThrottleDecision(allowed=False, reason="in_progress")

    return ThrottleDecision(allowed=True, remaining_today=cfg.daily_limit - state.today_count)


def record_success(state: ThrottleState, now: float) -> ThrottleState:
    state = roll_over(state, now)
    return replace(state, last_ad_time=now, today_count=state.today_count + 1)


class RequestThrottle:
    def __init__(
        self,
        store: IKeyValueStore,
        throttle_config: Optional[ThrottleConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = throttle_config or ThrottleConfig()
        self._clock = clock
        self._reserved: Set[str] = set()

    @staticmethod
    def storage_key(user_id: str) -> str:
        return f"ad_frequency_{user_id}"

    def load(self, user_id: str) -> ThrottleState:
        return ThrottleState.from_dict(self.store.get(self.storage_key(user_id)))

    def save(self, user_id: str, state: ThrottleState) -> None:
        self.store.set(self.storage_key(user_id), state.to_dict())

    def check_and_reserve(self, user_id: str) -> ThrottleDecision:
        # Only the daily rollover is persisted here; counters move in commit()
        now = self._clock()
        state = self.load(user_id)
        rolled = roll_over(state, now)
        if rolled != state:
            self.save(user_id, rolled)
        decision = evaluate(rolled, now, self.config, in_flight=user_id in self._reserved)
        if decision.allowed:
            self._reserved.add(user_id)
        return decision

    def is_reserved(self, user_id: str) -> bool:
        return user_id in self._reserved

    def release(self, user_id: str) -> None:
        """Drop the reservation without counting an ad. Safe to call twice."""
        self._reserved.discard(user_id)

    def commit(self, user_id: str) -> ThrottleState:
        state = record_success(self.load(user_id), self._clock())
        self.save(user_id, state)
        self._reserved.discard(user_id)
        return state

    def remaining_cooldown(self, user_id: str) -> int:
        return remaining_cooldown(self.load(user_id), self._clock(), self.config)

    def stats(self, user_id: str) -> Dict[str, int]:
        now = self._clock()
        state = roll_over(self.load(user_id), now)
        return {
            "today_count": state.today_count,
            "daily_limit": self.config.daily_limit,
            "remaining_today": max(self.config.daily_limit - state.today_count, 0),
            "cooldown_seconds": remaining_cooldown(state, now, self.config),
        }
