"""Heuristic fraud detection for rewarded-ad requests.

Looks at the user's recent local reward history and flags bursts that a
person watching ads by hand would not produce. The result only blocks the
next request; it never revokes a credit and never stands in for server-side
verification.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Literal, Optional

from pydantic import BaseModel

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FraudConfig:
    window_seconds: int = config.FRAUD_WINDOW_SECONDS
    max_rewards: int = config.FRAUD_MAX_REWARDS
    min_interval_seconds: int = config.FRAUD_MIN_INTERVAL_SECONDS


class FraudAssessment(BaseModel):
    suspicious: bool
    reason: Optional[Literal["rapid_rewards", "rapid_completion"]] = None


def assess(
    history: Iterable[float],
    now: float,
    fraud_config: Optional[FraudConfig] = None,
) -> FraudAssessment:
    """
    Assess reward timestamps (epoch seconds) against the trailing window.

    Rules, first match wins:
    - more than `max_rewards` rewards in the window -> rapid_rewards
    - two consecutive in-window rewards closer than `min_interval_seconds` -> rapid_completion
    """
    cfg = fraud_config or FraudConfig()
    recent = sorted(ts for ts in history if now - ts < cfg.window_seconds)

    if len(recent) > cfg.max_rewards:
        logger.warning(f"[FRAUD] {len(recent)} rewards in the last {cfg.window_seconds}s")
        return FraudAssessment(suspicious=True, reason="rapid_rewards")

    for earlier, later in zip(recent, recent[1:]):
        if later - earlier < cfg.min_interval_seconds:
            logger.warning(f"[FRAUD] Rewards {later - earlier:.1f}s apart")
            return FraudAssessment(suspicious=True, reason="rapid_completion")

    return FraudAssessment(suspicious=False)
