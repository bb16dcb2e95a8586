"""
Client-side rewarded-ad library.

Everything here runs inside the game client and is advisory: it gates ad
requests and hands out provisional reward tokens, while the backend ledger
stays the only authority on what a user has earned.
"""

from .storage import IKeyValueStore, InMemoryKeyValueStore, JsonFileKeyValueStore, get_key_value_store
from .throttle import RequestThrottle, ThrottleConfig, ThrottleDecision, ThrottleState
from .fraud import FraudAssessment, FraudConfig, assess
from .tokens import ClaimResult, LocalRewardToken, LocalRewardTokenIssuer
from .providers import (
    AdProvider,
    AdRequest,
    AdResult,
    NetworkAdProvider,
    SimulatedAdProvider,
    get_ad_provider,
)
from .callback_sink import HttpCallbackSink
from .manager import RewardedAdManager, RewardOutcome
from .wallet_client import WalletClient

__all__ = [
    "IKeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "get_key_value_store",
    "RequestThrottle",
    "ThrottleConfig",
    "ThrottleDecision",
    "ThrottleState",
    "FraudAssessment",
    "FraudConfig",
    "assess",
    "ClaimResult",
    "LocalRewardToken",
    "LocalRewardTokenIssuer",
    "AdProvider",
    "AdRequest",
    "AdResult",
    "NetworkAdProvider",
    "SimulatedAdProvider",
    "get_ad_provider",
    "HttpCallbackSink",
    "RewardedAdManager",
    "RewardOutcome",
    "WalletClient",
]
