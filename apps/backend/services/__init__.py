# Services package
from .ad_verification import CompletionCallback, CallbackOutcome, handle_completion_callback
from .ssv import PublicKeyCache, SignatureVerifier, build_default_verifier
from .wallet import WalletBalance, SpendResult, get_wallet_balance, spend_tokens, list_reward_events

__all__ = [
    "CompletionCallback",
    "CallbackOutcome",
    "handle_completion_callback",
    "PublicKeyCache",
    "SignatureVerifier",
    "build_default_verifier",
    "WalletBalance",
    "SpendResult",
    "get_wallet_balance",
    "spend_tokens",
    "list_reward_events",
]
