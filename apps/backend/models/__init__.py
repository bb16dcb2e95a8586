"""
Model exports.

Models are organized into domain modules:
- rewards.py: Wallet and the ad reward ledger
- audit.py: Append-only audit trail
"""

from models.rewards import (
    Wallet,
    AdRewardEvent,
    REWARD_ITEMS,
    utc_now,
)

from models.audit import (
    AuditLog,
)

__all__ = [
    "Wallet",
    "AdRewardEvent",
    "REWARD_ITEMS",
    "utc_now",
    "AuditLog",
]
