"""Rewarded-ad models: per-user wallet and the append-only reward ledger."""

from typing import Optional
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

REWARD_ITEMS = ("token", "retry")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Wallet(SQLModel, table=True):
    """
    Per-user token balance.

    Created lazily by the first credited reward and never deleted.
    total_earned only ever grows; balance also drops when tokens are spent.
    """
    __tablename__ = "wallet"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_wallet_total_earned_non_negative"),
        CheckConstraint("total_spent >= 0", name="ck_wallet_total_spent_non_negative"),
    )

    user_id: str = Field(primary_key=True, max_length=128)
    balance: int = Field(default=0)
    total_earned: int = Field(default=0)
    total_spent: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class AdRewardEvent(SQLModel, table=True):
    """
    Immutable ledger entry for one accepted ad completion.

    transaction_id is provider-issued and unique across all entries. The
    database constraint is what stops a redelivered callback from crediting
    twice, so it must never be replaced by a lookup before insert.
    """
    __tablename__ = "ad_reward_event"
    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_ad_reward_event_transaction_id"),
        CheckConstraint("reward_amount > 0", name="ck_ad_reward_event_amount_positive"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=128)
    provider: str = "admob"
    event_type: str = "reward"
    reward_item: str  # "token" or "retry"
    reward_amount: int
    transaction_id: str = Field(max_length=255)
    signature: Optional[str] = None
    key_id: Optional[str] = None
    verified: bool = True
    created_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
