"""Wallet read path, token spending and ledger history."""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import PersistenceError, ValidationError
from models import AdRewardEvent, Wallet, utc_now
from observability.metrics import wallet_spends_total

logger = logging.getLogger(__name__)


class WalletBalance(BaseModel):
    user_id: str
    balance: int = 0
    total_earned: int = 0
    total_spent: int = 0
    updated_at: Optional[datetime] = None


class SpendResult(BaseModel):
    success: bool
    reason: Optional[str] = None  # "insufficient_balance", "no_wallet"
    spent: int = 0
    balance: int = 0
    required: Optional[int] = None


async def get_wallet_balance(session: AsyncSession, user_id: str) -> WalletBalance:
    """Current balance; a user who has never been credited reads as zeros."""
    wallet = await session.get(Wallet, user_id, populate_existing=True)
    if wallet is None:
        return WalletBalance(user_id=user_id)
    return WalletBalance(
        user_id=wallet.user_id,
        balance=wallet.balance,
        total_earned=wallet.total_earned,
        total_spent=wallet.total_spent,
        updated_at=wallet.updated_at,
    )


async def spend_tokens(
    session: AsyncSession,
    user_id: str,
    amount: int,
    reason: Optional[str] = None,
) -> SpendResult:
    """
    Debit `amount` tokens in a single conditional UPDATE.

    The balance check lives in the WHERE clause, so two concurrent spends can
    never take the wallet below zero.
    """
    if amount <= 0:
        raise ValidationError("amount must be positive", detail={"amount": amount})

    stmt = (
        update(Wallet)
        .where(Wallet.user_id == user_id)
        .where(Wallet.balance >= amount)
        .values(
            balance=Wallet.balance - amount,
            total_spent=Wallet.total_spent + amount,
            updated_at=utc_now(),
        )
    )
    try:
        result = await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"[Wallet] Spend failed for user {user_id}: {e}")
        raise PersistenceError("Could not spend tokens", detail={"user_id": user_id}) from e

    wallet = await session.get(Wallet, user_id, populate_existing=True)

    if result.rowcount == 0:
        if wallet is None:
            wallet_spends_total.labels(outcome="no_wallet").inc()
            return SpendResult(success=False, reason="no_wallet", balance=0, required=amount)
        wallet_spends_total.labels(outcome="insufficient_balance").inc()
        return SpendResult(success=False, reason="insufficient_balance", balance=wallet.balance, required=amount)

    wallet_spends_total.labels(outcome="spent").inc()
    logger.info(f"[Wallet] User {user_id} spent {amount} tokens ({reason or 'unspecified'}). Balance: {wallet.balance}")
    return SpendResult(success=True, spent=amount, balance=wallet.balance)


async def list_reward_events(
    session: AsyncSession,
    user_id: str,
    reward_item: Optional[str] = None,
    limit: int = 50,
) -> List[AdRewardEvent]:
    """Most recent ledger entries for a user, newest first."""
    stmt = select(AdRewardEvent).where(AdRewardEvent.user_id == user_id)
    if reward_item:
        stmt = stmt.where(AdRewardEvent.reward_item == reward_item)
    stmt = stmt.order_by(AdRewardEvent.created_at.desc(), AdRewardEvent.id.desc()).limit(limit)
    result = await session.exec(stmt)
    return list(result.all())
