"""
Verification gateway for rewarded-ad completion callbacks.

This is the only code that credits a wallet. A callback is accepted in one
database transaction that inserts the ledger row and upserts the wallet; the
unique constraint on ``ad_reward_event.transaction_id`` turns a redelivered
callback into a no-op, however the deliveries interleave.
"""

import logging
import time
from datetime import datetime
from typing import Literal, Optional

from fastapi import Request
from pydantic import BaseModel, Field
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

import config
from audit import audit_log
from exceptions import InvalidSignatureError, PersistenceError
from models import AdRewardEvent, Wallet, REWARD_ITEMS, utc_now
from observability.metrics import (
    ad_callbacks_total,
    ad_callback_duration_seconds,
    wallet_credits_total,
)
from services.ssv import SignatureVerifier

logger = logging.getLogger(__name__)

CallbackReason = Literal["duplicate", "invalid_signature", "invalid_payload"]


class CompletionCallback(BaseModel):
    """One completion callback as delivered by the ad network."""

    user_id: str = Field(..., max_length=128)
    transaction_id: str = Field(..., max_length=255)
    reward_item: str = "token"
    reward_amount: int
    provider: str = "admob"
    signature: str
    key_id: str
    signed_content: str = Field(..., description="Exact bytes the signature covers")


class CallbackOutcome(BaseModel):
    success: bool
    credited: bool = False
    reason: Optional[CallbackReason] = None
    message: Optional[str] = None


def _validate_payload(callback: CompletionCallback) -> Optional[str]:
    if not callback.user_id.strip():
        return "user_id is required"
    if not callback.transaction_id.strip():
        return "transaction_id is required"
    if callback.reward_item not in REWARD_ITEMS:
        return f"Unsupported reward_item '{callback.reward_item}'"
    if callback.reward_amount <= 0 or callback.reward_amount > config.MAX_REWARD_AMOUNT:
        return f"reward_amount must be between 1 and {config.MAX_REWARD_AMOUNT}"
    return None


def wallet_credit_statement(dialect_name: str, user_id: str, amount: int, now: datetime):
    """
    INSERT ... ON CONFLICT (user_id) DO UPDATE adding `amount` to the wallet.

    A missing wallet is created with balance = total_earned = amount.
    """
    if dialect_name == "postgresql":
        insert = postgresql.insert
    elif dialect_name == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"Wallet upsert is not implemented for {dialect_name}")

    table = Wallet.__table__
    stmt = insert(table).values(
        user_id=user_id,
        balance=amount,
        total_earned=amount,
        total_spent=0,
        updated_at=now,
    )
    return stmt.on_conflict_do_update(
        index_elements=[table.c.user_id],
        set_={
            "balance": table.c.balance + amount,
            "total_earned": table.c.total_earned + amount,
            "updated_at": now,
        },
    )


async def handle_completion_callback(
    session: AsyncSession,
    callback: CompletionCallback,
    verifier: SignatureVerifier,
    *,
    request: Optional[Request] = None,
) -> CallbackOutcome:
    """
    Verify a completion callback and credit the user exactly once.

    Returns an outcome for new, duplicate, forged and malformed callbacks.
    Raises PersistenceError (after a full rollback) when the transaction
    cannot commit, and KeyFetchError when provider keys are unreachable;
    both are safe for the provider to retry.
    """
    started = time.perf_counter()
    provider = callback.provider
    try:
        # 1. Authenticity
        try:
            await verifier.verify(callback.signed_content, callback.signature, callback.key_id)
        except InvalidSignatureError as e:
            ad_callbacks_total.labels(provider=provider, outcome="invalid_signature").inc()
            logger.warning(
                f"[AdVerification] Rejected callback {callback.transaction_id} "
                f"for user {callback.user_id}: {e.message}"
            )
            await audit_log(
                session=session,
                action="ssv.invalid_signature",
                user_id=callback.user_id,
                resource_type="ad_reward_event",
                resource_id=callback.transaction_id,
                details={"provider": provider, "key_id": callback.key_id},
                success=False,
                error_message=e.message,
                request=request,
            )
            return CallbackOutcome(success=False, reason="invalid_signature", message=e.message)

        problem = _validate_payload(callback)
        if problem:
            ad_callbacks_total.labels(provider=provider, outcome="invalid_payload").inc()
            logger.warning(f"[AdVerification] Malformed callback {callback.transaction_id}: {problem}")
            return CallbackOutcome(success=False, reason="invalid_payload", message=problem)

        # 2. Idempotency: the unique constraint decides, not a lookup
        entry = AdRewardEvent(
            user_id=callback.user_id,
            provider=provider,
            event_type="reward",
            reward_item=callback.reward_item,
            reward_amount=callback.reward_amount,
            transaction_id=callback.transaction_id,
            signature=callback.signature,
            key_id=callback.key_id,
            verified=True,
        )
        try:
            session.add(entry)
            await session.flush()
        except IntegrityError:
            await session.rollback()
            ad_callbacks_total.labels(provider=provider, outcome="duplicate").inc()
            logger.info(f"[AdVerification] Duplicate transaction {callback.transaction_id}, already credited")
            return CallbackOutcome(success=True, credited=False, reason="duplicate")
        except SQLAlchemyError as e:
            await session.rollback()
            ad_callbacks_total.labels(provider=provider, outcome="error").inc()
            logger.error(f"[AdVerification] Ledger insert failed for {callback.transaction_id}: {e}")
            raise PersistenceError("Could not record reward", detail={"transaction_id": callback.transaction_id}) from e

        # 3. Credit in the same transaction; retries are ledger-only
        try:
            if callback.reward_item == "token":
                dialect_name = session.get_bind().dialect.name
                await session.execute(
                    wallet_credit_statement(dialect_name, callback.user_id, callback.reward_amount, utc_now())
                )
            # 4. Commit both or neither
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            ad_callbacks_total.labels(provider=provider, outcome="error").inc()
            logger.error(f"[AdVerification] Transaction failed for {callback.transaction_id}, rolled back: {e}")
            raise PersistenceError("Could not credit reward", detail={"transaction_id": callback.transaction_id}) from e

        ad_callbacks_total.labels(provider=provider, outcome="credited").inc()
        wallet_credits_total.labels(reward_item=callback.reward_item).inc(callback.reward_amount)
        logger.info(
            f"[AdVerification] Rewarded user {callback.user_id}: "
            f"+{callback.reward_amount} {callback.reward_item} ({callback.transaction_id})"
        )
        return CallbackOutcome(success=True, credited=True)
    finally:
        ad_callback_duration_seconds.labels(provider=provider).observe(time.perf_counter() - started)
