"""Rewarded-ad routes: provider SSV callback, wallet balance, spending, ledger history."""

import logging
from typing import Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from sqlmodel.ext.asyncio.session import AsyncSession

from audit import audit_log
from database import get_session
from dependencies import get_signature_verifier, require_internal_key
from exceptions import InvalidSignatureError
from services.ad_verification import CompletionCallback, handle_completion_callback
from services.ssv import SignatureVerifier, extract_signed_content
from services.wallet import get_wallet_balance, list_reward_events, spend_tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ads", tags=["ads"])


def _rejected(reason: str, message: str) -> JSONResponse:
    # Non-2xx tells the provider the callback was not accepted
    return JSONResponse(status_code=400, content={"status": "rejected", "reason": reason, "message": message})


@router.get("/verify")
async def verify_ad_callback(
    request: Request,
    session: AsyncSession = Depends(get_session),
    verifier: SignatureVerifier = Depends(get_signature_verifier),
):
    """
    Ad network server-side verification (SSV) callback.

    Query params: ad_network, ad_unit, reward_amount, reward_item, timestamp,
    transaction_id (or ad_network_transaction_id), user_id, custom_data,
    signature, key_id. The signature covers the raw query string up to
    `&signature=`.

    Returns 200 for both new and already-seen transactions. Reward fields are
    read from the signed portion only; nothing after `&signature=` is trusted.
    """
    try:
        signed_content, signature, key_id = extract_signed_content(request.url.query)
    except InvalidSignatureError as e:
        user_id = request.query_params.get("user_id", "")
        transaction_id = request.query_params.get("transaction_id", "")
        logger.warning(f"[AdVerification] Unsigned callback for user {user_id or '?'}: {e.message}")
        await audit_log(
            session=session,
            action="ssv.invalid_signature",
            user_id=user_id or None,
            resource_type="ad_reward_event",
            resource_id=transaction_id or None,
            success=False,
            error_message=e.message,
            request=request,
        )
        return _rejected("invalid_signature", e.message)

    params = dict(parse_qsl(signed_content, keep_blank_values=True))
    user_id = params.get("user_id", "")
    transaction_id = params.get("transaction_id") or params.get("ad_network_transaction_id") or ""

    try:
        reward_amount = int(params.get("reward_amount", ""))
    except ValueError:
        reward_amount = 0

    try:
        callback = CompletionCallback(
            user_id=user_id,
            transaction_id=transaction_id,
            reward_item=params.get("reward_item") or "token",
            reward_amount=reward_amount,
            provider=params.get("ad_network") or "admob",
            signature=signature,
            key_id=key_id,
            signed_content=signed_content,
        )
    except PydanticValidationError as e:
        return _rejected("invalid_payload", str(e.errors()[0].get("msg", "Invalid callback")))

    outcome = await handle_completion_callback(session, callback, verifier, request=request)
    if not outcome.success:
        return _rejected(outcome.reason or "rejected", outcome.message or "Callback rejected")

    return {
        "status": "ok",
        "result": "duplicate" if outcome.reason == "duplicate" else "credited",
        "transaction_id": transaction_id,
    }


@router.get("/balance/{user_id}")
async def get_balance(user_id: str, session: AsyncSession = Depends(get_session)):
    """Authoritative wallet balance. UIs must display this, not sums of claimed tokens."""
    wallet = await get_wallet_balance(session, user_id)
    return {
        "user_id": wallet.user_id,
        "balance": wallet.balance,
        "total_earned": wallet.total_earned,
        "total_spent": wallet.total_spent,
    }


class SpendRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    amount: int = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=120)


@router.post("/spend", dependencies=[Depends(require_internal_key)])
async def spend(
    request: Request,
    body: SpendRequest,
    session: AsyncSession = Depends(get_session),
):
    """Spend tokens from a wallet (puzzle unlocks and the like)."""
    result = await spend_tokens(session, body.user_id, body.amount, body.reason)
    if result.success:
        await audit_log(
            session=session,
            action="wallet.spend",
            user_id=body.user_id,
            resource_type="wallet",
            resource_id=body.user_id,
            details={"amount": body.amount, "reason": body.reason},
            request=request,
        )
        return result.model_dump()
    return JSONResponse(status_code=409, content=result.model_dump())


@router.get("/history/{user_id}")
async def get_history(
    user_id: str,
    reward_item: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
):
    """Ledger entries for a user. The retry subsystem reads granted retries from here."""
    events = await list_reward_events(session, user_id, reward_item=reward_item, limit=limit)
    return {
        "user_id": user_id,
        "events": [
            {
                "transaction_id": e.transaction_id,
                "provider": e.provider,
                "reward_item": e.reward_item,
                "reward_amount": e.reward_amount,
                "verified": e.verified,
                "created_at": e.created_at.isoformat(),
            }
            for e in events
        ],
    }
