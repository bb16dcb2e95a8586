"""Tests for the completion callback gateway: idempotency, atomic credit, rejection."""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from exceptions import PersistenceError
from models import AdRewardEvent, AuditLog, Wallet
from services.ad_verification import CompletionCallback, handle_completion_callback
from services.ssv import extract_signed_content
from services.wallet import get_wallet_balance


def callback_from_query(query: str, **overrides) -> CompletionCallback:
    content, signature, key_id = extract_signed_content(query)
    params = dict(pair.split("=", 1) for pair in content.split("&"))
    fields = dict(
        user_id=params["user_id"],
        transaction_id=params["transaction_id"],
        reward_item=params["reward_item"],
        reward_amount=int(params["reward_amount"]),
        provider=params["ad_network"],
        signature=signature,
        key_id=key_id,
        signed_content=content,
    )
    fields.update(overrides)
    return CompletionCallback(**fields)


async def ledger_rows(session, transaction_id=None):
    stmt = select(AdRewardEvent)
    if transaction_id:
        stmt = stmt.where(AdRewardEvent.transaction_id == transaction_id)
    return (await session.exec(stmt)).all()


@pytest.mark.asyncio
async def test_valid_callback_credits_wallet(session, verifier, make_callback_query):
    callback = callback_from_query(make_callback_query(transaction_id="tx-a", reward_amount=2))
    outcome = await handle_completion_callback(session, callback, verifier)

    assert outcome.success
    assert outcome.credited
    wallet = await get_wallet_balance(session, "user-1")
    assert wallet.balance == 2
    assert wallet.total_earned == 2

    rows = await ledger_rows(session)
    assert len(rows) == 1
    assert rows[0].verified
    assert rows[0].key_id == "test-key"
    assert rows[0].provider == "admob"


@pytest.mark.asyncio
async def test_redelivery_is_a_noop(session, verifier, make_callback_query):
    callback = callback_from_query(make_callback_query(transaction_id="tx-dup"))
    first = await handle_completion_callback(session, callback, verifier)
    second = await handle_completion_callback(session, callback, verifier)

    assert first.credited
    assert second.success
    assert not second.credited
    assert second.reason == "duplicate"

    wallet = await get_wallet_balance(session, "user-1")
    assert wallet.balance == 1
    assert wallet.total_earned == 1
    assert len(await ledger_rows(session, "tx-dup")) == 1


@pytest.mark.asyncio
async def test_concurrent_deliveries_credit_once(session_factory, verifier, make_callback_query):
    callback = callback_from_query(make_callback_query(transaction_id="tx-race", reward_amount=3))

    async def deliver():
        async with session_factory() as s:
            return await handle_completion_callback(s, callback, verifier)

    outcomes = await asyncio.gather(*(deliver() for _ in range(5)))

    assert sum(1 for o in outcomes if o.credited) == 1
    assert all(o.success for o in outcomes)
    assert sum(1 for o in outcomes if o.reason == "duplicate") == 4

    async with session_factory() as s:
        wallet = await get_wallet_balance(s, "user-1")
        assert wallet.balance == 3
        assert wallet.total_earned == 3
        assert len(await ledger_rows(s, "tx-race")) == 1


@pytest.mark.asyncio
async def test_distinct_transactions_accumulate(session, verifier, make_callback_query):
    for i in range(3):
        callback = callback_from_query(make_callback_query(transaction_id=f"tx-{i}", reward_amount=2))
        assert (await handle_completion_callback(session, callback, verifier)).credited

    wallet = await get_wallet_balance(session, "user-1")
    assert wallet.balance == 6
    assert wallet.total_earned == 6


@pytest.mark.asyncio
async def test_invalid_signature_writes_nothing_but_audit(session, verifier, make_callback_query):
    query = make_callback_query(transaction_id="tx-forged", reward_amount=1)
    content, _, _ = extract_signed_content(query)
    # Amount raised after signing
    callback = callback_from_query(query, reward_amount=5, signed_content=content.replace("reward_amount=1", "reward_amount=5"))

    outcome = await handle_completion_callback(session, callback, verifier)

    assert not outcome.success
    assert outcome.reason == "invalid_signature"
    assert await ledger_rows(session) == []
    assert await session.get(Wallet, "user-1") is None

    audits = (await session.exec(select(AuditLog).where(AuditLog.action == "ssv.invalid_signature"))).all()
    assert len(audits) == 1
    assert audits[0].resource_id == "tx-forged"
    assert not audits[0].success


@pytest.mark.asyncio
async def test_amount_above_cap_is_invalid_payload(session, verifier, make_callback_query):
    callback = callback_from_query(make_callback_query(transaction_id="tx-big", reward_amount=500))
    outcome = await handle_completion_callback(session, callback, verifier)
    assert outcome.reason == "invalid_payload"
    assert await ledger_rows(session) == []


@pytest.mark.asyncio
async def test_unknown_reward_item_is_invalid_payload(session, verifier, make_callback_query):
    callback = callback_from_query(make_callback_query(transaction_id="tx-gems", reward_item="gems"))
    outcome = await handle_completion_callback(session, callback, verifier)
    assert outcome.reason == "invalid_payload"


@pytest.mark.asyncio
async def test_retry_reward_is_ledger_only(session, verifier, make_callback_query):
    callback = callback_from_query(make_callback_query(transaction_id="tx-retry", reward_item="retry"))
    outcome = await handle_completion_callback(session, callback, verifier)

    assert outcome.credited
    rows = await ledger_rows(session, "tx-retry")
    assert len(rows) == 1
    assert rows[0].reward_item == "retry"
    assert await session.get(Wallet, "user-1") is None


@pytest.mark.asyncio
async def test_failed_credit_rolls_back_ledger_entry(session, verifier, make_callback_query):
    callback = callback_from_query(make_callback_query(transaction_id="tx-flaky", reward_amount=2))

    failure = OperationalError("UPDATE wallet", {}, Exception("disk I/O error"))
    with patch("services.ad_verification.wallet_credit_statement", side_effect=failure):
        with pytest.raises(PersistenceError) as exc_info:
            await handle_completion_callback(session, callback, verifier)
    assert exc_info.value.transient

    assert await ledger_rows(session, "tx-flaky") == []
    assert (await get_wallet_balance(session, "user-1")).balance == 0

    # The provider's retry goes through normally
    outcome = await handle_completion_callback(session, callback, verifier)
    assert outcome.credited
    assert (await get_wallet_balance(session, "user-1")).balance == 2
