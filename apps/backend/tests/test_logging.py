"""Tests for log record enrichment: correlation ids, redaction, analytics events."""

import json
import logging

from observability.logging import (
    CorrelationIDFilter,
    RewardsJsonFormatter,
    SensitiveDataFilter,
    correlation_id_context,
    get_correlation_id,
    log_event,
)


class CapturingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []
        self.addFilter(CorrelationIDFilter())
        self.addFilter(SensitiveDataFilter())

    def emit(self, record):
        self.records.append(record)


def capture(name):
    logger = logging.getLogger(name)
    handler = CapturingHandler()
    logger.addHandler(handler)
    return logger, handler


def test_correlation_id_is_scoped_to_the_block():
    assert get_correlation_id() is None
    with correlation_id_context("req-abc") as cid:
        assert cid == "req-abc"
        assert get_correlation_id() == "req-abc"
    assert get_correlation_id() is None

    with correlation_id_context() as generated:
        assert generated.startswith("req-")


def test_records_carry_the_active_correlation_id():
    logger, handler = capture("tests.logging.correlation")
    with correlation_id_context("req-xyz"):
        logger.warning("inside")
    logger.warning("outside")
    assert [r.correlation_id for r in handler.records] == ["req-xyz", "none"]


def test_log_event_emits_structured_fields():
    logger, handler = capture("tests.logging.events")
    logger.setLevel(logging.INFO)
    log_event(logger, "ad_request_rejected", user_id="u1", reason="cooldown")

    record = handler.records[0]
    assert record.getMessage() == "ad_request_rejected"
    assert record.event == "ad_request_rejected"
    assert record.user_id == "u1"
    assert record.reason == "cooldown"


def test_signatures_and_tokens_are_redacted():
    logger, handler = capture("tests.logging.redaction")
    logger.warning(
        "callback",
        extra={"signature": "MEUCIQ", "reward_token": "1760_ab", "details": {"api_key": "k", "amount": 2}},
    )
    record = handler.records[0]
    assert record.signature == "[REDACTED]"
    assert record.reward_token == "[REDACTED]"
    assert record.details == {"api_key": "[REDACTED]", "amount": 2}


def test_json_formatter_adds_service_fields():
    record = logging.LogRecord("tests.json", logging.INFO, __file__, 1, "credited", None, None)
    record.correlation_id = "req-1"
    payload = json.loads(RewardsJsonFormatter("%(asctime)s %(message)s").format(record))
    assert payload["message"] == "credited"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "req-1"
    assert payload["service"] == "rewarded-ads-backend"
