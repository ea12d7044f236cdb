"""
Observability Test Suite

Structured logging, timed operations, correlation IDs and the audit trail.
"""

import io
import json
import logging

import pytest

from shieldpool.aegis.hardening import AlreadySpent
from shieldpool.aegis.observability import (
    GENESIS_HASH,
    AegisLayer,
    AegisLogger,
    AuditTrail,
    LogLevel,
    StructuredHandler,
    get_correlation_id,
    set_correlation_id,
    timed_operation,
)


@pytest.fixture
def test_logger():
    return AegisLogger("observability_test", AegisLayer.POOL, level=LogLevel.DEBUG)


class TestStructuredHandler:
    def test_emits_one_json_object_per_line(self, test_logger):
        stream = io.StringIO()
        handler = StructuredHandler(stream)
        test_logger.logger.addHandler(handler)
        try:
            set_correlation_id("corr-fixed")
            test_logger.info("Deposit recorded", leaf_index=3)
        finally:
            test_logger.logger.removeHandler(handler)

        event = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert event["message"] == "Deposit recorded"
        assert event["level"] == "info"
        assert event["layer"] == "pool"
        assert event["correlation_id"] == "corr-fixed"
        assert event["context"] == {"leaf_index": 3}
        assert "duration_ms" not in event


class TestCorrelation:
    def test_generated_once_per_context(self):
        set_correlation_id("")
        first = get_correlation_id()
        assert first.startswith("corr-")
        assert get_correlation_id() == first


class TestTimedOperation:
    def test_success_logged(self, test_logger, caplog):
        @timed_operation(test_logger, "sample")
        def work(x):
            return x * 2

        with caplog.at_level(logging.DEBUG, logger=test_logger.logger.name):
            assert work(21) == 42

        record = caplog.records[-1]
        assert record.operation == "sample"
        assert record.levelno == logging.INFO
        assert record.duration_ms >= 0

    def test_failure_carries_error_code(self, test_logger, caplog):
        @timed_operation(test_logger, "spend")
        def spend():
            raise AlreadySpent("nullifier reused")

        with caplog.at_level(logging.DEBUG, logger=test_logger.logger.name):
            with pytest.raises(AlreadySpent):
                spend()

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.error_code == "already_spent"

    def test_plain_exception_uses_type_name(self, test_logger, caplog):
        @timed_operation(test_logger, "boom")
        def boom():
            raise KeyError("x")

        with caplog.at_level(logging.DEBUG, logger=test_logger.logger.name):
            with pytest.raises(KeyError):
                boom()
        assert caplog.records[-1].error_code == "KeyError"


class TestAuditTrail:
    def test_chain_links(self):
        trail = AuditTrail()
        a = trail.record("0x1", "deposit", "commitment", "0xabc", timestamp=10, amount=5)
        b = trail.record("0x2", "withdraw", "nullifier", "0xdef", timestamp=11)

        assert a.previous_hash == GENESIS_HASH
        assert b.previous_hash == a.event_hash
        assert trail.head == b.event_hash
        assert len(trail) == 2
        assert trail.verify_chain()

    def test_tamper_detected(self):
        trail = AuditTrail()
        trail.record("0x1", "deposit", "commitment", "0xabc", amount=5)
        trail.record("0x2", "withdraw", "nullifier", "0xdef")
        trail._events[0].details["amount"] = 500
        assert not trail.verify_chain()

    def test_dropped_event_detected(self):
        trail = AuditTrail()
        for i in range(3):
            trail.record("0x1", "deposit", "commitment", i)
        del trail._events[1]
        assert not trail.verify_chain()

    def test_disabled_records_nothing(self):
        trail = AuditTrail(enabled=False)
        assert trail.record("0x1", "deposit", "commitment", 1) is None
        assert len(trail) == 0
        assert trail.head == GENESIS_HASH
