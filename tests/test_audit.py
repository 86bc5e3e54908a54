"""Tests for audit sinks."""

from __future__ import annotations

import json
import logging

from secure_sandbox.audit import (
    AUDIT_LOGGER_NAME,
    AuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
)
from secure_sandbox.models.audit import AuditActor, AuditDetails, AuditRecord, AuditResource
from secure_sandbox.models.enums import AuditOutcome, AuditSeverity


def _record(severity: AuditSeverity = AuditSeverity.INFO) -> AuditRecord:
    return AuditRecord(
        event_id="evt-1",
        severity=severity,
        actor=AuditActor(user_id="u1"),
        resource=AuditResource(name="python"),
        outcome=AuditOutcome.SUCCESS if severity is AuditSeverity.INFO else AuditOutcome.FAILURE,
        details=AuditDetails(exit_code=0, timed_out=False, duration_ms=12),
    )


class TestAuditSinks:
    def test_sinks_satisfy_protocol(self):
        assert isinstance(LoggingAuditSink(), AuditSink)
        assert isinstance(InMemoryAuditSink(), AuditSink)

    def test_in_memory_sink(self):
        sink = InMemoryAuditSink()
        sink.log(_record())
        assert [r.event_id for r in sink.records] == ["evt-1"]
        sink.clear()
        assert sink.records == []

    def test_logging_sink_writes_json(self, caplog):
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            LoggingAuditSink().log(_record())
        (entry,) = [r for r in caplog.records if r.name == AUDIT_LOGGER_NAME]
        payload = json.loads(entry.getMessage())
        assert entry.levelno == logging.INFO
        assert payload["eventId"] == "evt-1"
        assert payload["eventType"] == "sandbox"
        assert payload["actor"] == {"userId": "u1"}
        assert payload["details"]["durationMs"] == 12

    def test_logging_sink_level_follows_severity(self, caplog):
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            LoggingAuditSink().log(_record(AuditSeverity.WARN))
        assert caplog.records[-1].levelno == logging.WARNING
