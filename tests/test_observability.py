"""Structured logging and audit trail tests."""

import io
import json
import logging

import pytest

from voidledger.hardening import ErrorCode, StateError
from voidledger.observability import (
    GENESIS_HASH,
    AuditLogger,
    AuditOutcome,
    AuditTrailError,
    Component,
    configure_logging,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    timed_operation,
)


@pytest.fixture
def stream():
    buf = io.StringIO()
    configure_logging("debug", "json", stream=buf)
    yield buf
    configure_logging("warning", "json")


def _lines(buf):
    return [json.loads(line) for line in buf.getvalue().splitlines() if line]


class TestStructuredLogging:

    def test_json_event(self, stream):
        set_correlation_id("corr-test")
        get_logger("unit", Component.STORE).info("Saved", operation="save", records=3)
        event = _lines(stream)[-1]
        assert event["message"] == "Saved"
        assert event["level"] == "info"
        assert event["logger"] == "voidledger.store.unit"
        assert event["component"] == "store"
        assert event["operation"] == "save"
        assert event["correlation_id"] == "corr-test"
        assert event["context"] == {"records": 3}

    def test_text_format(self):
        buf = io.StringIO()
        configure_logging("info", "text", stream=buf)
        try:
            get_logger("unit", Component.ENGINE).warning("Slow", operation="submit_tip", slug="acme")
        finally:
            configure_logging("warning", "json")
        line = buf.getvalue().strip()
        assert "WARNING voidledger.engine.unit Slow" in line
        assert "operation=submit_tip" in line
        assert "slug=acme" in line

    def test_level_filters(self):
        buf = io.StringIO()
        configure_logging("error", "json", stream=buf)
        try:
            get_logger("unit", Component.CLI).info("quiet")
        finally:
            configure_logging("warning", "json")
        assert buf.getvalue() == ""

    def test_reconfigure_replaces_handler(self):
        configure_logging("info", "json", stream=io.StringIO())
        root = configure_logging("info", "text", stream=io.StringIO())
        tagged = [h for h in root.handlers if getattr(h, "_voidledger", False)]
        assert len(tagged) == 1
        assert isinstance(tagged[0], logging.StreamHandler)
        configure_logging("warning", "json")


class TestTimedOperation:

    def test_success_logged(self, stream):
        logger = get_logger("timed", Component.ENGINE)

        @timed_operation(logger, "work")
        def work(x):
            return x * 2

        assert work(21) == 42
        assert work.__name__ == "work"
        event = _lines(stream)[-1]
        assert event["message"] == "Operation work completed"
        assert event["duration_ms"] >= 0

    def test_failure_logs_error_code(self, stream):
        logger = get_logger("timed", Component.ENGINE)

        @timed_operation(logger, "work")
        def work():
            raise StateError("closed", ErrorCode.ORG_INACTIVE)

        with pytest.raises(StateError):
            work()
        event = _lines(stream)[-1]
        assert event["level"] == "warning"
        assert event["message"] == "Operation work failed"
        assert event["error_code"] == "OrgInactive"


class TestCorrelation:

    def test_generated_format(self):
        cid = generate_correlation_id()
        assert cid.startswith("corr-")
        assert len(cid) == 17

    def test_get_sets_when_empty(self):
        set_correlation_id("")
        cid = get_correlation_id()
        assert cid
        assert get_correlation_id() == cid


class TestAuditLogger:

    def test_chain(self):
        audit = AuditLogger()
        first = audit.log("alice", "create_proof", "proof", "ab", AuditOutcome.SUCCESS)
        second = audit.log("bob", "burn_message", "direct_message", "x", AuditOutcome.DENIED,
                           error="Denied")
        assert first.previous_hash == GENESIS_HASH
        assert second.previous_hash == first.event_hash
        assert audit.head == second.event_hash
        assert audit.verify_chain()

    def test_removal_detected(self):
        audit = AuditLogger()
        for i in range(3):
            audit.log("alice", "create_proof", "proof", str(i), AuditOutcome.SUCCESS)
        del audit._events[1]
        assert not audit.verify_chain()

    def test_export(self):
        audit = AuditLogger()
        audit.log("alice", "activate_inbox", "inbox", "alice", AuditOutcome.FAILURE, error="AlreadyExists")
        exported = audit.export()
        assert exported[0]["outcome"] == "failure"
        assert exported[0]["details"] == {"error": "AlreadyExists"}
        json.dumps(exported)

    def test_disabled(self):
        audit = AuditLogger(enabled=False)
        assert audit.log("a", "b", "c", "d", AuditOutcome.SUCCESS) is None
        assert audit.events == []
        assert audit.head == GENESIS_HASH


class TestAuditPersistence:

    def test_append_and_load(self, tmp_path):
        path = tmp_path / "trail.jsonl"
        audit = AuditLogger()
        audit.log("alice", "create_proof", "proof", "ab", AuditOutcome.SUCCESS)
        audit.log("bob", "create_proof", "proof", "ab", AuditOutcome.FAILURE, error="AlreadyExists")
        assert audit.append_to(path) == 2
        assert audit.append_to(path) == 0
        audit.log("alice", "activate_inbox", "inbox", "alice", AuditOutcome.SUCCESS)
        assert audit.append_to(path) == 1

        loaded = AuditLogger.load(path)
        assert len(path.read_text().splitlines()) == 3
        assert [e.actor for e in loaded.events] == ["alice", "bob", "alice"]
        assert loaded.events[1].details == {"error": "AlreadyExists"}
        assert loaded.head == audit.head
        assert loaded.verify_chain()

    def test_edited_line_detected(self, tmp_path):
        path = tmp_path / "trail.jsonl"
        audit = AuditLogger()
        for i in range(3):
            audit.log("alice", "create_proof", "proof", str(i), AuditOutcome.SUCCESS)
        audit.append_to(path)

        lines = path.read_text().splitlines()
        event = json.loads(lines[1])
        event["actor"] = "mallory"
        lines[1] = json.dumps(event, sort_keys=True)
        path.write_text("\n".join(lines) + "\n")

        assert not AuditLogger.load(path).verify_chain()

    def test_malformed_line_rejected(self, tmp_path):
        path = tmp_path / "trail.jsonl"
        path.write_text('{"actor": "alice"}\n')
        with pytest.raises(AuditTrailError):
            AuditLogger.load(path)
        path.write_text("not json\n")
        with pytest.raises(AuditTrailError):
            AuditLogger.load(path)

    def test_interleaved_writers_stay_chained(self, tmp_path):
        path = tmp_path / "trail.jsonl"
        seed = AuditLogger()
        seed.log("alice", "create_proof", "proof", "0", AuditOutcome.SUCCESS)
        seed.append_to(path)

        first = AuditLogger.load(path)
        second = AuditLogger.load(path)
        first.log("bob", "submit_tip", "organization", "acme", AuditOutcome.SUCCESS)
        second.log("carol", "submit_tip", "organization", "acme", AuditOutcome.SUCCESS)
        first.append_to(path)
        second.append_to(path)

        loaded = AuditLogger.load(path)
        assert [e.actor for e in loaded.events] == ["alice", "bob", "carol"]
        assert loaded.verify_chain()
        assert second.verify_chain()
        assert second.head == loaded.head
