"""Tests for metrics, audit logging, redaction and the mcp_tool decorator."""

import asyncio
import io
import json
import logging

import pytest

from taskgraph_mcp.core.context import get_correlation_id, sync_request_context
from taskgraph_mcp.core.logging_config import (
    HumanReadableFormatter,
    StructuredFormatter,
    configure_logging,
)
from taskgraph_mcp.core.observability import (
    AuditEvent,
    AuditEventType,
    audit_log,
    get_audit_logger,
    get_metrics,
    mcp_tool,
    redact_sensitive_data,
)


class TestRedaction:
    def test_sensitive_keys_are_replaced(self):
        redacted = redact_sensitive_data(
            {"api_token": "abc", "project": "PROJ", "nested": {"password": "hunter22"}}
        )
        assert redacted == {
            "api_token": "[REDACTED:API_TOKEN]",
            "project": "PROJ",
            "nested": {"password": "[REDACTED:PASSWORD]"},
        }

    def test_patterns_in_strings(self):
        text = "Authorization: Basic ZGV2OnNlY3JldA== failed"
        assert "ZGV2OnNlY3JldA" not in redact_sensitive_data(text)

    def test_lists_and_tuples_keep_their_type(self):
        assert redact_sensitive_data(("a", "b")) == ("a", "b")
        assert redact_sensitive_data(["bearer abc.def"]) == ["[REDACTED:BEARER_TOKEN]"]

    def test_max_depth(self):
        assert redact_sensitive_data({"a": 1}, max_depth=0) == "[MAX_DEPTH_EXCEEDED]"


class TestMetrics:
    def test_counter_is_logged_with_metric_extra(self, caplog):
        caplog.set_level(logging.INFO, logger="taskgraph_mcp.core.observability.metrics")
        get_metrics().counter("dependencies.removed", value=3, labels={"backend": "local"})

        record = caplog.records[-1]
        assert record.getMessage() == "METRIC: taskgraph_mcp.dependencies.removed"
        assert record.metric["value"] == 3
        assert record.metric["type"] == "counter"
        assert record.metric["labels"] == {"backend": "local"}


class TestAudit:
    def test_dependency_change(self, caplog):
        caplog.set_level(logging.INFO, logger="taskgraph_mcp.core.observability.audit")
        get_audit_logger().dependency_change("PROJ-1", "PROJ-2", added=False, backend="tracker")

        audit = caplog.records[-1].audit
        assert audit["event_type"] == "dependency_removed"
        assert audit["details"]["dependency_id"] == "PROJ-2"

    def test_unknown_event_type_is_kept(self, caplog):
        caplog.set_level(logging.INFO, logger="taskgraph_mcp.core.observability.audit")
        audit_log("server_restart", api_token="shh")

        audit = caplog.records[-1].audit
        assert audit["event_type"] == "tool_invocation"
        assert audit["details"]["original_event_type"] == "server_restart"
        assert audit["details"]["api_token"] == "[REDACTED:API_TOKEN]"

    def test_event_picks_up_correlation_id(self):
        with sync_request_context(correlation_id="req_audit"):
            event = AuditEvent(event_type=AuditEventType.DEPENDENCY_ADDED)
        assert event.to_dict()["correlation_id"] == "req_audit"


class TestMcpToolDecorator:
    def test_sets_request_context_and_records_action(self, caplog):
        caplog.set_level(logging.INFO, logger="taskgraph_mcp.core.observability")

        @mcp_tool(tool_name="dependency")
        def handler(action):
            return get_correlation_id()

        corr_id = handler(action="validate")
        assert corr_id.startswith("tool_")
        assert get_correlation_id() == ""

        audits = [r.audit for r in caplog.records if hasattr(r, "audit")]
        assert audits[-1]["details"]["tool"] == "dependency"
        assert audits[-1]["details"]["action"] == "validate"
        assert audits[-1]["details"]["success"] is True

    def test_reuses_active_correlation_id(self):
        @mcp_tool()
        def handler():
            return get_correlation_id()

        with sync_request_context(correlation_id="req_outer"):
            assert handler() == "req_outer"

    def test_failure_is_recorded_and_reraised(self, caplog):
        caplog.set_level(logging.INFO, logger="taskgraph_mcp.core.observability")

        @mcp_tool(tool_name="task")
        def handler(action):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            handler(action="next")
        audits = [r.audit for r in caplog.records if hasattr(r, "audit")]
        assert audits[-1]["details"]["success"] is False
        assert audits[-1]["details"]["error"] == "boom"

    def test_async_handler(self):
        @mcp_tool()
        async def handler():
            return get_correlation_id()

        assert asyncio.run(handler()).startswith("tool_")


class TestLoggingConfig:
    def test_structured_output_includes_context(self):
        stream = io.StringIO()
        configure_logging(level="DEBUG", format="structured", stream=stream)
        with sync_request_context(correlation_id="req_log", backend="local"):
            logger = logging.getLogger("taskgraph_mcp.core.dependencies")
            logger.info("Dependency repair finished")

        entry = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert entry["logger"] == "taskgraph_mcp.core.dependencies"
        assert entry["message"] == "Dependency repair finished"
        assert entry["correlation_id"] == "req_log"
        assert entry["backend"] == "local"

    def test_human_output(self):
        stream = io.StringIO()
        configure_logging(level=logging.INFO, format="human", stream=stream)
        logging.getLogger("taskgraph_mcp.core.selector").warning("nothing to do")
        assert "[WARNING] core.selector: nothing to do" in stream.getvalue()

    def test_reconfigure_replaces_handler(self):
        configure_logging(stream=io.StringIO())
        logger = configure_logging(stream=io.StringIO())
        assert len(logger.handlers) == 1

    def test_structured_formatter_serializes_extras(self):
        record = logging.LogRecord("taskgraph_mcp.x", logging.INFO, "f.py", 1, "msg", None, None)
        record.metric = {"name": "m"}
        record.path = object()
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["extra"]["metric"] == {"name": "m"}
        assert isinstance(entry["extra"]["path"], str)

    def test_human_formatter_without_timestamp(self):
        record = logging.LogRecord("other", logging.ERROR, "f.py", 1, "bad", None, None)
        text = HumanReadableFormatter(include_timestamp=False).format(record)
        assert text == "[ERROR] other: bad"


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger("taskgraph_mcp")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
