from __future__ import annotations

import logging

from quotebook.core import telemetry
from quotebook.core.config import Settings


def test_parse_headers_skips_malformed_items() -> None:
    parsed = telemetry._parse_headers("authorization=Bearer abc, broken , x-team = core ,=empty")

    assert parsed == {"authorization": "Bearer abc", "x-team": "core"}


def test_setup_telemetry_is_a_no_op_when_disabled() -> None:
    runtime = telemetry.setup_telemetry(Settings(otel_enabled=False))

    assert runtime.enabled is False
    assert runtime.provider is None
    telemetry.shutdown_telemetry(runtime)


def test_log_records_carry_trace_identifiers() -> None:
    telemetry.configure_logging(Settings(log_level="debug"))

    record = logging.getLogRecordFactory()("quotebook", logging.INFO, __file__, 1, "message", None, None)

    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16
    assert logging.getLogger("quotebook").level == logging.DEBUG


def test_resource_identifies_the_configured_backend() -> None:
    resource = telemetry.build_resource(Settings(backend="document", environment="staging"))

    assert resource.attributes["service.name"] == "quotebook"
    assert resource.attributes["deployment.environment"] == "staging"
    assert resource.attributes["quotebook.backend"] == "document"
