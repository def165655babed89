"""Unit tests for database URL handling and request-scoped logging."""

import logging
import ssl

from app.core.logging import CorrelationIdFilter, build_handler, correlation_id_var
from app.database import asyncpg_url


def test_plain_url_switches_driver():
    url, connect_args = asyncpg_url("postgresql://u:p@db:5432/billing")
    assert url == "postgresql+asyncpg://u:p@db:5432/billing"
    assert connect_args == {}


def test_required_sslmode_becomes_connect_arg():
    url, connect_args = asyncpg_url("postgresql://u:p@db/billing?sslmode=require&application_name=billing")
    assert url == "postgresql+asyncpg://u:p@db/billing?application_name=billing"
    assert isinstance(connect_args["ssl"], ssl.SSLContext)


def test_disabled_sslmode_is_dropped():
    url, connect_args = asyncpg_url("postgresql://u:p@db/billing?sslmode=disable")
    assert url == "postgresql+asyncpg://u:p@db/billing"
    assert connect_args == {}


def _record() -> logging.LogRecord:
    return logging.LogRecord("app.services", logging.INFO, __file__, 1, "hello", None, None)


def test_filter_uses_current_correlation_id():
    token = correlation_id_var.set("req-123")
    try:
        record = _record()
        CorrelationIdFilter().filter(record)
    finally:
        correlation_id_var.reset(token)
    assert record.correlation_id == "req-123"


def test_filter_outside_request():
    record = _record()
    CorrelationIdFilter().filter(record)
    assert record.correlation_id == "-"


def test_json_handler_output_includes_service_fields():
    handler = build_handler("json")
    record = _record()
    handler.filter(record)
    output = handler.format(record)
    assert '"correlation_id": "-"' in output
    assert '"service": "School Billing Engine"' in output
