"""
DefaultHandler (default_handlers.py)

Tests the level-dependent report, the three output formats and the
failure log entry.
"""

import logging

import pytest

from aquila_guard.core import Failure, TraceFrame
from aquila_guard.default_handlers import (
    DEVELOPMENT_HELP,
    GENERIC_DETAILS,
    NO_TRACE,
    SUPPORT_HELP,
    DefaultHandler,
)
from aquila_guard.output import BufferSink


def _failure(message="Order 5 not found"):
    return Failure(
        message=message,
        code="7",
        origin=TraceFrame(
            file="/var/www/app/src/orders.py",
            line="42",
            class_name="app.orders.OrderService",
            method="place",
        ),
        frames=(
            TraceFrame(file="/var/www/app/src/api.py", line="9", class_name="Api", method="post"),
        ),
        error_type="LookupError",
        error=LookupError(message),
    )


def _run(output_format="text", failure=None):
    sink = BufferSink()
    handler = DefaultHandler(output_format)
    failure = failure if failure is not None else _failure()
    handler.attach(failure, sink)
    handler.handle(failure)
    return handler, sink.getvalue().splitlines()


@pytest.fixture
def production(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")


@pytest.fixture
def staging(monkeypatch):
    monkeypatch.setenv("APP_ENV", "staging")


# ============================================================================
# Construction
# ============================================================================

class TestDefaultHandlerBasics:

    def test_identity(self):
        handler = DefaultHandler()
        assert handler.name == "Default"
        assert handler.priority == 0
        assert handler.is_active()
        assert not handler.is_shutdown_only()
        assert handler.output_format == "terminal"

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown output format"):
            DefaultHandler("pdf")


# ============================================================================
# Text output
# ============================================================================

class TestTextDevelopment:

    def test_full_report(self):
        _, lines = _run()

        assert lines[0] == "APPLICATION ERROR"
        assert lines[1] == "Location: app.orders.OrderService line 42"
        assert lines[2] == "Message: Order 5 not found"
        assert lines[3] == "Code: 7"
        assert lines[4] == "Stack Trace:"
        assert lines[5] == "#0 At class Api line 9"
        assert lines[6] == DEVELOPMENT_HELP
        assert lines[7].startswith("Time: ")

    def test_empty_failure(self):
        _, lines = _run(failure=Failure.empty())

        assert not any(line.startswith("Message:") for line in lines)
        assert not any(line.startswith("Code:") for line in lines)
        assert NO_TRACE in lines

    def test_credentials_redacted(self):
        _, lines = _run(failure=_failure("login with password=hunter2"))
        assert "Message: login with password=[REDACTED]" in lines


class TestTextStaging:

    def test_report_keeps_detail(self, staging):
        handler, lines = _run()

        assert handler.security_policy.is_staging
        assert "Message: Order 5 not found" in lines
        assert "Stack Trace:" in lines
        assert DEVELOPMENT_HELP in lines

    def test_long_message_truncated_once(self, staging):
        _, lines = _run(failure=_failure("b" * 600))

        assert lines[2] == "Message: " + "b" * 500 + "... [TRUNCATED]"
        assert "\n".join(lines).count("[TRUNCATED]") == 1


class TestTextProduction:

    def test_generic_report(self, production):
        handler, lines = _run()

        assert handler.is_secure_environment()
        assert lines[1] == "Location: Application code"
        assert lines[2] == f"Details: {GENERIC_DETAILS}"
        assert lines[3] == "Code: 7"
        assert lines[4] == SUPPORT_HELP
        assert "Stack Trace:" not in lines
        assert NO_TRACE not in lines

    def test_hides_internals(self, production):
        _, lines = _run()
        output = "\n".join(lines)

        assert "OrderService" not in output
        assert "Order 5 not found" not in output
        assert "/var/www" not in output


# ============================================================================
# Terminal and HTML output
# ============================================================================

class TestTerminalOutput:

    def test_styled(self):
        _, lines = _run("terminal")
        assert "\x1b[" in lines[0]
        assert "APPLICATION ERROR" in lines[0]


class TestHtmlOutput:

    def test_development(self):
        _, lines = _run("html")
        output = "\n".join(lines)

        assert '<h3 class="error-title">Application Error</h3>' in output
        assert "<p><strong>Message:</strong> Order 5 not found</p>" in output
        assert "#0 At class Api line 9" in output
        assert 'style="' in lines[0]

    def test_production_uses_classes(self, production):
        _, lines = _run("html")
        output = "\n".join(lines)

        assert lines[0] == '<div class="error-container">'
        assert 'style="' not in output
        assert f"<p><strong>Details:</strong> {GENERIC_DETAILS}</p>" in output
        assert "error-trace" not in output

    def test_message_escaped(self):
        _, lines = _run("html", _failure("<script>alert(1)</script>"))
        output = "\n".join(lines)

        assert "<script>" not in output
        assert "&lt;script&gt;" in output

    def test_long_message_keeps_markup(self, staging):
        _, lines = _run("html", _failure("b" * 600))
        output = "\n".join(lines)

        assert "b" * 500 + "... [TRUNCATED]</p>" in output
        assert output.count("[TRUNCATED]") == 1
        assert output.rstrip().endswith("</div>")


# ============================================================================
# Logging
# ============================================================================

class TestFailureLog:

    def test_development_context(self, caplog):
        with caplog.at_level(logging.ERROR, logger="aquila_guard.handlers"):
            _run()

        record = caplog.records[-1]
        assert "[Default] Failure handled by DefaultHandler" in record.getMessage()
        context = record.failure_context
        assert context["class"] == "app.orders.OrderService"
        assert context["line"] == "42"
        assert context["environment"] == "dev"
        assert context["user_agent"] == "Unknown"
        assert context["trace"] == ["At class Api line 9"]

    def test_production_context(self, production, caplog):
        with caplog.at_level(logging.ERROR, logger="aquila_guard.handlers"):
            _run()

        context = caplog.records[-1].failure_context
        assert context["class"] == "OrderService"
        assert context["line"] == "(Hidden)"
        assert context["environment"] == "prod"
        assert "trace" not in context
