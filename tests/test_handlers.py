"""
Handler contract (handlers.py)

Tests FailureHandler identity, capabilities, sanitized accessors and
output helpers.
"""

import logging

import pytest

from aquila_guard.core import NO_MESSAGE, UNKNOWN_LINE, Failure, TraceFrame
from aquila_guard.handlers import ExecutionState, FailureHandler
from aquila_guard.output import BufferSink
from aquila_guard.security import SecurityLevel, SecurityPolicy


class SampleHandler(FailureHandler):

    def __init__(self, name="Sample", priority=0, level=None):
        self.level = level
        self.seen = []
        super().__init__(name, priority)

    def create_security_policy(self):
        if self.level is None:
            return super().create_security_policy()
        return SecurityPolicy.for_level(self.level, project_root="/var/www/app")

    def handle(self, failure):
        self.seen.append(failure)


def _failure():
    return Failure(
        message="password=hunter2 failed",
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
        error_type="ValueError",
        error=ValueError("password=hunter2 failed"),
    )


# ============================================================================
# Identity and capabilities
# ============================================================================

class TestFailureHandlerBasics:

    def test_abstract(self):
        with pytest.raises(TypeError):
            FailureHandler()

    def test_defaults(self):
        class Minimal(FailureHandler):
            def handle(self, failure):
                pass

        h = Minimal()
        assert h.name == "New Handler"
        assert h.priority == 0
        assert h.is_active() is True
        assert h.is_shutdown_only() is False
        assert h.state is ExecutionState.IDLE
        assert not h.is_executing
        assert not h.is_executed

    def test_name_trimmed(self):
        h = SampleHandler("  Mail  ")
        assert h.name == "Mail"

    def test_negative_priority_ignored(self):
        h = SampleHandler(priority=-1)
        assert h.priority == 0
        h.priority = 7
        h.priority = -5
        assert h.priority == 7

    def test_state_flags(self):
        h = SampleHandler()
        h.state = ExecutionState.EXECUTING
        assert h.is_executing
        h.state = ExecutionState.EXECUTED
        assert h.is_executed and not h.is_executing


# ============================================================================
# Accessors
# ============================================================================

class TestAccessorsWithoutFailure:

    def test_placeholders(self):
        h = SampleHandler(level=SecurityLevel.DEV)
        assert h.get_message() == NO_MESSAGE
        assert h.get_code() == "0"
        assert h.get_line() == UNKNOWN_LINE
        assert h.get_trace() == []
        assert h.get_raw_failure() is None


class TestAccessorsDevelopment:

    def test_full_detail(self):
        h = SampleHandler(level=SecurityLevel.DEV)
        failure = _failure()
        h.attach(failure)

        assert h.get_class_name() == "app.orders.OrderService"
        assert h.get_file() == "/var/www/app/src/orders.py"
        assert h.get_line() == "42"
        assert h.get_code() == "7"
        assert len(h.get_trace()) == 1
        assert h.get_raw_failure() is failure.error

    def test_message_floor_redaction(self):
        h = SampleHandler(level=SecurityLevel.DEV)
        h.attach(_failure())
        assert "hunter2" not in h.get_message()


class TestAccessorsStaging:

    def test_relative_paths(self):
        h = SampleHandler(level=SecurityLevel.STAGING)
        h.attach(_failure())

        assert h.get_file() == ".../src/orders.py"
        assert h.get_line() == "42"
        assert h.get_trace()[0].file == ".../src/api.py"


class TestAccessorsProduction:

    def test_reduced_detail(self):
        h = SampleHandler(level=SecurityLevel.PROD)
        h.attach(_failure())

        assert h.get_class_name() == "OrderService"
        assert h.get_file() == "orders.py"
        assert h.get_line() == "(Hidden)"
        assert h.get_trace() == []
        assert h.get_message() == "[REDACTED] failed"
        assert h.is_secure_environment()

    def test_raw_failure_blocked(self, caplog):
        h = SampleHandler(level=SecurityLevel.PROD)
        h.attach(_failure())

        with caplog.at_level(logging.WARNING, logger="aquila_guard.security"):
            assert h.get_raw_failure() is None

        violations = h.security.monitor.get_violations()
        assert len(violations) == 1
        assert violations[0]["handler"] == "Sample"
        assert "SECURITY_VIOLATION" in caplog.text

    def test_policy_from_environment(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        h = SampleHandler()
        assert h.security_policy.is_production


class TestPolicyLifetime:

    def test_environment_change_after_construction(self, monkeypatch):
        h = SampleHandler()
        monkeypatch.setenv("APP_ENV", "production")
        h.attach(_failure())

        assert h.security_policy.is_development
        assert h.get_line() == "42"
        assert h.get_file() == "/var/www/app/src/orders.py"

    def test_production_survives_environment_reset(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        h = SampleHandler()
        monkeypatch.delenv("APP_ENV")
        h.attach(_failure())

        assert h.security_policy.is_production
        assert h.get_line() == "(Hidden)"
        assert h.get_trace() == []

    def test_policy_reads_subclass_attributes(self):
        h = SampleHandler(level=SecurityLevel.STAGING)
        assert h.security_policy.is_staging
        assert h.security is h.security


# ============================================================================
# Output helpers
# ============================================================================

class TestSecureOutput:

    def test_markup(self):
        sink = BufferSink()
        h = SampleHandler(level=SecurityLevel.PROD)
        h.attach(_failure(), sink)

        h.secure_output("<div>x</div><script>y()</script>")
        assert sink.getvalue() == '<div class="error-container">x</div>\n'

    def test_plain_text(self):
        sink = BufferSink()
        h = SampleHandler(level=SecurityLevel.DEV)
        h.attach(_failure(), sink)

        h.secure_output("expected <int>, token=abc", markup=False)
        assert sink.getvalue() == "expected <int>, token=[REDACTED]\n"

    def test_secure_log(self, caplog):
        h = SampleHandler(level=SecurityLevel.PROD)

        with caplog.at_level(logging.ERROR, logger="aquila_guard.handlers"):
            h.secure_log("Order failed", {"password": "x", "order": 5})

        record = caplog.records[0]
        assert record.handler == "Sample"
        assert record.failure_context == {"[SENSITIVE_KEY]": "x", "order": 5}
        assert "[Sample] Order failed" in record.getMessage()


class TestCleanup:

    def test_cleanup_releases_failure(self):
        h = SampleHandler(level=SecurityLevel.DEV)
        h.attach(_failure(), BufferSink())
        h.state = ExecutionState.EXECUTED

        h.cleanup()

        assert h.state is ExecutionState.IDLE
        assert h.get_message() == NO_MESSAGE
