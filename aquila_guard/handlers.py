"""
AquilaGuard - Failure handlers.

Defines the handler contract used by the Dispatcher.

Handlers never read a failure directly: the accessors below return values
that have been passed through the handler's SecurityContext, so what a
handler renders or logs is already reduced to what the current security
level allows.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Mapping, Optional

from .core import NO_MESSAGE, UNKNOWN_CLASS, UNKNOWN_LINE, Failure, TraceFrame
from .output import OutputSink, StreamSink
from .security import SecurityContext, SecurityPolicy
from .security.traces import HIDDEN


DEFAULT_HANDLER_NAME = "New Handler"


class ExecutionState(str, Enum):
    """Execution lifecycle of a handler."""
    IDLE = "idle"
    EXECUTING = "executing"
    EXECUTED = "executed"


class FailureHandler(ABC):
    """
    Abstract base class for failure handlers.

    Subclasses implement :meth:`handle` and may override :meth:`is_active`,
    :meth:`is_shutdown_only` and :meth:`create_security_policy`.

    The security context is built once, at the end of ``__init__``. A
    subclass whose :meth:`create_security_policy` reads its own attributes
    must set them before calling ``super().__init__()``.

    Example:
        ```python
        class MailHandler(FailureHandler):
            def __init__(self):
                super().__init__("Mail", priority=10)

            def handle(self, failure: Failure) -> None:
                send_mail(self.get_message(), self.get_trace())
        ```
    """

    def __init__(self, name: str = DEFAULT_HANDLER_NAME, priority: int = 0):
        self._name = DEFAULT_HANDLER_NAME
        self._priority = 0
        self.name = name
        self.priority = priority

        self.state = ExecutionState.IDLE
        self.logger = logging.getLogger("aquila_guard.handlers")

        self._failure: Optional[Failure] = None
        self._output: Optional[OutputSink] = None
        self._security = SecurityContext.create(self.create_security_policy())

    # ========================================================================
    # Identity
    # ========================================================================

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str):
        self._name = value.strip()

    @property
    def priority(self) -> int:
        """Execution order; higher runs first. Negative values are ignored."""
        return self._priority

    @priority.setter
    def priority(self, value: int):
        if value >= 0:
            self._priority = value

    @property
    def is_executing(self) -> bool:
        return self.state is ExecutionState.EXECUTING

    @property
    def is_executed(self) -> bool:
        return self.state is ExecutionState.EXECUTED

    # ========================================================================
    # Capabilities
    # ========================================================================

    @abstractmethod
    def handle(self, failure: Failure) -> None:
        """
        Handle a failure.

        Args:
            failure: The failure being dispatched. Prefer the sanitized
                accessors (``get_message()``, ``get_trace()``, ...) over
                reading it directly.
        """
        pass

    def is_active(self) -> bool:
        """
        Check if the handler takes part in dispatch.

        Evaluated again on every dispatch.
        """
        return True

    def is_shutdown_only(self) -> bool:
        """
        Check if the handler only runs in the shutdown phase.

        Shutdown-only handlers never run during normal dispatch.
        """
        return False

    # ========================================================================
    # Security
    # ========================================================================

    def create_security_policy(self) -> SecurityPolicy:
        """
        Build the policy this handler enforces.

        Override to pin a level regardless of the environment.
        """
        return SecurityPolicy.resolve()

    @property
    def security(self) -> SecurityContext:
        return self._security

    @property
    def security_policy(self) -> SecurityPolicy:
        return self.security.policy

    def is_secure_environment(self) -> bool:
        return self.security_policy.is_production

    # ========================================================================
    # Dispatcher hooks
    # ========================================================================

    def attach(self, failure: Failure, output: Optional[OutputSink] = None) -> None:
        """Bind the failure (and optionally the output sink) before execution."""
        self._failure = failure
        if output is not None:
            self._output = output

    def cleanup(self) -> None:
        """Release the attached failure and reset the execution state."""
        self._failure = None
        self._output = None
        self.state = ExecutionState.IDLE
        self._security.monitor.clear()

    @property
    def output(self) -> OutputSink:
        if self._output is None:
            self._output = StreamSink()
        return self._output

    # ========================================================================
    # Sanitized accessors
    # ========================================================================

    def get_class_name(self) -> str:
        if self._failure is None:
            return UNKNOWN_CLASS
        return self.security.paths.sanitize_class_name(self._failure.origin.class_name)

    def get_file(self) -> str:
        if self._failure is None:
            return ""
        return self.security.paths.sanitize_path(self._failure.origin.file)

    def get_line(self) -> str:
        if self._failure is None:
            return UNKNOWN_LINE
        if not self.security_policy.show_line_numbers:
            return HIDDEN
        return self._failure.origin.line

    def get_message(self) -> str:
        if self._failure is None:
            return NO_MESSAGE
        return self.security.output.sanitize_message(self._failure.message)

    def get_code(self) -> str:
        if self._failure is None:
            return "0"
        return self._failure.code

    def get_trace(self) -> list[TraceFrame]:
        if self._failure is None:
            return []
        return self.security.traces.filter_trace(self._failure.frames)

    def get_raw_failure(self) -> Optional[BaseException]:
        """
        Return the raw exception if the policy allows it.

        A blocked access is recorded as a security violation and returns
        None.
        """
        if not self.security_policy.allow_raw_failure_access:
            self.security.monitor.record_violation("raw failure access blocked", self)
            return None
        if self._failure is None:
            return None
        return self._failure.error

    # ========================================================================
    # Output helpers
    # ========================================================================

    def secure_output(self, text: str, markup: bool = True) -> None:
        """
        Write sanitized text to the bound output sink.

        Lines are not truncated; the message accessors already apply the
        policy length limit.

        Args:
            text: Text to write
            markup: Treat ``text`` as HTML (tag allowlist and CSP rules
                apply); plain text only gets message redaction
        """
        sanitizer = self.security.output
        if markup:
            sanitized = sanitizer.sanitize(text, truncate=False)
        else:
            sanitized = sanitizer.sanitize_message(text, truncate=False)
        self.output.write(sanitized)

    def secure_log(
        self,
        message: str,
        context: Optional[Mapping[str, Any]] = None,
        level: int = logging.ERROR,
    ) -> None:
        """Log a message with a sanitized context."""
        sanitized = self.security.output.sanitize_context(context or {})
        self.logger.log(
            level,
            f"[{self.name}] {self.security.output.sanitize_message(message)}",
            extra={"handler": self.name, "failure_context": sanitized},
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} priority={self.priority}>"
