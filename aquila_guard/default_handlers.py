"""
AquilaGuard - Default handler.

The DefaultHandler is seeded into every fresh or reset Dispatcher. Its
output adapts to the security level:
- Development: location, message, code and the stack trace
- Staging: sanitized paths and messages, bounded trace
- Production: generic details only, no trace
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from .core import NO_MESSAGE, Failure
from .handlers import FailureHandler
from .output import FailureReport, HtmlRenderer, TerminalRenderer
from .security import get_request_context


OUTPUT_FORMATS = ("terminal", "text", "html")

GENERIC_DETAILS = "An error occurred during processing."
NO_TRACE = "No stack trace available"
SUPPORT_HELP = "If this problem persists, please contact support with the error code above."
DEVELOPMENT_HELP = "This detailed error information is shown because you are in development mode."


class DefaultHandler(FailureHandler):
    """
    Render the failure and log it.

    Always active, never shutdown-only, priority 0.

    Usage:
        ```python
        dispatcher = Dispatcher()          # already holds a DefaultHandler
        dispatcher.register(DefaultHandler(output_format="html"))
        ```
    """

    def __init__(self, output_format: str = "terminal"):
        """
        Args:
            output_format: ``"terminal"`` (styled), ``"text"`` or ``"html"``
        """
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(
                f"Unknown output format {output_format!r}; "
                f"expected one of {', '.join(OUTPUT_FORMATS)}"
            )
        super().__init__("Default", priority=0)
        self.output_format = output_format

    def handle(self, failure: Failure) -> None:
        report = self.build_report()
        markup = self.output_format == "html"

        for line in self._render(report):
            self.secure_output(line, markup=markup)

        self._log_failure()

    def build_report(self) -> FailureReport:
        """Collect the sanitized report for the attached failure."""
        secure = self.is_secure_environment()
        policy = self.security_policy

        if policy.show_full_paths or not secure:
            location = f"{self.get_class_name()} line {self.get_line()}"
        else:
            location = "Application code"

        report = FailureReport(
            location=location,
            help=SUPPORT_HELP if secure else DEVELOPMENT_HELP,
            timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        )

        message = self.get_message()
        if message and message != NO_MESSAGE:
            if secure:
                report.message_label, report.message = "Details", GENERIC_DETAILS
            else:
                report.message_label, report.message = "Message", message

        code = self.get_code()
        if code != "0":
            report.code = code

        trace = self.get_trace()
        if not secure:
            if trace:
                report.trace = [str(frame) for frame in trace]
            else:
                report.trace_note = NO_TRACE

        return report

    def _render(self, report: FailureReport) -> list[str]:
        if self.output_format == "html":
            renderer = HtmlRenderer(self.security_policy.allow_inline_styles)
        else:
            renderer = TerminalRenderer(color=self.output_format == "terminal")
        return renderer.render(report)

    def _log_failure(self) -> None:
        request = get_request_context()
        context: dict[str, Any] = {
            "class": self.get_class_name(),
            "line": self.get_line(),
            "code": self.get_code(),
            "environment": self.security_policy.level.value,
            "user_agent": request["user_agent"],
            "request_uri": request["request_uri"],
        }

        if self.security_policy.is_development:
            context["trace"] = [str(frame) for frame in self.get_trace()]

        self.secure_log("Failure handled by DefaultHandler", context)
