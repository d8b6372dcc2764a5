"""
AquilaGuard - Output sinks and failure renderers.

Sinks receive already-sanitized lines:
- StreamSink: terminal / stream output through click
- BufferSink: in-memory buffer (ASGI responses, tests)

Renderers turn a FailureReport into lines:
- TerminalRenderer: click styled text (plain when color is off)
- HtmlRenderer: jinja2 template with autoescaping
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import IO, Any, Optional

import click
from jinja2 import DictLoader, Environment, select_autoescape


# ============================================================================
# Sinks
# ============================================================================

class OutputSink(ABC):
    """Destination for rendered failure output."""

    @abstractmethod
    def write(self, text: str) -> None:
        """Write one line of output."""
        pass

    def clear(self) -> bool:
        """
        Discard output that has not been delivered yet.

        Returns:
            True if the sink supports clearing
        """
        return False


class StreamSink(OutputSink):
    """Writes lines through ``click.echo`` (stdout, or stderr with ``err``)."""

    def __init__(self, *, err: bool = False, file: Optional[IO[str]] = None, color: Optional[bool] = None):
        self.err = err
        self.file = file
        self.color = color

    def write(self, text: str) -> None:
        click.echo(text, file=self.file, err=self.err, color=self.color)


class BufferSink(OutputSink):
    """Accumulates lines in memory."""

    def __init__(self):
        self._parts: list[str] = []

    def write(self, text: str) -> None:
        self._parts.append(text + "\n")

    def clear(self) -> bool:
        self._parts.clear()
        return True

    def getvalue(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return len(self._parts)


# ============================================================================
# Report
# ============================================================================

@dataclass
class FailureReport:
    """
    Stable structure rendered for every security level.

    Fields left as ``None`` are not rendered.
    """

    location: str
    message_label: Optional[str] = None
    message: Optional[str] = None
    code: Optional[str] = None
    trace: list[str] = field(default_factory=list)
    trace_note: Optional[str] = None
    help: str = ""
    timestamp: str = ""
    title: str = "Application Error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "location": self.location,
            "message_label": self.message_label,
            "message": self.message,
            "code": self.code,
            "trace": list(self.trace),
            "trace_note": self.trace_note,
            "help": self.help,
            "timestamp": self.timestamp,
        }


# ============================================================================
# Terminal
# ============================================================================

class TerminalRenderer:
    """Renders a report as terminal lines, ANSI-styled when ``color`` is on."""

    def __init__(self, color: bool = True):
        self.color = color

    def _style(self, text: str, **styles: Any) -> str:
        if not self.color:
            return text
        return click.style(text, **styles)

    def render(self, report: FailureReport) -> list[str]:
        lines = [
            self._style(report.title.upper(), fg="red", bold=True),
            f"{self._style('Location:', bold=True)} {report.location}",
        ]

        if report.message is not None:
            lines.append(f"{self._style(report.message_label + ':', bold=True)} {report.message}")

        if report.code is not None:
            lines.append(f"{self._style('Code:', bold=True)} {report.code}")

        if report.trace:
            lines.append(self._style("Stack Trace:", fg="yellow", bold=True))
            lines.extend(
                self._style(f"#{index} {entry}", dim=True)
                for index, entry in enumerate(report.trace)
            )
        elif report.trace_note:
            lines.append(self._style(report.trace_note, dim=True))

        if report.help:
            lines.append(self._style(report.help, fg="cyan"))
        if report.timestamp:
            lines.append(self._style(f"Time: {report.timestamp}", dim=True))

        return lines


# ============================================================================
# HTML
# ============================================================================

CONTAINER_STYLE = (
    "border: 1px solid #dc3545; background: #f8d7da; color: #721c24; "
    "padding: 15px; margin: 10px 0; border-radius: 4px; font-family: monospace;"
)
TRACE_STYLE = "background: #f8f9fa; padding: 10px; border-radius: 4px; overflow-x: auto;"

FAILURE_TEMPLATE = """\
{% if inline_styles %}<div style="{{ container_style }}">{% else %}<div class="error-container">{% endif %}
<h3 class="error-title">{{ report.title }}</h3>
<p><strong>Location:</strong> {{ report.location }}</p>
{% if report.message is not none %}<p><strong>{{ report.message_label }}:</strong> {{ report.message }}</p>
{% endif %}{% if report.code is not none %}<p><strong>Code:</strong> {{ report.code }}</p>
{% endif %}{% if report.trace %}<details class="error-trace">
<summary><strong>Stack Trace</strong></summary>
{% if inline_styles %}<pre style="{{ trace_style }}">{% else %}<pre class="error-trace-content">{% endif %}
{% for entry in report.trace %}#{{ loop.index0 }} {{ entry }}
{% endfor %}</pre>
</details>
{% elif report.trace_note %}<p><em>{{ report.trace_note }}</em></p>
{% endif %}<p class="error-help"><small>{{ report.help }}</small></p>
<p class="error-timestamp"><small>Time: {{ report.timestamp }}</small></p>
</div>
"""


class HtmlRenderer:
    """
    Renders a report as HTML lines.

    Inline styles are only emitted when ``allow_inline_styles`` is set;
    otherwise the markup relies on CSS classes.
    """

    def __init__(self, allow_inline_styles: bool = False):
        self.allow_inline_styles = allow_inline_styles
        self.env = Environment(
            loader=DictLoader({"failure.html": FAILURE_TEMPLATE}),
            autoescape=select_autoescape(
                enabled_extensions=["html", "htm", "xml"],
                default_for_string=True,
            ),
            keep_trailing_newline=True,
        )

    def render(self, report: FailureReport) -> list[str]:
        template = self.env.get_template("failure.html")
        html = template.render(
            report=report,
            inline_styles=self.allow_inline_styles,
            container_style=CONTAINER_STYLE,
            trace_style=TRACE_STYLE,
        )
        return [line for line in html.splitlines() if line.strip()]
