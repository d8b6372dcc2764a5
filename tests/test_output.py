"""
Output sinks and renderers (output.py)
"""

import io

import pytest

from aquila_guard.output import (
    BufferSink,
    FailureReport,
    HtmlRenderer,
    OutputSink,
    StreamSink,
    TerminalRenderer,
)


def _report(**overrides):
    values = dict(
        location="Router line 30",
        message_label="Message",
        message="Route not found",
        code="404",
        trace=["At class Router line 30", "At class App line 12"],
        help="Check the route table.",
        timestamp="2026-01-02 03:04:05",
    )
    values.update(overrides)
    return FailureReport(**values)


# ============================================================================
# Sinks
# ============================================================================

class TestSinks:

    def test_sink_is_abstract(self):
        with pytest.raises(TypeError):
            OutputSink()

    def test_buffer_sink(self):
        sink = BufferSink()
        sink.write("one")
        sink.write("two")

        assert sink.getvalue() == "one\ntwo\n"
        assert len(sink) == 2

    def test_buffer_clear(self):
        sink = BufferSink()
        sink.write("one")

        assert sink.clear() is True
        assert sink.getvalue() == ""

    def test_stream_sink(self):
        stream = io.StringIO()
        sink = StreamSink(file=stream)
        sink.write("hello")

        assert stream.getvalue() == "hello\n"
        assert sink.clear() is False

    def test_stream_sink_strips_color_for_plain_streams(self):
        stream = io.StringIO()
        StreamSink(file=stream).write("\x1b[31mred\x1b[0m")
        assert stream.getvalue() == "red\n"


# ============================================================================
# Report
# ============================================================================

class TestFailureReport:

    def test_defaults(self):
        report = FailureReport(location="Application code")
        assert report.title == "Application Error"
        assert report.message is None
        assert report.trace == []

    def test_to_dict(self):
        data = _report().to_dict()
        assert data["location"] == "Router line 30"
        assert data["trace"] == ["At class Router line 30", "At class App line 12"]
        assert data["trace_note"] is None


# ============================================================================
# Terminal
# ============================================================================

class TestTerminalRenderer:

    def test_plain(self):
        lines = TerminalRenderer(color=False).render(_report())

        assert lines == [
            "APPLICATION ERROR",
            "Location: Router line 30",
            "Message: Route not found",
            "Code: 404",
            "Stack Trace:",
            "#0 At class Router line 30",
            "#1 At class App line 12",
            "Check the route table.",
            "Time: 2026-01-02 03:04:05",
        ]

    def test_optional_fields_skipped(self):
        report = FailureReport(location="Application code", trace_note="No stack trace available")
        lines = TerminalRenderer(color=False).render(report)

        assert lines == [
            "APPLICATION ERROR",
            "Location: Application code",
            "No stack trace available",
        ]

    def test_color(self):
        lines = TerminalRenderer(color=True).render(_report())
        assert lines[0].startswith("\x1b[")
        assert lines[0].endswith("\x1b[0m")


# ============================================================================
# HTML
# ============================================================================

class TestHtmlRenderer:

    def test_structure(self):
        lines = HtmlRenderer().render(_report())
        html = "\n".join(lines)

        assert lines[0] == '<div class="error-container">'
        assert lines[-1] == "</div>"
        assert '<h3 class="error-title">Application Error</h3>' in html
        assert "<p><strong>Location:</strong> Router line 30</p>" in html
        assert "<p><strong>Code:</strong> 404</p>" in html
        assert '<pre class="error-trace-content">' in html
        assert "#1 At class App line 12" in html
        assert '<p class="error-help"><small>Check the route table.</small></p>' in html

    def test_no_blank_lines(self):
        lines = HtmlRenderer().render(_report(code=None, message=None))
        assert all(line.strip() for line in lines)
        assert not any("Code:" in line for line in lines)

    def test_trace_note(self):
        lines = HtmlRenderer().render(_report(trace=[], trace_note="No stack trace available"))
        assert "<p><em>No stack trace available</em></p>" in lines

    def test_inline_styles(self):
        lines = HtmlRenderer(allow_inline_styles=True).render(_report())
        assert lines[0].startswith('<div style="')
        assert any(line.startswith('<pre style="') for line in lines)

    def test_autoescape(self):
        lines = HtmlRenderer().render(_report(location='<img src=x onerror="alert(1)">'))
        html = "\n".join(lines)

        assert "<img" not in html
        assert "&lt;img" in html
