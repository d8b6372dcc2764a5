"""
AquilaGuard Security - Stack trace filtering.
"""

from __future__ import annotations

import re
from typing import Iterable

from ..core import TraceFrame
from .paths import PathSanitizer
from .policy import SecurityPolicy


HIDDEN = "(Hidden)"
SENSITIVE_METHOD = "[SENSITIVE_METHOD]"

# Dependency frames are only dropped in production.
DEPENDENCY_PATH_PATTERNS = [
    re.compile(r"/vendor/"),
    re.compile(r"/site-packages/"),
    re.compile(r"/dist-packages/"),
    re.compile(r"/node_modules/"),
]

# Dropped at every level.
HIDDEN_PATH_PATTERNS = [
    re.compile(r"/\.env"),
    re.compile(r"/config/database"),
    re.compile(r"/\.git/"),
    re.compile(r"/storage/"),
    re.compile(r"/cache/"),
    re.compile(r"/__pycache__/"),
    re.compile(r"/tmp/"),
    re.compile(r"/temp/"),
]

SENSITIVE_METHODS = ("password", "auth", "login", "token", "secret", "credential")


class StackTraceFilter:
    """
    Filters and sanitizes stack traces according to a security policy.

    Iteration stops as soon as ``max_trace_depth`` frames have been kept, so
    the cost is bounded by the depth rather than the length of the stack.
    """

    def __init__(self, policy: SecurityPolicy, path_sanitizer: PathSanitizer):
        self.policy = policy
        self.path_sanitizer = path_sanitizer

    def filter_trace(self, frames: Iterable[TraceFrame]) -> list[TraceFrame]:
        if not self.policy.show_stack_trace:
            return []

        max_depth = self.policy.max_trace_depth
        if max_depth <= 0:
            return []

        filtered: list[TraceFrame] = []
        for frame in frames:
            if len(filtered) >= max_depth:
                break
            if self._should_include(frame):
                filtered.append(self._sanitize_frame(frame))

        return filtered

    def _should_include(self, frame: TraceFrame) -> bool:
        path = frame.file.replace("\\", "/")

        if self.policy.is_production:
            if any(pattern.search(path) for pattern in DEPENDENCY_PATH_PATTERNS):
                return False

        return not any(pattern.search(path) for pattern in HIDDEN_PATH_PATTERNS)

    def _sanitize_frame(self, frame: TraceFrame) -> TraceFrame:
        return TraceFrame(
            file=self.path_sanitizer.sanitize_path(frame.file),
            line=frame.line if self.policy.show_line_numbers else HIDDEN,
            class_name=self.path_sanitizer.sanitize_class_name(frame.class_name),
            method=self._sanitize_method_name(frame.method),
        )

    def _sanitize_method_name(self, method: str) -> str:
        if self.policy.is_production:
            lowered = method.lower()
            if any(sensitive in lowered for sensitive in SENSITIVE_METHODS):
                return SENSITIVE_METHOD
        return method
