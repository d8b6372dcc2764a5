"""
AquilaGuard Security - Violation and execution monitoring.

Violations are kept in memory and, when the policy asks for it, logged as a
JSON document on the ``aquila_guard.security`` logger. Request details
(client address, user agent, URI) come from the request context set by
the ASGI middleware.
"""

from __future__ import annotations

import json
import logging
import resource
import sys
import time
import traceback
from contextvars import ContextVar, Token
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from .policy import SecurityPolicy

if TYPE_CHECKING:
    from ..handlers import FailureHandler


UNKNOWN = "Unknown"

_current_request: ContextVar[Optional[dict[str, str]]] = ContextVar(
    "aquila_guard_request", default=None
)


def set_request_context(
    *,
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    request_uri: Optional[str] = None,
) -> Token:
    """
    Set request details for the current task.

    Returns:
        Token for :func:`reset_request_context`
    """
    return _current_request.set({
        "ip": client_ip or UNKNOWN,
        "user_agent": user_agent or UNKNOWN,
        "request_uri": request_uri or UNKNOWN,
    })


def reset_request_context(token: Token) -> None:
    _current_request.reset(token)


def get_request_context() -> dict[str, str]:
    request = _current_request.get()
    if request is None:
        return {"ip": UNKNOWN, "user_agent": UNKNOWN, "request_uri": UNKNOWN}
    return dict(request)


def max_rss() -> int:
    """Peak resident set size of the process in bytes."""
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # macOS reports bytes, Linux kilobytes
    return usage if sys.platform == "darwin" else usage * 1024


class SecurityMonitor:
    """
    Records security violations and handler executions.
    """

    def __init__(
        self,
        policy: SecurityPolicy,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self.policy = policy
        self.logger = logger or logging.getLogger("aquila_guard.security")
        self._violations: list[dict[str, Any]] = []
        self._executions: list[dict[str, Any]] = []

    def record_violation(self, violation: str, handler: FailureHandler) -> None:
        """
        Record a blocked operation.

        Args:
            violation: Short description of what was attempted
            handler: Handler that attempted it
        """
        self._violations.append({
            "violation": violation,
            "handler": handler.name,
            "timestamp": time.time(),
            "trace": traceback.format_stack(limit=5)[:-1],
        })

        if self.policy.log_policy_violations:
            self._log_violation(violation, handler)

    def record_execution(self, handler: FailureHandler) -> None:
        self._executions.append({
            "handler": handler.name,
            "timestamp": time.time(),
            "max_rss": max_rss(),
        })

    def get_violations(self) -> list[dict[str, Any]]:
        return list(self._violations)

    def get_execution_stats(self) -> list[dict[str, Any]]:
        return list(self._executions)

    def clear(self) -> None:
        self._violations.clear()
        self._executions.clear()

    def _log_violation(self, violation: str, handler: FailureHandler) -> None:
        entry = {
            "type": "SECURITY_VIOLATION",
            "violation": violation,
            "handler": handler.name,
            "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            **get_request_context(),
        }
        self.logger.warning(
            f"Security violation: {json.dumps(entry)}",
            extra={"security_violation": entry},
        )
