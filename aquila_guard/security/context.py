"""
AquilaGuard Security - Security context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .monitor import SecurityMonitor
from .output import OutputSanitizer
from .paths import PathSanitizer
from .policy import SecurityPolicy
from .traces import StackTraceFilter


@dataclass
class SecurityContext:
    """
    One policy bundled with the collaborators that enforce it.

    Handlers receive a SecurityContext instead of inheriting sanitization
    behaviour.
    """

    policy: SecurityPolicy
    paths: PathSanitizer = field(init=False)
    output: OutputSanitizer = field(init=False)
    traces: StackTraceFilter = field(init=False)
    monitor: SecurityMonitor = field(init=False)

    def __post_init__(self):
        self.paths = PathSanitizer(self.policy)
        self.output = OutputSanitizer(self.policy)
        self.traces = StackTraceFilter(self.policy, self.paths)
        self.monitor = SecurityMonitor(self.policy)

    @classmethod
    def create(
        cls,
        policy: Optional[SecurityPolicy] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> SecurityContext:
        """
        Build a context for ``policy`` (resolved from the environment if None).
        """
        context = cls(policy if policy is not None else SecurityPolicy.resolve())
        if logger is not None:
            context.monitor.logger = logger
        return context
