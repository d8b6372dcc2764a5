"""
AquilaGuard Security - Environment-sensitive disclosure control.

- SecurityPolicy: per-level disclosure toggles (dev / staging / prod)
- PathSanitizer: file path and class name reduction
- OutputSanitizer: credential redaction, markup filtering, context sanitizing
- StackTraceFilter: depth-bounded, path-filtered frame lists
- SecurityMonitor: violation and execution records
- SecurityContext: all of the above for one policy
"""

from .policy import (
    SecurityLevel,
    SecurityPolicy,
    detect_project_root,
    resolve_security_level,
)
from .paths import PathSanitizer
from .output import OutputSanitizer
from .traces import StackTraceFilter
from .monitor import (
    SecurityMonitor,
    get_request_context,
    reset_request_context,
    set_request_context,
)
from .context import SecurityContext

__all__ = [
    "SecurityLevel",
    "SecurityPolicy",
    "detect_project_root",
    "resolve_security_level",
    "PathSanitizer",
    "OutputSanitizer",
    "StackTraceFilter",
    "SecurityMonitor",
    "get_request_context",
    "reset_request_context",
    "set_request_context",
    "SecurityContext",
]
