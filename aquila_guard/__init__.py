"""
AquilaGuard - Failure dispatch with environment-aware sanitization.

Uncaught failures are normalized into Failures and dispatched through an
ordered, loop-protected chain of handlers. What handlers render and log is
reduced to what the current security level (dev / staging / prod) allows.

Key concepts:
- Failure: normalized representation of a caught error
- FailureHandler: pluggable handler with sanitized accessors
- Dispatcher: handler pool, dispatch and shutdown phases, execution guards
- SecurityPolicy: per-level disclosure toggles
- HandlerConfig: reporting/display configuration with presets
"""

from .core import (
    ErrorLevel,
    ERROR_TYPES,
    TraceFrame,
    Failure,
    AquilaGuardError,
    ConvertedError,
    convert_error,
    describe_error,
    extract_class_name,
    level_for_warning,
)
from .security import (
    SecurityLevel,
    SecurityPolicy,
    SecurityContext,
    PathSanitizer,
    OutputSanitizer,
    StackTraceFilter,
    SecurityMonitor,
    resolve_security_level,
)
from .handlers import ExecutionState, FailureHandler
from .output import (
    OutputSink,
    StreamSink,
    BufferSink,
    FailureReport,
    TerminalRenderer,
    HtmlRenderer,
)
from .default_handlers import DefaultHandler
from .config import (
    HandlerConfig,
    RuntimeSettings,
    runtime_settings,
    load_environment,
)
from .hooks import RuntimeHooks
from .engine import Dispatcher, get_default_dispatcher
from .middleware import FailureMiddleware

__version__ = "0.1.0"

__all__ = [
    # Core
    "ErrorLevel",
    "ERROR_TYPES",
    "TraceFrame",
    "Failure",
    "AquilaGuardError",
    "ConvertedError",
    "convert_error",
    "describe_error",
    "extract_class_name",
    "level_for_warning",
    # Security
    "SecurityLevel",
    "SecurityPolicy",
    "SecurityContext",
    "PathSanitizer",
    "OutputSanitizer",
    "StackTraceFilter",
    "SecurityMonitor",
    "resolve_security_level",
    # Handlers
    "ExecutionState",
    "FailureHandler",
    "DefaultHandler",
    # Output
    "OutputSink",
    "StreamSink",
    "BufferSink",
    "FailureReport",
    "TerminalRenderer",
    "HtmlRenderer",
    # Config
    "HandlerConfig",
    "RuntimeSettings",
    "runtime_settings",
    "load_environment",
    # Engine
    "RuntimeHooks",
    "Dispatcher",
    "get_default_dispatcher",
    "FailureMiddleware",
]
