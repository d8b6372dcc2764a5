"""
AquilaGuard - Dispatcher.

The Dispatcher is the runtime failure processor that:
1. Normalizes raw exceptions into Failures
2. Keeps the handler pool (unique names, priority order)
3. Runs active handlers for every dispatched failure
4. Runs shutdown-only handlers once, against the last failure
5. Guards execution: per-handler ceilings, reentrancy refusal and
   isolation of handlers that raise

Execution is synchronous; one Dispatcher serves one thread of control
(the process, or a single request).
"""

from __future__ import annotations

import gc
import logging
import traceback
from typing import Any, Optional, Union

from .config import HandlerConfig
from .core import ConvertedError, Failure, convert_error
from .default_handlers import DefaultHandler
from .handlers import ExecutionState, FailureHandler
from .hooks import RuntimeHooks
from .output import OutputSink, StreamSink
from .security.monitor import max_rss


DEFAULT_MAX_EXECUTIONS = 3
DEFAULT_MEMORY_THRESHOLD = 50 * 1024 * 1024  # 50 MiB

FALLBACK_MESSAGE = "An error occurred in the error handler. Please check the error logs."


class Dispatcher:
    """
    Runtime failure dispatcher.

    Usage:
        ```python
        dispatcher = Dispatcher()
        dispatcher.register(MailHandler())
        dispatcher.install()        # sys.excepthook, warnings, atexit

        # or explicitly
        try:
            ...
        except Exception as e:
            dispatcher.dispatch(e)
        ```
    """

    def __init__(
        self,
        *,
        config: Optional[HandlerConfig] = None,
        output: Optional[OutputSink] = None,
        logger: Optional[logging.Logger] = None,
        max_executions: int = DEFAULT_MAX_EXECUTIONS,
        memory_threshold: int = DEFAULT_MEMORY_THRESHOLD,
        default_format: str = "terminal",
    ):
        """
        Initialize dispatcher.

        Args:
            config: Handler configuration (detected from the environment if None)
            output: Sink handlers write to (stderr if None)
            logger: Logger for dispatch events
            max_executions: Per-handler execution ceiling
            memory_threshold: RSS in bytes above which cleanup collects garbage
            default_format: Output format of the seeded DefaultHandler
        """
        self.logger = logger or logging.getLogger("aquila_guard.dispatch")
        self.output: OutputSink = output or StreamSink(err=True)
        self.default_format = default_format

        self._max_executions = DEFAULT_MAX_EXECUTIONS
        self._memory_threshold = DEFAULT_MEMORY_THRESHOLD
        self.set_max_executions(max_executions)
        self.set_memory_threshold(memory_threshold)

        self._handlers: list[FailureHandler] = [DefaultHandler(default_format)]
        self._execution_counts: dict[str, int] = {}
        self._handling = False
        self._last_failure: Optional[Failure] = None
        self._hooks: Optional[RuntimeHooks] = None

        self._config = config if config is not None else HandlerConfig.from_environment()
        self._config.apply()

    # ========================================================================
    # Handler Registration
    # ========================================================================

    def register(self, handler: FailureHandler) -> bool:
        """
        Register a handler.

        A handler whose name is already registered is ignored.

        Returns:
            True if the handler was added

        Raises:
            TypeError: If ``handler`` is not a FailureHandler
        """
        if not isinstance(handler, FailureHandler):
            raise TypeError(f"Expected a FailureHandler, got {type(handler).__name__}")

        if self.has_handler(handler.name):
            self.logger.debug(f"Ignored duplicate handler registration: {handler.name}")
            return False

        self._handlers.append(handler)
        self.logger.debug(f"Registered handler: {handler.name} (priority {handler.priority})")
        return True

    def unregister(self, handler: FailureHandler) -> bool:
        """
        Remove every handler sharing ``handler``'s name.

        Removed handlers are cleaned up and their execution counter is
        dropped.

        Returns:
            True if anything was removed
        """
        name = handler.name
        kept: list[FailureHandler] = []
        removed = False

        for existing in self._handlers:
            if existing.name == name:
                existing.cleanup()
                removed = True
            else:
                kept.append(existing)

        self._handlers = kept
        self._execution_counts.pop(name, None)

        if removed:
            self.logger.debug(f"Unregistered handler: {name}")

        if max_rss() > self._memory_threshold * 0.8:
            self.cleanup_memory()

        return removed

    def unregister_by_name(self, identifier: Union[str, type]) -> bool:
        """
        Remove a handler by name, class name, dotted class path or class.

        Returns:
            True if a handler was removed
        """
        if isinstance(identifier, type):
            for existing in self._handlers:
                if type(existing) is identifier:
                    return self.unregister(existing)
            return False

        identifier = identifier.strip()
        handler = self.get_handler(identifier)
        if handler is not None:
            return self.unregister(handler)

        for existing in self._handlers:
            cls = type(existing)
            if identifier in (cls.__name__, f"{cls.__module__}.{cls.__qualname__}"):
                return self.unregister(existing)

        return False

    def has_handler(self, name: str) -> bool:
        return self.get_handler(name) is not None

    def get_handler(self, name: str) -> Optional[FailureHandler]:
        name = name.strip()
        for handler in self._handlers:
            if handler.name == name:
                return handler
        return None

    def list_handlers(self) -> list[FailureHandler]:
        """Registered handlers in current pool order."""
        return list(self._handlers)

    def sort_handlers(self) -> None:
        """Order the pool by descending priority; ties keep registration order."""
        self._handlers.sort(key=lambda handler: handler.priority, reverse=True)

    # ========================================================================
    # Dispatch
    # ========================================================================

    @property
    def last_failure(self) -> Optional[Failure]:
        return self._last_failure

    @property
    def is_handling(self) -> bool:
        return self._handling

    def dispatch(self, error: Optional[BaseException] = None) -> Optional[Failure]:
        """
        Dispatch an error to every active, non-shutdown handler.

        The failure is recorded as the last failure for the shutdown phase.
        Without an error a placeholder failure is dispatched and the last
        failure is left unchanged.

        Args:
            error: Exception to dispatch

        Returns:
            The dispatched Failure, or None if the dispatch was refused
        """
        if self._handling:
            self.logger.warning("Dispatch refused: Already handling a failure")
            return None

        if error is None:
            failure = Failure.empty()
        else:
            failure = Failure.from_exception(error)
            self._last_failure = failure

        self.logger.debug(f"Dispatching failure {failure}")
        self.sort_handlers()

        for handler in list(self._handlers):
            if handler.is_active() and not handler.is_shutdown_only():
                self._execute(handler, failure)

        return failure

    def dispatch_shutdown(self) -> bool:
        """
        Run the shutdown phase.

        Runs only when a failure was dispatched since the last reset. Pending
        output is cleared first, then each active shutdown-only handler that
        has not run yet executes once against the last failure.

        Returns:
            True if the shutdown phase ran
        """
        if self._handling:
            self.logger.warning("Shutdown dispatch refused: Already handling a failure")
            return False

        failure = self._last_failure
        if failure is None:
            return False

        self.output.clear()
        self.sort_handlers()

        for handler in list(self._handlers):
            if self._runs_at_shutdown(handler):
                self._execute(handler, failure)

        return True

    @staticmethod
    def _runs_at_shutdown(handler: FailureHandler) -> bool:
        return (
            handler.is_active()
            and handler.is_shutdown_only()
            and not handler.is_executed
            and not handler.is_executing
        )

    def _execute(self, handler: FailureHandler, failure: Failure) -> bool:
        name = handler.name
        count = self._execution_counts.get(name, 0)

        if count >= self._max_executions:
            self.logger.warning(
                f"Handler '{name}' execution blocked: maximum execution limit "
                f"({self._max_executions}) reached"
            )
            return False

        self._execution_counts[name] = count + 1
        handler.attach(failure, self.output)
        handler.state = ExecutionState.EXECUTING
        self._handling = True

        try:
            handler.security.monitor.record_execution(handler)
            handler.handle(failure)
        except Exception as e:
            self._log_handler_failure(handler, e)
            self._fallback()
        finally:
            handler.state = ExecutionState.EXECUTED
            self._handling = False

        return True

    def _log_handler_failure(self, handler: FailureHandler, error: Exception) -> None:
        file, line = "(Unknown File)", 0
        frames = traceback.extract_tb(error.__traceback__)
        if frames:
            file, line = frames[-1].filename, frames[-1].lineno or 0

        self.logger.error(
            f'Handler "{handler.name}" failed: {error} in {file}:{line}',
            exc_info=(type(error), error, error.__traceback__),
            extra={"handler": handler.name},
        )

    def _fallback(self) -> None:
        # Fixed text only; nothing here may go through sanitizers or templates.
        try:
            self.output.write(FALLBACK_MESSAGE)
        except Exception as e:
            self.logger.error(f"Fallback output failed: {e}")

    @staticmethod
    def convert_error(code: int, message: str, file: str, line: int) -> ConvertedError:
        """Convert a runtime error signal into a ConvertedError."""
        return convert_error(code, message, file, line)

    # ========================================================================
    # Execution limits
    # ========================================================================

    @property
    def max_executions(self) -> int:
        return self._max_executions

    def set_max_executions(self, max_executions: int) -> None:
        """Set the per-handler ceiling; non-positive values are ignored."""
        if max_executions > 0:
            self._max_executions = max_executions

    def execution_count(self, name: str) -> int:
        return self._execution_counts.get(name, 0)

    def reset_execution_counts(self) -> None:
        self._execution_counts.clear()

    # ========================================================================
    # Memory
    # ========================================================================

    @property
    def memory_threshold(self) -> int:
        return self._memory_threshold

    def set_memory_threshold(self, threshold: int) -> None:
        if threshold > 0:
            self._memory_threshold = threshold

    def cleanup_memory(self) -> None:
        """Prune counters of unregistered handlers; collect garbage above the threshold."""
        names = {handler.name for handler in self._handlers}
        self._execution_counts = {
            name: count for name, count in self._execution_counts.items() if name in names
        }

        if max_rss() > self._memory_threshold:
            collected = gc.collect()
            self.logger.debug(f"Memory cleanup collected {collected} objects")

    def memory_stats(self) -> dict[str, Any]:
        return {
            "max_rss": max_rss(),
            "handler_count": len(self._handlers),
            "execution_counters": len(self._execution_counts),
            "threshold": self._memory_threshold,
        }

    # ========================================================================
    # Configuration
    # ========================================================================

    @property
    def config(self) -> HandlerConfig:
        return self._config

    def set_config(self, config: HandlerConfig) -> None:
        """Restore the previous config's changes, then apply ``config``."""
        self._config.restore()
        self._config = config
        self._config.apply()

    def reset_config(self) -> None:
        self.set_config(HandlerConfig.from_environment(settings=self._config.settings))

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def reset(self) -> None:
        """
        Return to the initial state.

        The pool holds only a fresh DefaultHandler; counters, the
        reentrancy flag and the last failure are cleared and the current
        config is re-applied.
        """
        self._handlers = [DefaultHandler(self.default_format)]
        self._last_failure = None
        self._execution_counts.clear()
        self._handling = False
        self._config.apply()

    def shutdown(self) -> None:
        """Drop all handlers and state, restore the config and uninstall hooks."""
        self._handlers = []
        self._last_failure = None
        self._execution_counts.clear()
        self._handling = False
        self._config.restore()
        self.uninstall()
        gc.collect()

    def install(self) -> RuntimeHooks:
        """Route uncaught exceptions, warnings and interpreter exit here."""
        if self._hooks is None:
            self._hooks = RuntimeHooks(self)
        self._hooks.install()
        return self._hooks

    def uninstall(self) -> None:
        if self._hooks is not None:
            self._hooks.uninstall()

    @property
    def installed(self) -> bool:
        return self._hooks is not None and self._hooks.installed


# ============================================================================
# Default Dispatcher
# ============================================================================

_default_dispatcher: Optional[Dispatcher] = None


def get_default_dispatcher() -> Dispatcher:
    """
    Get or create the process default dispatcher.

    Returns:
        Global Dispatcher instance
    """
    global _default_dispatcher
    if _default_dispatcher is None:
        _default_dispatcher = Dispatcher()
    return _default_dispatcher
