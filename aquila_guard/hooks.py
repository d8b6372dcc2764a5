"""
AquilaGuard - Process hooks.

Routes the interpreter's failure signals to a Dispatcher:
- sys.excepthook: uncaught exceptions are dispatched
- warnings.showwarning: reported warnings become ConvertedErrors raised
  at the warning site
- atexit: the shutdown phase runs when the interpreter exits
"""

from __future__ import annotations

import atexit
import logging
import sys
import warnings
from types import TracebackType
from typing import TYPE_CHECKING, Any, Callable, Optional, TextIO

from .core import convert_error, level_for_warning

if TYPE_CHECKING:
    from .engine import Dispatcher


logger = logging.getLogger("aquila_guard.dispatch")


class RuntimeHooks:
    """
    Installs and removes the process hooks for one Dispatcher.

    Previous hooks are kept and restored on :meth:`uninstall`; signals the
    dispatcher does not take (KeyboardInterrupt, unreported warning levels)
    are passed on to them.
    """

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher
        self.installed = False
        self._previous_excepthook: Optional[Callable[..., Any]] = None
        self._previous_showwarning: Optional[Callable[..., Any]] = None

    def install(self) -> None:
        if self.installed:
            return

        self._previous_excepthook = sys.excepthook
        self._previous_showwarning = warnings.showwarning
        sys.excepthook = self.excepthook
        warnings.showwarning = self.showwarning
        atexit.register(self.at_exit)

        self.installed = True
        logger.debug("Runtime hooks installed")

    def uninstall(self) -> None:
        if not self.installed:
            return

        # Only restore hooks that nobody replaced after us.
        if sys.excepthook == self.excepthook:
            sys.excepthook = self._previous_excepthook or sys.__excepthook__
        if warnings.showwarning == self.showwarning and self._previous_showwarning is not None:
            warnings.showwarning = self._previous_showwarning
        atexit.unregister(self.at_exit)

        self.installed = False
        logger.debug("Runtime hooks uninstalled")

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def excepthook(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: Optional[TracebackType],
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            previous = self._previous_excepthook or sys.__excepthook__
            previous(exc_type, exc, tb)
            return

        if exc.__traceback__ is None and tb is not None:
            exc = exc.with_traceback(tb)
        self.dispatcher.dispatch(exc)

    def showwarning(
        self,
        message: Warning | str,
        category: type[Warning],
        filename: str,
        lineno: int,
        file: Optional[TextIO] = None,
        line: Optional[str] = None,
    ) -> None:
        level = level_for_warning(category)
        if self.dispatcher.config.reports(level):
            raise convert_error(level, str(message), filename, lineno)

        if self._previous_showwarning is not None:
            self._previous_showwarning(message, category, filename, lineno, file, line)

    def at_exit(self) -> None:
        self.dispatcher.dispatch_shutdown()
