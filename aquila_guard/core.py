"""
AquilaGuard - Core failure types.

Defines:
- ErrorLevel (runtime error categories) and the ERROR_TYPES table
- TraceFrame (one normalized stack frame)
- Failure (normalized representation of a caught error)
- ConvertedError (runtime error converted into an exception)
- Backtrace helpers (capture, traceback conversion, one-slot rotation)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import IntFlag
from types import FrameType, TracebackType
from typing import Any, Mapping, Optional, Sequence


UNKNOWN_CLASS = "(Unknown Class)"
UNKNOWN_LINE = "(Unknown Line)"
UNKNOWN_FILE = "(Unknown File)"
NO_MESSAGE = "No Message"


# ============================================================================
# Error levels
# ============================================================================

class ErrorLevel(IntFlag):
    """
    Runtime error categories.

    Values are bit flags so that a reporting level can be expressed as a
    combination (``ErrorLevel.ERROR | ErrorLevel.WARNING``).
    """
    ERROR = 1
    WARNING = 2
    PARSE = 4
    NOTICE = 8
    CORE_ERROR = 16
    CORE_WARNING = 32
    COMPILE_ERROR = 64
    COMPILE_WARNING = 128
    USER_ERROR = 256
    USER_WARNING = 512
    USER_NOTICE = 1024
    STRICT = 2048
    RECOVERABLE_ERROR = 4096
    DEPRECATED = 8192
    USER_DEPRECATED = 16384

    ALL = 32767


ERROR_TYPES: dict[int, tuple[str, str]] = {
    ErrorLevel.ERROR: ("E_ERROR", "Fatal run-time error"),
    ErrorLevel.WARNING: ("E_WARNING", "Run-time warning"),
    ErrorLevel.PARSE: ("E_PARSE", "Compile-time parse error"),
    ErrorLevel.NOTICE: ("E_NOTICE", "Run-time notice"),
    ErrorLevel.CORE_ERROR: ("E_CORE_ERROR", "Fatal error during initialization"),
    ErrorLevel.CORE_WARNING: ("E_CORE_WARNING", "Warning during initialization"),
    ErrorLevel.COMPILE_ERROR: ("E_COMPILE_ERROR", "Fatal compile-time error"),
    ErrorLevel.COMPILE_WARNING: ("E_COMPILE_WARNING", "Compile-time warning"),
    ErrorLevel.USER_ERROR: ("E_USER_ERROR", "User-generated error message"),
    ErrorLevel.USER_WARNING: ("E_USER_WARNING", "User-generated warning message"),
    ErrorLevel.USER_NOTICE: ("E_USER_NOTICE", "User-generated notice message"),
    ErrorLevel.STRICT: ("E_STRICT", "Suggested change"),
    ErrorLevel.RECOVERABLE_ERROR: ("E_RECOVERABLE_ERROR", "Catchable fatal error"),
    ErrorLevel.DEPRECATED: ("E_DEPRECATED", "Run-time notice"),
    ErrorLevel.USER_DEPRECATED: ("E_USER_DEPRECATED", "User-generated warning message"),
}

UNKNOWN_ERROR_TYPE = ("UNKNOWN", "Unknown error")


def describe_error(code: int) -> tuple[str, str]:
    """Return ``(type name, description)`` for an error code."""
    return ERROR_TYPES.get(int(code), UNKNOWN_ERROR_TYPE)


# Checked in order; the first matching category wins.
_WARNING_LEVELS: tuple[tuple[type[Warning], ErrorLevel], ...] = (
    (DeprecationWarning, ErrorLevel.DEPRECATED),
    (PendingDeprecationWarning, ErrorLevel.DEPRECATED),
    (FutureWarning, ErrorLevel.USER_DEPRECATED),
    (SyntaxWarning, ErrorLevel.COMPILE_WARNING),
    (ImportWarning, ErrorLevel.CORE_WARNING),
    (UserWarning, ErrorLevel.USER_WARNING),
    (ResourceWarning, ErrorLevel.NOTICE),
    (BytesWarning, ErrorLevel.NOTICE),
    (UnicodeWarning, ErrorLevel.NOTICE),
)


def level_for_warning(category: type[Warning]) -> ErrorLevel:
    """
    Map a Python warning category to an error level.

    Args:
        category: Warning class reported by the ``warnings`` module

    Returns:
        Matching ErrorLevel (``WARNING`` for anything unrecognised)
    """
    for warning_type, level in _WARNING_LEVELS:
        if issubclass(category, warning_type):
            return level
    return ErrorLevel.WARNING


# ============================================================================
# TraceFrame
# ============================================================================

def extract_class_name(file_path: str) -> str:
    """
    Derive a class name from a file path.

    The base name is cut at its first dot and capitalized, so
    ``"super/x/NomeRoom.py"`` gives ``"NomeRoom"``.
    """
    if not file_path:
        return UNKNOWN_CLASS

    file_name = file_path.replace("\\", "/").split("/")[-1]
    base_name = file_name.split(".")[0]
    if not base_name:
        return UNKNOWN_CLASS

    return base_name[0].upper() + base_name[1:]


def _line_to_str(line: Any) -> str:
    if line is None:
        return UNKNOWN_LINE
    if isinstance(line, bool):
        return "1" if line else ""
    return str(line)


@dataclass(frozen=True, slots=True)
class TraceFrame:
    """
    One stack frame: where code was executing.

    Missing fields hold sentinel strings so rendering never has to branch
    on presence.

    Attributes:
        file: Source file path (or the method name when unknown)
        line: Line number as text, ``"(Unknown Line)"`` when unknown
        class_name: Owning class, or one derived from the file name
        method: Function or method name
    """

    file: str = ""
    line: str = UNKNOWN_LINE
    class_name: str = UNKNOWN_CLASS
    method: str = ""

    @classmethod
    def from_entry(cls, entry: Mapping[str, Any]) -> TraceFrame:
        """
        Build a frame from a loosely typed backtrace entry.

        Args:
            entry: Mapping with optional ``file``, ``line``, ``class``
                and ``function`` keys

        Returns:
            TraceFrame with defaults filled in
        """
        method = entry.get("function") or ""
        method = str(method)

        file = entry.get("file")
        file = method if file is None else str(file)

        class_name = entry.get("class")
        if class_name is None:
            class_name = extract_class_name(file)

        return cls(
            file=file,
            line=_line_to_str(entry.get("line")),
            class_name=str(class_name),
            method=method,
        )

    @property
    def has_line(self) -> bool:
        return self.line != UNKNOWN_LINE

    def to_dict(self) -> dict[str, str]:
        return {
            "file": self.file,
            "line": self.line,
            "class": self.class_name,
            "function": self.method,
        }

    def __str__(self) -> str:
        text = f"At class {self.class_name}"
        if self.has_line:
            text += f" line {self.line}"
        return text


# ============================================================================
# Raw backtraces
# ============================================================================

def _class_for_code(code: Any) -> Optional[str]:
    qualname = getattr(code, "co_qualname", None) or ""
    if "." not in qualname:
        return None
    owner = qualname.rsplit(".", 1)[0]
    if owner.endswith("<locals>"):
        return None
    return owner


def _entry_for(frame: FrameType, caller: Optional[FrameType], caller_line: Optional[int]) -> dict[str, Any]:
    code = frame.f_code
    entry: dict[str, Any] = {"function": code.co_name}
    owner = _class_for_code(code)
    if owner is not None:
        entry["class"] = owner
    if caller is not None:
        entry["file"] = caller.f_code.co_filename
        entry["line"] = caller_line
    return entry


def capture_backtrace(skip: int = 0) -> list[dict[str, Any]]:
    """
    Capture the live call stack as raw call-site entries.

    Entries are innermost first; each names a function and records the
    file/line it was called from.

    Args:
        skip: Number of innermost frames to leave out (besides this one)

    Returns:
        List of raw backtrace entries
    """
    frame: Optional[FrameType] = sys._getframe(1 + skip)
    entries: list[dict[str, Any]] = []
    while frame is not None:
        caller = frame.f_back
        entries.append(_entry_for(frame, caller, caller.f_lineno if caller else None))
        frame = caller
    return entries


def backtrace_from_traceback(tb: Optional[TracebackType]) -> list[dict[str, Any]]:
    """
    Convert a traceback chain into raw call-site entries, innermost first.

    A traceback runs from the outermost frame to the raising one and records
    the executing line of each frame; the call site of frame *k* is the
    executing line of frame *k-1*.
    """
    chain: list[tuple[FrameType, int]] = []
    while tb is not None:
        chain.append((tb.tb_frame, tb.tb_lineno))
        tb = tb.tb_next

    entries: list[dict[str, Any]] = []
    for index in range(len(chain) - 1, -1, -1):
        frame, _ = chain[index]
        if index > 0:
            caller, caller_line = chain[index - 1]
            entries.append(_entry_for(frame, caller, caller_line))
        else:
            entries.append(_entry_for(frame, None, None))
    return entries


def flatten_backtrace(raw: Sequence[Mapping[str, Any]]) -> tuple[TraceFrame, ...]:
    """
    Flatten a raw call-site backtrace into frames.

    Each entry's file/line is replaced with the previous entry's call site,
    so every frame reports where its own code was executing. The first
    entry only seeds the rotation and is dropped.

    Args:
        raw: Raw backtrace entries, innermost first

    Returns:
        Tuple of TraceFrame (empty when there is no backtrace)
    """
    if not raw:
        return ()

    current_file = raw[0].get("file", UNKNOWN_FILE)
    current_line = raw[0].get("line", UNKNOWN_LINE)
    frames: list[TraceFrame] = []

    for entry in raw[1:]:
        next_file = entry.get("file", UNKNOWN_FILE)
        next_line = entry.get("line", UNKNOWN_LINE)
        rotated = dict(entry)
        rotated["file"] = current_file
        rotated["line"] = current_line
        frames.append(TraceFrame.from_entry(rotated))
        current_file, current_line = next_file, next_line

    return tuple(frames)


# ============================================================================
# ConvertedError
# ============================================================================

class AquilaGuardError(Exception):
    """Base class for errors raised by AquilaGuard."""


class ConvertedError(AquilaGuardError):
    """
    A runtime error (warning signal) converted into an exception.

    Carries the error level as ``code`` and the reported location. The
    backtrace is captured when the error is created and ends with the
    reported error location.
    """

    def __init__(self, message: str = "", code: int = 0, file: str = "", line: int = 0):
        super().__init__(message)
        self.message = message
        self.code = int(code)
        self.file = file
        self.line = line
        self.debug_trace: tuple[TraceFrame, ...] = self._build_debug_trace()

    def _build_debug_trace(self) -> tuple[TraceFrame, ...]:
        # Leave out __init__ and this method.
        frames = list(flatten_backtrace(capture_backtrace(skip=2)))
        frames.append(TraceFrame.from_entry({"file": self.file, "line": self.line}))
        return tuple(frames)


def convert_error(code: int, message: str, file: str, line: int) -> ConvertedError:
    """
    Convert a runtime error signal into a ConvertedError.

    The message reads
    ``"An exception caused by an error. <description>: <message> at <Class> Line <line>"``.
    Unknown codes are described as ``"Unknown error"``.
    """
    _, description = describe_error(code)
    text = (
        f"An exception caused by an error. {description}: {message} "
        f"at {extract_class_name(file)} Line {line}"
    )
    return ConvertedError(text, code, file, line)


# ============================================================================
# Failure
# ============================================================================

def _code_of(error: BaseException) -> str:
    if isinstance(error, ConvertedError):
        return str(error.code)
    errno = getattr(error, "errno", None)
    if errno is not None:
        return str(errno)
    code = getattr(error, "code", None)
    if code is None or isinstance(code, bool):
        return "0"
    return str(code)


@dataclass(frozen=True)
class Failure:
    """
    Normalized representation of one caught error.

    Built once per dispatch. Handlers receive a reference through the
    dispatcher and read it through policy-checked accessors.

    Attributes:
        message: Error message
        code: Error code as text (``"0"`` when the error has none)
        origin: Frame where the error was raised
        frames: Remaining frames, innermost first
        error_type: Name of the exception class
        error: The raw exception (``None`` for placeholders)
    """

    message: str = NO_MESSAGE
    code: str = "0"
    origin: TraceFrame = field(default_factory=TraceFrame)
    frames: tuple[TraceFrame, ...] = ()
    error_type: str = ""
    error: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_exception(cls, error: BaseException) -> Failure:
        """
        Normalize an exception.

        Args:
            error: Exception to normalize

        Returns:
            Failure with origin frame and flattened frames
        """
        if isinstance(error, ConvertedError):
            origin = TraceFrame.from_entry({"file": error.file, "line": error.line})
            frames = error.debug_trace
        else:
            raw = backtrace_from_traceback(error.__traceback__)
            frames = flatten_backtrace(raw)
            origin = cls._origin_of(error.__traceback__)

        return cls(
            message=str(error),
            code=_code_of(error),
            origin=origin,
            frames=frames,
            error_type=type(error).__name__,
            error=error,
        )

    @classmethod
    def empty(cls) -> Failure:
        """Placeholder used when dispatch runs without an error."""
        return cls()

    @staticmethod
    def _origin_of(tb: Optional[TracebackType]) -> TraceFrame:
        if tb is None:
            return TraceFrame()
        while tb.tb_next is not None:
            tb = tb.tb_next
        code = tb.tb_frame.f_code
        entry: dict[str, Any] = {
            "file": code.co_filename,
            "line": tb.tb_lineno,
            "function": code.co_name,
        }
        owner = _class_for_code(code)
        if owner is not None:
            entry["class"] = owner
        return TraceFrame.from_entry(entry)

    @property
    def is_empty(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "type": self.error_type,
            "origin": self.origin.to_dict(),
            "frames": [frame.to_dict() for frame in self.frames],
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"
