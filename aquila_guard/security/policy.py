"""
AquilaGuard Security - Environment policy.

Classifies the running environment as development, staging or production
and maps each level to a fixed bundle of disclosure toggles.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

if TYPE_CHECKING:
    from ..config import RuntimeSettings


PROJECT_MARKERS = ("pyproject.toml", "setup.py", "setup.cfg")


class SecurityLevel(str, Enum):
    """Environment security levels."""
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


@dataclass(frozen=True, slots=True)
class SecurityPolicy:
    """
    Disclosure toggles for one security level.

    Policies are immutable; build them with :meth:`for_level` or
    :meth:`resolve`.

    Attributes:
        level: Security level this policy belongs to
        show_full_paths: Show file paths unchanged
        show_stack_trace: Show stack traces at all
        max_trace_depth: Maximum number of frames shown
        show_line_numbers: Show line numbers
        allow_raw_failure_access: Hand the raw exception to handlers
        sanitize_messages: Apply the broad message redaction set
        max_message_length: Truncate longer messages (0 disables)
        allow_inline_styles: Allow ``style=`` attributes in markup
        log_policy_violations: Log blocked operations
        project_root: Root used to shorten paths in staging
    """

    level: SecurityLevel
    show_full_paths: bool
    show_stack_trace: bool
    max_trace_depth: int
    show_line_numbers: bool
    allow_raw_failure_access: bool
    sanitize_messages: bool
    max_message_length: int
    allow_inline_styles: bool
    log_policy_violations: bool
    project_root: str = ""

    @classmethod
    def for_level(
        cls,
        level: SecurityLevel | str,
        *,
        project_root: Optional[str] = None,
    ) -> SecurityPolicy:
        """
        Build the policy for a level.

        Args:
            level: SecurityLevel or its string value
            project_root: Override the detected project root

        Returns:
            SecurityPolicy for the level

        Raises:
            ValueError: If the level is unknown
        """
        level = SecurityLevel(level)
        base = _LEVEL_POLICIES[level]
        root = project_root if project_root is not None else detect_project_root()
        return replace(base, project_root=root)

    @classmethod
    def resolve(
        cls,
        level: SecurityLevel | str | None = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
        settings: Optional[RuntimeSettings] = None,
        project_root: Optional[str] = None,
    ) -> SecurityPolicy:
        """Resolve the level from the environment and build its policy."""
        resolved = resolve_security_level(level, environ=environ, settings=settings)
        return cls.for_level(resolved, project_root=project_root)

    @property
    def is_development(self) -> bool:
        return self.level is SecurityLevel.DEV

    @property
    def is_staging(self) -> bool:
        return self.level is SecurityLevel.STAGING

    @property
    def is_production(self) -> bool:
        return self.level is SecurityLevel.PROD


_LEVEL_POLICIES: dict[SecurityLevel, SecurityPolicy] = {
    SecurityLevel.DEV: SecurityPolicy(
        level=SecurityLevel.DEV,
        show_full_paths=True,
        show_stack_trace=True,
        max_trace_depth=50,
        show_line_numbers=True,
        allow_raw_failure_access=True,
        sanitize_messages=False,
        max_message_length=0,
        allow_inline_styles=True,
        log_policy_violations=True,
    ),
    SecurityLevel.STAGING: SecurityPolicy(
        level=SecurityLevel.STAGING,
        show_full_paths=False,
        show_stack_trace=True,
        max_trace_depth=10,
        show_line_numbers=True,
        allow_raw_failure_access=False,
        sanitize_messages=True,
        max_message_length=500,
        allow_inline_styles=False,
        log_policy_violations=True,
    ),
    SecurityLevel.PROD: SecurityPolicy(
        level=SecurityLevel.PROD,
        show_full_paths=False,
        show_stack_trace=False,
        max_trace_depth=0,
        show_line_numbers=False,
        allow_raw_failure_access=False,
        sanitize_messages=True,
        max_message_length=200,
        allow_inline_styles=False,
        log_policy_violations=True,
    ),
}


def resolve_security_level(
    level: SecurityLevel | str | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    settings: Optional[RuntimeSettings] = None,
) -> SecurityLevel:
    """
    Determine the security level.

    Resolution order:
    1. Explicit ``level`` argument
    2. ``APP_ENV`` (or ``ENVIRONMENT``) set to production/prod or staging
    3. Runtime ``display_errors`` disabled => production
    4. Runtime ``production`` flag => production
    5. Development

    Args:
        level: Explicit level (wins when given)
        environ: Environment mapping (defaults to ``os.environ``)
        settings: Runtime settings (defaults to the process settings)

    Returns:
        Resolved SecurityLevel
    """
    if level is not None:
        return SecurityLevel(level)

    if environ is None:
        environ = os.environ
    if settings is None:
        from ..config import runtime_settings
        settings = runtime_settings

    env = environ.get("APP_ENV") or environ.get("ENVIRONMENT")
    if env in ("production", "prod"):
        return SecurityLevel.PROD
    if env == "staging":
        return SecurityLevel.STAGING

    if not settings.display_errors:
        return SecurityLevel.PROD

    if settings.production:
        return SecurityLevel.PROD

    return SecurityLevel.DEV


_project_root: Optional[str] = None


def detect_project_root(start: Optional[Path] = None) -> str:
    """
    Find the project root.

    Walks upward from ``start`` (the package directory by default) until a
    directory holding a project marker file is found. Falls back to the
    working directory. The default lookup is cached.
    """
    global _project_root
    if start is None and _project_root is not None:
        return _project_root

    current = (start or Path(__file__).resolve().parent).resolve()
    root: Optional[str] = None
    for directory in (current, *current.parents):
        if any((directory / marker).exists() for marker in PROJECT_MARKERS):
            root = str(directory)
            break

    if root is None:
        root = os.getcwd()

    if start is None:
        _project_root = root
    return root
