"""
AquilaGuard - Configuration.

Provides:
- RuntimeSettings: the process-wide reporting/display switches
- HandlerConfig: dispatcher configuration with presets, file loading and
  reversible application to the runtime settings
- load_environment: merge a .env file under the process environment
"""

from __future__ import annotations

import copy
import json
import os
import warnings
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from .core import ErrorLevel


TRUE_VALUES = ("true", "yes", "on", "1")
FALSE_VALUES = ("false", "no", "off", "0", "")

PRODUCTION_REPORTING = ErrorLevel.ERROR | ErrorLevel.WARNING | ErrorLevel.PARSE


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def parse_error_level(value: Any) -> ErrorLevel:
    """
    Parse an error reporting level.

    Accepts an int, a level name (``"WARNING"`` or ``"E_WARNING"``), a
    ``|``-separated string of names, or a list of names.

    Raises:
        ValueError: If a name is not a known level
    """
    if isinstance(value, ErrorLevel):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid error level: {value!r}")
    if isinstance(value, int):
        return ErrorLevel(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return ErrorLevel(int(text))
        value = [part for part in text.split("|") if part.strip()]
    if isinstance(value, (list, tuple)):
        level = ErrorLevel(0)
        for item in value:
            name = str(item).strip().upper()
            if name.startswith("E_"):
                name = name[2:]
            try:
                level |= ErrorLevel[name]
            except KeyError:
                raise ValueError(f"Unknown error level: {item!r}") from None
        return level
    raise ValueError(f"Invalid error level: {value!r}")


# ============================================================================
# Runtime settings
# ============================================================================

@dataclass
class RuntimeSettings:
    """
    Process-wide error reporting switches.

    ``None`` means "not set"; HandlerConfig only fills unset values when it
    respects existing settings.

    Attributes:
        error_reporting: Reported error levels
        display_errors: Whether errors are displayed
        display_startup_errors: Whether startup errors are displayed
        production: Process declares itself a production deployment
    """

    error_reporting: Optional[ErrorLevel] = None
    display_errors: bool = True
    display_startup_errors: Optional[bool] = None
    production: bool = False

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> RuntimeSettings:
        """Seed settings from ``AQUILA_*`` environment variables."""
        if environ is None:
            environ = os.environ

        settings = cls()
        display = _parse_bool(environ.get("AQUILA_DISPLAY_ERRORS"))
        if display is not None:
            settings.display_errors = display
        production = _parse_bool(environ.get("AQUILA_PRODUCTION"))
        if production is not None:
            settings.production = production
        reporting = environ.get("AQUILA_ERROR_REPORTING")
        if reporting:
            settings.error_reporting = parse_error_level(reporting)
        return settings

    def snapshot(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def update(self, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            setattr(self, name, value)


runtime_settings = RuntimeSettings.from_environ()


# ============================================================================
# HandlerConfig
# ============================================================================

def detect_production(
    environ: Optional[Mapping[str, str]] = None,
    settings: Optional[RuntimeSettings] = None,
) -> bool:
    """
    Check whether the process looks like a production deployment.

    ``APP_ENV``/``ENVIRONMENT`` set to production, display of errors
    disabled, or the runtime ``production`` flag.
    """
    if environ is None:
        environ = os.environ
    if settings is None:
        settings = runtime_settings

    env = environ.get("APP_ENV") or environ.get("ENVIRONMENT")
    if env in ("production", "prod"):
        return True
    if not settings.display_errors:
        return True
    return settings.production


@dataclass
class HandlerConfig:
    """
    Dispatcher configuration.

    By default a config only describes the desired reporting behaviour;
    it writes to the runtime settings on :meth:`apply` only when
    ``modify_global_settings`` is set.

    Attributes:
        error_reporting: Error levels converted into failures
        display_errors: Whether errors should be displayed
        display_startup_errors: Whether startup errors should be displayed
        modify_global_settings: Allow :meth:`apply` to change runtime settings
        respect_existing_settings: Keep runtime values that are already set
        settings: Runtime settings this config applies to
    """

    error_reporting: ErrorLevel = ErrorLevel.ALL
    display_errors: bool = True
    display_startup_errors: bool = True
    modify_global_settings: bool = False
    respect_existing_settings: bool = True
    settings: RuntimeSettings = field(default=None, repr=False, compare=False)  # type: ignore[assignment]

    _original: Optional[dict[str, Any]] = field(default=None, init=False, repr=False, compare=False)
    _original_filters: Optional[list] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.settings is None:
            self.settings = runtime_settings
        self.error_reporting = parse_error_level(self.error_reporting)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        settings: Optional[RuntimeSettings] = None,
    ) -> HandlerConfig:
        """Production defaults when production is detected, development otherwise."""
        settings = settings if settings is not None else runtime_settings
        if detect_production(environ, settings):
            return cls(
                error_reporting=PRODUCTION_REPORTING,
                display_errors=False,
                display_startup_errors=False,
                settings=settings,
            )
        return cls(settings=settings)

    @classmethod
    def production(cls, settings: Optional[RuntimeSettings] = None) -> HandlerConfig:
        return cls(
            error_reporting=PRODUCTION_REPORTING,
            display_errors=False,
            display_startup_errors=False,
            modify_global_settings=False,
            respect_existing_settings=True,
            settings=settings,
        )

    @classmethod
    def development(cls, settings: Optional[RuntimeSettings] = None) -> HandlerConfig:
        return cls(
            error_reporting=ErrorLevel.ALL,
            display_errors=True,
            display_startup_errors=True,
            modify_global_settings=True,
            respect_existing_settings=True,
            settings=settings,
        )

    @classmethod
    def legacy(cls, settings: Optional[RuntimeSettings] = None) -> HandlerConfig:
        return cls(
            error_reporting=ErrorLevel.ALL,
            display_errors=True,
            display_startup_errors=True,
            modify_global_settings=True,
            respect_existing_settings=False,
            settings=settings,
        )

    @classmethod
    def preset(cls, name: str, settings: Optional[RuntimeSettings] = None) -> HandlerConfig:
        """
        Build a named preset.

        Args:
            name: ``production``/``prod``, ``development``/``dev`` or ``legacy``

        Raises:
            ValueError: If the preset is unknown
        """
        presets = {
            "production": cls.production,
            "prod": cls.production,
            "development": cls.development,
            "dev": cls.development,
            "legacy": cls.legacy,
        }
        try:
            factory = presets[name.strip().lower()]
        except KeyError:
            raise ValueError(
                f"Unknown config preset {name!r}; expected production, development or legacy"
            ) from None
        return factory(settings)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], settings: Optional[RuntimeSettings] = None) -> HandlerConfig:
        """
        Build a config from a mapping.

        An optional ``preset`` key selects the starting point; the remaining
        keys override its fields. Unknown keys are ignored.
        """
        data = dict(data)
        preset = data.pop("preset", None)
        if preset:
            config = cls.preset(str(preset), settings)
        else:
            config = cls.from_environment(settings=settings)

        if "error_reporting" in data:
            config.error_reporting = parse_error_level(data["error_reporting"])
        for name in (
            "display_errors",
            "display_startup_errors",
            "modify_global_settings",
            "respect_existing_settings",
        ):
            if name in data:
                value = _parse_bool(data[name])
                if value is None:
                    raise ValueError(f"Invalid boolean for {name}: {data[name]!r}")
                setattr(config, name, value)
        return config

    @classmethod
    def from_file(cls, path: str | Path, settings: Optional[RuntimeSettings] = None) -> HandlerConfig:
        """
        Load a config from a YAML or JSON file.

        The document may hold the config at the top level or under an
        ``aquila_guard`` key.
        """
        path = Path(path)
        with open(path) as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                import yaml
                data = yaml.safe_load(f)

        data = data or {}
        if not isinstance(data, Mapping):
            raise ValueError(f"Config file {path} must contain a mapping")
        if isinstance(data.get("aquila_guard"), Mapping):
            data = data["aquila_guard"]
        return cls.from_dict(data, settings)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply(self) -> None:
        """
        Write this config to the runtime settings.

        No-op unless ``modify_global_settings`` is set. The previous values
        (and the ``warnings`` filter list) are captured once so that
        :meth:`restore` can undo the change.
        """
        if not self.modify_global_settings:
            return

        self._backup()
        settings = self.settings
        respect = self.respect_existing_settings

        if not respect or settings.error_reporting is None:
            settings.error_reporting = self.error_reporting

        if not respect or not settings.display_errors:
            settings.display_errors = self.display_errors

        if not respect or settings.display_startup_errors is None:
            settings.display_startup_errors = self.display_startup_errors

        if settings.error_reporting is not None and settings.error_reporting & ErrorLevel.DEPRECATED:
            warnings.simplefilter("default", DeprecationWarning)

    def restore(self) -> None:
        """Revert the runtime settings to the values captured by :meth:`apply`."""
        if not self.modify_global_settings or self._original is None:
            return

        self.settings.update(self._original)
        if self._original_filters is not None:
            warnings.filters[:] = self._original_filters

        self._original = None
        self._original_filters = None

    def _backup(self) -> None:
        if self._original is not None:
            return
        self._original = self.settings.snapshot()
        self._original_filters = copy.copy(warnings.filters)

    def effective_error_reporting(self) -> ErrorLevel:
        if self.respect_existing_settings and self.settings.error_reporting is not None:
            return self.settings.error_reporting
        return self.error_reporting

    def effective_display_errors(self) -> bool:
        if self.respect_existing_settings:
            return self.settings.display_errors
        return self.display_errors

    def reports(self, level: int) -> bool:
        """Check whether errors of ``level`` are converted into failures."""
        return bool(self.effective_error_reporting() & level)


# ============================================================================
# .env files
# ============================================================================

def load_environment(
    env_file: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """
    Merge a ``.env`` file under the process environment.

    Values from the real environment win over the file.

    Args:
        env_file: Path to the file (``.env`` in the working directory if None)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Merged mapping
    """
    from dotenv import dotenv_values

    if environ is None:
        environ = os.environ

    path = Path(env_file) if env_file is not None else Path(".env")
    merged: dict[str, str] = {}
    if path.exists():
        merged.update({k: v for k, v in dotenv_values(path).items() if v is not None})
    merged.update(environ)
    return merged
