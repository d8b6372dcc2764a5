"""
Shared test fixtures for the AquilaGuard test suite.
"""

import pytest

from aquila_guard import config as config_module
from aquila_guard.config import HandlerConfig, RuntimeSettings
from aquila_guard.engine import Dispatcher
from aquila_guard.output import BufferSink
from aquila_guard.security import SecurityLevel, SecurityPolicy


PROJECT_ROOT = "/var/www/app"


# ============================================================================
# Environment isolation
# ============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Run every test as a plain development process."""
    for name in ("APP_ENV", "ENVIRONMENT", "AQUILA_DISPLAY_ERRORS", "AQUILA_PRODUCTION"):
        monkeypatch.delenv(name, raising=False)

    settings = config_module.runtime_settings
    monkeypatch.setattr(settings, "error_reporting", None)
    monkeypatch.setattr(settings, "display_errors", True)
    monkeypatch.setattr(settings, "display_startup_errors", None)
    monkeypatch.setattr(settings, "production", False)
    yield


@pytest.fixture
def settings():
    return RuntimeSettings()


# ============================================================================
# Dispatcher
# ============================================================================

@pytest.fixture
def sink():
    return BufferSink()


@pytest.fixture
def dispatcher(sink, settings):
    d = Dispatcher(output=sink, config=HandlerConfig(settings=settings), default_format="text")
    yield d
    d.shutdown()


# ============================================================================
# Policies
# ============================================================================

@pytest.fixture
def dev_policy():
    return SecurityPolicy.for_level(SecurityLevel.DEV, project_root=PROJECT_ROOT)


@pytest.fixture
def staging_policy():
    return SecurityPolicy.for_level(SecurityLevel.STAGING, project_root=PROJECT_ROOT)


@pytest.fixture
def prod_policy():
    return SecurityPolicy.for_level(SecurityLevel.PROD, project_root=PROJECT_ROOT)
