"""
Pytest configuration and shared fixtures for the Rivet test suite.
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from rivet import RivetApp, Settings, TestClient  # noqa: E402


@pytest.fixture(autouse=True)
def clean_rivet_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ``RIVET_*`` variables from the outer shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("RIVET_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def prod_settings() -> Settings:
    return Settings(environment="production")


@pytest.fixture
def app(settings: Settings) -> RivetApp:
    return RivetApp(settings)


@pytest.fixture
def client_for():
    """Return a factory building a :class:`TestClient` for an app."""

    def factory(app: RivetApp) -> TestClient:
        return TestClient(app)

    return factory
