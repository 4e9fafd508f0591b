"""
Pytest configuration and shared fixtures for the portico test suite.
"""

import sys
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import infrastructure.configuration as app_config  # noqa: E402
import infrastructure.monitoring as monitoring  # noqa: E402
from portico import pubsub  # noqa: E402


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch) -> Generator[None, None, None]:
    """Give every test an empty application environment and pub/sub registry."""
    monkeypatch.delenv("PORTICO_SERVE_ENDPOINTS", raising=False)
    monkeypatch.delenv("PORTICO_CONFIG", raising=False)
    app_config.clear_env()
    app_config.set_serve_endpoints(None)
    yield
    app_config.clear_env()
    app_config.set_serve_endpoints(None)
    for name in list(pubsub._servers):  # pylint: disable=protected-access
        pubsub.unregister(name)


@pytest.fixture
def telemetry() -> Generator[object, None, None]:
    """Provide the monitoring module with empty spans and metrics."""
    monitoring.reset_traces()
    monitoring.reset_metrics()
    yield monitoring
    monitoring.reset_traces()
    monitoring.reset_metrics()


@pytest.fixture
def static_root(tmp_path: Path) -> Path:
    """Provide an application root with a couple of static files."""
    static = tmp_path / "priv" / "static"
    (static / "css").mkdir(parents=True)
    (static / "css" / "app.css").write_text("body { color: red; }\n")
    (static / "robots.txt").write_text("User-agent: *\n")
    return tmp_path
