"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import Generator

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("CHAOS_ENV", "test")
os.environ.pop("OTEL_EXPORTER_OTLP_ENDPOINT", None)
os.environ.pop("OTEL_EXPORTER_OTLP_HEADERS", None)

# Import shared fixtures from api_fixtures
from tests.api_fixtures import *  # noqa: E402, F403


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure no local collector or service addresses leak into tests."""
    for var in (
        "OTEL_EXPORTER_OTLP_ENDPOINT",
        "OTEL_EXPORTER_OTLP_HEADERS",
        "CLAIMS_SERVICE_URL",
        "POLICY_SERVICE_URL",
        "INVESTMENT_SERVICE_URL",
        "NOTIFICATION_SERVICE_URL",
        "PORT",
    ):
        monkeypatch.delenv(var, raising=False)

    # Force test environment
    monkeypatch.setenv("CHAOS_ENV", "test")


@pytest.fixture(autouse=True)
def reset_log_buffer() -> Generator[None, None, None]:
    """Start every test with an empty diagnostics log buffer."""
    from chaos_controller.logging import clear_in_memory_logs

    clear_in_memory_logs()
    yield
    clear_in_memory_logs()
