"""
Chaos testing configuration and shared fixtures.
"""

import pytest

from tests.chaos.fixtures.network_chaos import NetworkChaos


@pytest.fixture
def network_chaos() -> type[NetworkChaos]:
    """Network failure helpers for named downstream routes."""
    return NetworkChaos
