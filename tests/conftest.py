"""
Pytest fixtures for flow engine tests
"""

import pytest

from flow_builders import FakeTransport


@pytest.fixture
def transport():
    """Scripted HTTP transport"""
    return FakeTransport()
