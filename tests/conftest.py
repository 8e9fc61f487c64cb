"""
Pytest configuration and shared fixtures.
"""
import pytest

from tabpilot.cdp.commander import CommandChannel
from tabpilot.cdp.frames import FrameTreeResolver
from tabpilot.cdp.session import SessionRegistry
from tabpilot.config import ActionTimings, AutomationConfig
from tests.fakes import FakeTransport, PageFunctions


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires Chrome)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    # Add markers based on test names or locations
    for item in items:
        if "integration" in item.nodeid.lower():
            item.add_marker(pytest.mark.integration)
        if "slow" in item.nodeid.lower():
            item.add_marker(pytest.mark.slow)


# =============================================================================
# Shared fixtures
# =============================================================================

@pytest.fixture
def config():
    """Configuration without settle delays or highlighting."""
    return AutomationConfig(
        overlay_settle_delay=0.0,
        highlight=False,
        timings=ActionTimings.instant(),
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def page_functions(transport):
    """Scripted Runtime.callFunctionOn responses wired into the transport."""
    functions = PageFunctions()
    transport.on("Runtime.callFunctionOn", functions)
    return functions


@pytest.fixture
def channel(transport):
    return CommandChannel(transport, default_timeout=2.0)


@pytest.fixture
async def registry(transport, channel):
    registry = SessionRegistry(
        transport,
        channel,
        detach_events=transport,
        tab_events=transport,
        idle_timeout=30.0,
        overlay_settle_delay=0.0,
    )
    yield registry
    await registry.close()


@pytest.fixture
def frames(channel):
    return FrameTreeResolver(channel)
